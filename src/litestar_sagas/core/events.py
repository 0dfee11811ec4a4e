"""Domain events for the saga lifecycle.

This module defines the events published through the event port while a
workflow runs. Publishing is fire-and-forget: a failing subscriber never
affects the run that emitted the event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

__all__ = [
    "CompensationFailed",
    "CriticalTransactionFailure",
    "StepCompleted",
    "StepFailed",
    "WorkflowCompleted",
    "WorkflowEvent",
    "WorkflowFailed",
    "WorkflowStarted",
]


@dataclass(frozen=True)
class WorkflowEvent:
    """Base class for all workflow events.

    Attributes:
        instance_id: Unique identifier of the workflow instance.
        timestamp: When the event occurred.
    """

    instance_id: UUID
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)


@dataclass(frozen=True)
class WorkflowStarted(WorkflowEvent):
    """Event emitted when a workflow instance starts execution.

    Attributes:
        workflow_name: Name of the workflow definition.
        workflow_version: Version of the workflow definition.
        initial_data: Data the context started with.
    """

    workflow_name: str
    workflow_version: str
    initial_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class StepCompleted(WorkflowEvent):
    """Event emitted when a step completes.

    Attributes:
        step_id: Id of the step that completed.
        step_kind: Kind of the step.
        result: Result recorded for the step.
        attempts: Number of attempts the step needed.

    Example:
        >>> event = StepCompleted(
        ...     instance_id=uuid4(),
        ...     step_id="reserve",
        ...     step_kind="operator_call",
        ...     result={"reservation_id": "r-1"},
        ... )
    """

    step_id: str
    step_kind: str
    result: Any = None
    attempts: int = 1


@dataclass(frozen=True)
class StepFailed(WorkflowEvent):
    """Event emitted when a step fails, whether or not the run continues.

    Attributes:
        step_id: Id of the step that failed.
        error: Error message describing the failure.
        error_type: Class name of the error.
        critical: Whether the failure aborted the run.
    """

    step_id: str
    error: str
    error_type: str | None = None
    critical: bool = False


@dataclass(frozen=True)
class WorkflowCompleted(WorkflowEvent):
    """Event emitted when a workflow instance completes successfully.

    Attributes:
        workflow_name: Name of the workflow definition.
        final_step: Id of the last executed step.
        duration_seconds: Total execution time in seconds.
    """

    workflow_name: str
    final_step: str | None = None
    duration_seconds: float | None = None


@dataclass(frozen=True)
class WorkflowFailed(WorkflowEvent):
    """Event emitted when a workflow instance fails and has been rolled back.

    Attributes:
        workflow_name: Name of the workflow definition.
        error: Error message describing the failure.
        failed_step: Id of the step that caused the failure.
        error_type: Class name of the error.
        compensations_run: Descriptions of compensations that succeeded.
        compensations_failed: Descriptions of compensations that failed.
    """

    workflow_name: str
    error: str
    failed_step: str | None = None
    error_type: str | None = None
    compensations_run: tuple[str, ...] = ()
    compensations_failed: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompensationFailed(WorkflowEvent):
    """Event emitted when a compensation raises during rollback.

    Attributes:
        description: Description of the compensation.
        error: Error message.
    """

    description: str
    error: str


@dataclass(frozen=True)
class CriticalTransactionFailure(WorkflowEvent):
    """Event emitted when the transaction driver fails during rollback.

    This signal is meant for operators: the underlying store may hold partial
    writes that require manual intervention.

    Attributes:
        transaction_id: Id of the failed transaction.
        error: Error message from the driver.
    """

    transaction_id: UUID
    error: str
