"""Workflow instance state machine.

This module provides the immutable ``WorkflowInstance`` record. Every transition
returns a new instance value; the previous value is never modified, which keeps
the history trustworthy for concurrent readers.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from litestar_sagas.core.context import WorkflowContext, WorkflowHistoryEntry, step_result_key
from litestar_sagas.core.types import StepStatus, WorkflowStatus
from litestar_sagas.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from litestar_sagas.core.definition import WorkflowDefinition

__all__ = ["WorkflowInstance"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WorkflowInstance:
    """Execution record of one run of a workflow definition.

    Status moves from RUNNING to COMPLETED or FAILED and never leaves a terminal
    state. History is append-only, with one entry per step attempt.

    Attributes:
        id: Unique identifier for this workflow instance.
        definition_id: Identity of the definition being run.
        workflow_name: Name of the definition being run.
        workflow_version: Version of the definition, pinned at start.
        status: Current execution status.
        current_step_id: Id of the step being executed or last executed.
        context: Current workflow context.
        history: Step attempts in execution order.
        started_at: Timestamp when the instance was created.
        completed_at: Timestamp when the instance reached a terminal state.
        error: Terminal error message if the workflow failed.
        step_pending: Whether the current step was entered but not yet recorded.

    Example:
        >>> instance = WorkflowInstance.start(definition, {"order_id": "o-1"})
        >>> instance = instance.move_to_step("reserve")
        >>> instance = instance.complete_step("reserve", {"reservation_id": "r-9"})
        >>> instance.context["reservation_id"]
        'r-9'
    """

    workflow_name: str
    workflow_version: str
    definition_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    current_step_id: str | None = None
    context: WorkflowContext = field(default_factory=WorkflowContext)
    history: tuple[WorkflowHistoryEntry, ...] = ()
    started_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    error: str | None = None
    step_pending: bool = False

    @classmethod
    def start(
        cls,
        definition: WorkflowDefinition,
        initial_data: Mapping[str, Any] | None = None,
        *,
        instance_id: UUID | None = None,
    ) -> WorkflowInstance:
        """Create a new RUNNING instance of ``definition``.

        Args:
            definition: The definition to run.
            initial_data: Data the context starts with.
            instance_id: Optional explicit instance id.

        Returns:
            A fresh RUNNING instance with empty history.
        """
        return cls(
            id=instance_id or uuid4(),
            definition_id=definition.id,
            workflow_name=definition.name,
            workflow_version=definition.version,
            context=WorkflowContext(initial_data),
        )

    @property
    def is_terminal(self) -> bool:
        """Whether the instance reached COMPLETED or FAILED."""
        return self.status.is_terminal

    @property
    def has_pending_step(self) -> bool:
        """Whether the current step was entered but has no history entry yet."""
        return self.step_pending

    @property
    def duration_seconds(self) -> float | None:
        """Total run time for a terminal instance."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def last_entry(self, step_id: str | None = None) -> WorkflowHistoryEntry | None:
        """Get the most recent history entry, optionally for a given step.

        Args:
            step_id: Optional step id to filter by.

        Returns:
            The most recent matching entry, or None if not found.
        """
        for entry in reversed(self.history):
            if step_id is None or entry.step_id == step_id:
                return entry
        return None

    def completed_step_ids(self) -> list[str]:
        """Return the ids of steps that completed, in execution order."""
        return [entry.step_id for entry in self.history if entry.status == StepStatus.COMPLETED]

    def _ensure_running(self, to_state: str) -> None:
        if self.status != WorkflowStatus.RUNNING:
            raise InvalidTransitionError(str(self.status), to_state, f"instance '{self.id}' is terminal")

    def move_to_step(self, step_id: str) -> WorkflowInstance:
        """Enter ``step_id``; the instance stays RUNNING.

        Raises:
            InvalidTransitionError: If the instance is terminal.
        """
        self._ensure_running(f"step:{step_id}")
        return replace(self, current_step_id=step_id, step_pending=True)

    def complete_step(self, step_id: str, result: Any, *, attempts: int = 1) -> WorkflowInstance:
        """Record a completed step and merge its result into the context.

        A mapping result has its top-level keys merged into the context. The full
        result is always stored under ``step_<id>_result``.

        Args:
            step_id: The step that completed.
            result: The step result.
            attempts: How many attempts the step needed.

        Returns:
            The successor instance, still RUNNING.

        Raises:
            InvalidTransitionError: If the instance is terminal.
        """
        self._ensure_running(f"step:{step_id}")
        delta: dict[str, Any] = dict(result) if isinstance(result, Mapping) else {}
        delta[step_result_key(step_id)] = result
        entry = WorkflowHistoryEntry(step_id=step_id, status=StepStatus.COMPLETED, result=result, attempts=attempts)
        return replace(self, context=self.context.merge(delta), history=(*self.history, entry), step_pending=False)

    def skip_failed_step(self, step_id: str, error: BaseException | str, *, attempts: int = 1) -> WorkflowInstance:
        """Record a failure of a non-required step and keep running.

        The history entry carries a ``None`` result and ``step_<id>_result`` is
        set to ``None`` so navigation proceeds as though the step completed.

        Raises:
            InvalidTransitionError: If the instance is terminal.
        """
        self._ensure_running(f"step:{step_id}")
        entry = WorkflowHistoryEntry(step_id=step_id, status=StepStatus.FAILED, error=str(error), attempts=attempts)
        return replace(
            self,
            context=self.context.with_value(step_result_key(step_id), None),
            history=(*self.history, entry),
            step_pending=False,
        )

    def fail_step(
        self,
        step_id: str,
        error: BaseException | str,
        *,
        attempts: int = 1,
        result: Any = None,
    ) -> WorkflowInstance:
        """Record a critical step failure and move the instance to FAILED.

        Args:
            step_id: The failed step.
            error: The failure.
            attempts: How many times the step was tried.
            result: Partial result to keep on the history entry, such as the
                sub-step outcomes of a failed parallel step.

        Raises:
            InvalidTransitionError: If the instance is terminal.
        """
        self._ensure_running(str(WorkflowStatus.FAILED))
        entry = WorkflowHistoryEntry(
            step_id=step_id,
            status=StepStatus.FAILED,
            result=result,
            error=str(error),
            attempts=attempts,
        )
        return replace(
            self,
            status=WorkflowStatus.FAILED,
            current_step_id=step_id,
            history=(*self.history, entry),
            step_pending=False,
            error=str(error),
            completed_at=_now(),
        )

    def fail(self, error: BaseException | str) -> WorkflowInstance:
        """Move the instance to FAILED without a step history entry.

        Used when the run aborts outside of a step, e.g. a navigation or
        persistence error.

        Raises:
            InvalidTransitionError: If the instance is terminal.
        """
        self._ensure_running(str(WorkflowStatus.FAILED))
        return replace(self, status=WorkflowStatus.FAILED, error=str(error), completed_at=_now())

    def complete(self) -> WorkflowInstance:
        """Move the instance to COMPLETED.

        Raises:
            InvalidTransitionError: If the instance is terminal or the current
                step has not been recorded yet.
        """
        self._ensure_running(str(WorkflowStatus.COMPLETED))
        if self.has_pending_step:
            raise InvalidTransitionError(
                str(self.status),
                str(WorkflowStatus.COMPLETED),
                f"step '{self.current_step_id}' is still pending",
            )
        return replace(self, status=WorkflowStatus.COMPLETED, current_step_id=None, completed_at=_now())
