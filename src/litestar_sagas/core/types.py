"""Core type definitions for litestar-sagas.

This module defines the enums and type aliases shared by definitions, instances,
the step executor and the coordinator.
"""

from __future__ import annotations

import sys
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, TypeAlias, Union

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        @staticmethod
        def _generate_next_value_(name: str, start: int, count: int, last_values: list[Any]) -> str:
            return name.lower()

        def __str__(self) -> str:
            return str(self.value)


if TYPE_CHECKING:
    from litestar_sagas.core.context import WorkflowContext

__all__ = [
    "Context",
    "InputMapping",
    "OperatorCallable",
    "OutputMapping",
    "Predicate",
    "StepStatus",
    "StepType",
    "WorkflowStatus",
]


class StepType(StrEnum):
    """Classification of step kinds within a workflow.

    Attributes:
        OPERATOR_CALL: Invokes a registered operator method.
        DECISION: Evaluates a decision function against the context.
        PARALLEL: Fans out embedded sub-steps concurrently.
        WAIT: Suspends the run for a duration.
        COMPENSATION: Reverses an operator call; only run during rollback.
    """

    OPERATOR_CALL = auto()
    DECISION = auto()
    PARALLEL = auto()
    WAIT = auto()
    COMPENSATION = auto()


class StepStatus(StrEnum):
    """Outcome of a single step attempt recorded in history.

    Attributes:
        COMPLETED: Step produced a result.
        FAILED: Step raised an error.
    """

    COMPLETED = auto()
    FAILED = auto()


class WorkflowStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        RUNNING: Initial state; steps are being executed.
        COMPLETED: Terminal; every step ran and navigation reached the end.
        FAILED: Terminal; a critical step failure aborted the run.
    """

    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed from this status."""
        return self is not WorkflowStatus.RUNNING


Context: TypeAlias = Mapping[str, Any]
"""Type alias for read-only workflow context data."""

Predicate: TypeAlias = Callable[["WorkflowContext"], bool]
"""Condition evaluated against a context."""

InputMapping: TypeAlias = Callable[["WorkflowContext"], Any]
"""Maps a context to operator call arguments."""

OutputMapping: TypeAlias = Callable[[Any], Any]
"""Maps an operator result to the value merged into the context."""

OperatorCallable: TypeAlias = Callable[..., Union[Any, Awaitable[Any]]]
"""A resolved operator method, sync or async."""
