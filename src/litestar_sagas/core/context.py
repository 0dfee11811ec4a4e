"""Workflow execution context and history records.

This module provides the immutable ``WorkflowContext`` mapping carried between
steps and the append-only ``WorkflowHistoryEntry`` records of step attempts.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from litestar_sagas.core.types import StepStatus

__all__ = ["WorkflowContext", "WorkflowHistoryEntry", "step_result_key"]


def step_result_key(step_id: str) -> str:
    """Return the context key under which a step's result is stored."""
    return f"step_{step_id}_result"


class WorkflowContext(Mapping[str, Any]):
    """Insertion-ordered, read-only key/value data shared between steps.

    Every step produces a new context by merging its output into the previous
    one. Keys are only ever added or overwritten, never removed, so the keys of
    a context are always a superset of the keys of its predecessor.

    The in-memory store keeps any value. The SQLAlchemy store saves the context
    and step results as JSON and rejects values such as ``datetime`` or
    ``Decimal`` with :class:`~litestar_sagas.exceptions.InstanceSerializationError`.

    Example:
        >>> context = WorkflowContext({"order_id": "o-1"})
        >>> updated = context.merge({"reserved": True})
        >>> sorted(updated)
        ['order_id', 'reserved']
        >>> "reserved" in context
        False
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: Mapping[str, Any] = MappingProxyType(dict(data or {}))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WorkflowContext):
            return dict(self._data) == dict(other._data)
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"WorkflowContext({dict(self._data)!r})"

    def merge(self, delta: Mapping[str, Any]) -> WorkflowContext:
        """Return a new context with ``delta`` merged over this one.

        Args:
            delta: Keys to add or overwrite.

        Returns:
            A new WorkflowContext; this context is left untouched.
        """
        merged = dict(self._data)
        merged.update(delta)
        return WorkflowContext(merged)

    def with_value(self, key: str, value: Any) -> WorkflowContext:
        """Return a new context with a single key set."""
        return self.merge({key: value})

    def get_step_result(self, step_id: str, default: Any = None) -> Any:
        """Get the stored result of a previously executed step.

        Args:
            step_id: The step whose result to look up.
            default: Value returned when the step has not produced a result.

        Returns:
            The step result, or ``default``.
        """
        return self._data.get(step_result_key(step_id), default)

    def to_dict(self) -> dict[str, Any]:
        """Return a mutable shallow copy of the context data."""
        return dict(self._data)


@dataclass(frozen=True)
class WorkflowHistoryEntry:
    """Record of a single step attempt within a workflow instance.

    Attributes:
        step_id: Id of the executed step.
        status: Outcome of the attempt.
        result: Result payload of a completed step. Failures carry ``None``,
            except a failed parallel step, which keeps its sub-step outcomes.
        error: Error message if the attempt failed.
        timestamp: When the attempt finished.
        attempts: How many times the step was tried before this outcome.
    """

    step_id: str
    status: StepStatus
    result: Any = None
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        """Whether the attempt completed."""
        return self.status == StepStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Serialize the entry to a JSON-compatible dict."""
        return {
            "step_id": self.step_id,
            "status": str(self.status),
            "result": self.result,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowHistoryEntry:
        """Rebuild an entry produced by :meth:`to_dict`."""
        return cls(
            step_id=data["step_id"],
            status=StepStatus(data["status"]),
            result=data.get("result"),
            error=data.get("error"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            attempts=data.get("attempts", 1),
        )
