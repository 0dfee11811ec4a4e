"""Core protocols for litestar-sagas.

This module defines the Protocol-based ports through which the engine talks to
its collaborators: the operator registry, the definition store, instance
persistence, event publishing, the transaction driver and rule sets. Callers
supply implementations; the in-memory and SQLAlchemy adapters shipped with the
library are two such implementations.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from litestar_sagas.core.definition import WorkflowDefinition
    from litestar_sagas.core.events import WorkflowEvent
    from litestar_sagas.core.models import WorkflowInstance
    from litestar_sagas.core.types import OperatorCallable
    from litestar_sagas.rules.report import RuleReport

__all__ = [
    "DefinitionStore",
    "EventPublisher",
    "InstancePersistence",
    "OperatorResolver",
    "RuleSetProtocol",
    "TransactionDriver",
]


@runtime_checkable
class OperatorResolver(Protocol):
    """Port resolving ``(operator, method)`` names to callables."""

    def resolve(self, operator_name: str, method_name: str) -> OperatorCallable:
        """Resolve an operator method.

        Args:
            operator_name: Registered operator name.
            method_name: Method name on that operator.

        Returns:
            The callable to invoke; it may be sync or async.

        Raises:
            OperatorNotFoundError: If the operator is unknown.
            MethodNotFoundError: If the operator has no such method.
        """
        ...


@runtime_checkable
class DefinitionStore(Protocol):
    """Port for looking up published workflow definitions."""

    def find_by_name_and_version(self, name: str, version: str) -> WorkflowDefinition | None:
        """Return the definition published as ``name``/``version``, or None."""
        ...


@runtime_checkable
class InstancePersistence(Protocol):
    """Port persisting workflow instance snapshots.

    The coordinator calls :meth:`save` after every state transition, so the last
    saved snapshot is always a valid point to resume from.
    """

    async def save(self, instance: WorkflowInstance) -> None:
        """Store ``instance``, replacing any previous snapshot with the same id."""
        ...

    async def find(self, instance_id: UUID) -> WorkflowInstance | None:
        """Return the latest snapshot of an instance, or None."""
        ...

    async def find_running(self) -> Sequence[WorkflowInstance]:
        """Return every instance whose latest snapshot is RUNNING."""
        ...


@runtime_checkable
class EventPublisher(Protocol):
    """Port publishing lifecycle events."""

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to subscribers."""
        ...


@runtime_checkable
class TransactionDriver(Protocol):
    """Port to the transaction mechanism of the underlying store.

    The unit of work calls these around a run. A failure in :meth:`rollback` is
    the critical transaction failure that requires manual intervention.
    """

    async def begin(self) -> None:
        """Open a transaction."""
        ...

    async def commit(self) -> None:
        """Commit the open transaction."""
        ...

    async def rollback(self) -> None:
        """Roll back the open transaction."""
        ...


@runtime_checkable
class RuleSetProtocol(Protocol):
    """A pure validation function producing a rule report.

    ``evaluate`` may return the report directly or an awaitable of it.
    """

    name: str

    def evaluate(self, context: Any) -> RuleReport:
        """Score ``context`` against the rule."""
        ...
