"""In-process adapters for instance persistence and event publishing.

Suitable for development, testing and single-instance deployments. Neither
adapter survives a process restart.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Union

from litestar_sagas.core.types import WorkflowStatus

if TYPE_CHECKING:
    from uuid import UUID

    from litestar_sagas.core.events import WorkflowEvent
    from litestar_sagas.core.models import WorkflowInstance

__all__ = ["EventHandler", "InMemoryEventBus", "InMemoryInstanceStore"]

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
"""Subscriber callback; sync or async."""


class InMemoryInstanceStore:
    """Instance persistence keeping the latest snapshot of each instance in a dict."""

    def __init__(self) -> None:
        self._instances: dict[UUID, WorkflowInstance] = {}
        self._lock = asyncio.Lock()

    async def save(self, instance: WorkflowInstance) -> None:
        async with self._lock:
            self._instances[instance.id] = instance

    async def find(self, instance_id: UUID) -> WorkflowInstance | None:
        return self._instances.get(instance_id)

    async def find_running(self) -> list[WorkflowInstance]:
        return [instance for instance in self._instances.values() if instance.status == WorkflowStatus.RUNNING]

    async def find_by_workflow(self, workflow_name: str) -> list[WorkflowInstance]:
        """Return every instance of the named workflow."""
        return [instance for instance in self._instances.values() if instance.workflow_name == workflow_name]

    def __len__(self) -> int:
        return len(self._instances)


class InMemoryEventBus:
    """Event publisher dispatching events to subscribers registered by type.

    Handlers subscribed to a base class receive every subclass event. A failing
    handler is logged and does not prevent delivery to the others.

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(WorkflowFailed, alert_on_call)
        >>> bus.subscribe(WorkflowEvent, audit_log.append)
    """

    def __init__(self) -> None:
        self._handlers: dict[type[WorkflowEvent], list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type[WorkflowEvent], handler: EventHandler) -> EventHandler:
        """Register ``handler`` for events of ``event_type`` and its subclasses.

        Returns:
            The handler, so it can be passed to :meth:`unsubscribe` later.
        """
        self._handlers[event_type].append(handler)
        return handler

    def unsubscribe(self, event_type: type[WorkflowEvent], handler: EventHandler) -> bool:
        """Remove a handler.

        Returns:
            True if the handler was subscribed.
        """
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handlers_for(self, event: WorkflowEvent) -> list[EventHandler]:
        """Return the handlers receiving ``event``, grouped by subscribed type."""
        return [
            handler
            for event_type, handlers in list(self._handlers.items())
            if isinstance(event, event_type)
            for handler in handlers
        ]

    async def publish(self, event: WorkflowEvent) -> None:
        for handler in self.handlers_for(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "Event handler %r failed for %s",
                    handler,
                    type(event).__name__,
                    exc_info=True,
                )
