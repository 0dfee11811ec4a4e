"""SQLAlchemy adapters for the persistence and transaction ports.

:class:`SQLAlchemyInstanceStore` commits every snapshot immediately, so the last
saved state survives a crash. :class:`SQLAlchemyTransactionDriver` wraps the
session used by the operators, whose writes are committed or rolled back with
the run. Use separate sessions for the two.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from litestar_sagas.core.context import WorkflowContext, WorkflowHistoryEntry
from litestar_sagas.core.models import WorkflowInstance
from litestar_sagas.db.models import WorkflowInstanceModel
from litestar_sagas.db.repositories import WorkflowInstanceRepository
from litestar_sagas.exceptions import InstanceSerializationError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["SQLAlchemyInstanceStore", "SQLAlchemyTransactionDriver", "instance_from_model", "instance_to_model"]

logger = logging.getLogger(__name__)


def instance_to_model(instance: WorkflowInstance, model: WorkflowInstanceModel | None = None) -> WorkflowInstanceModel:
    """Copy an instance snapshot onto a model, creating one if needed."""
    if model is None:
        model = WorkflowInstanceModel(id=instance.id)
    model.definition_id = instance.definition_id
    model.workflow_name = instance.workflow_name
    model.workflow_version = instance.workflow_version
    model.status = instance.status
    model.current_step_id = instance.current_step_id
    model.step_pending = instance.step_pending
    model.context_data = instance.context.to_dict()
    model.history = [entry.to_dict() for entry in instance.history]
    model.error = instance.error
    model.started_at = instance.started_at
    model.completed_at = instance.completed_at
    return model


def instance_from_model(model: WorkflowInstanceModel) -> WorkflowInstance:
    """Rebuild an instance snapshot from its model."""
    return WorkflowInstance(
        id=model.id,
        definition_id=model.definition_id,
        workflow_name=model.workflow_name,
        workflow_version=model.workflow_version,
        status=model.status,
        current_step_id=model.current_step_id,
        step_pending=model.step_pending,
        context=WorkflowContext(model.context_data or {}),
        history=tuple(WorkflowHistoryEntry.from_dict(entry) for entry in model.history or []),
        error=model.error,
        started_at=model.started_at,
        completed_at=model.completed_at,
    )


def _ensure_json(instance: WorkflowInstance) -> None:
    try:
        json.dumps([instance.context.to_dict(), [entry.to_dict() for entry in instance.history]])
    except (TypeError, ValueError) as exc:
        raise InstanceSerializationError(instance.id, exc) from exc


class SQLAlchemyInstanceStore:
    """Instance persistence backed by :class:`WorkflowInstanceRepository`.

    Example:
        >>> async with session_maker() as session:
        ...     coordinator = Coordinator(definitions, operators, persistence=SQLAlchemyInstanceStore(session))
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.repository = WorkflowInstanceRepository(session=session)

    async def save(self, instance: WorkflowInstance) -> None:
        """Insert or update the snapshot and commit it.

        Raises:
            InstanceSerializationError: If the context or history holds a value
                that cannot be stored as JSON. Nothing is written.
        """
        _ensure_json(instance)
        model = await self.repository.get_one_or_none(id=instance.id)
        if model is None:
            await self.repository.add(instance_to_model(instance), auto_commit=True)
        else:
            await self.repository.update(instance_to_model(instance, model), auto_commit=True)
        logger.debug("Saved instance %s (%s)", instance.id, instance.status)

    async def find(self, instance_id: UUID) -> WorkflowInstance | None:
        model = await self.repository.get_one_or_none(id=instance_id)
        return instance_from_model(model) if model is not None else None

    async def find_running(self) -> list[WorkflowInstance]:
        return [instance_from_model(model) for model in await self.repository.find_running()]

    async def find_by_workflow(self, workflow_name: str, limit: int = 100, offset: int = 0) -> list[WorkflowInstance]:
        """Return instances of the named workflow, most recently started first."""
        models, _ = await self.repository.find_by_workflow(workflow_name, limit=limit, offset=offset)
        return [instance_from_model(model) for model in models]


class SQLAlchemyTransactionDriver:
    """Transaction driver delegating to an :class:`~sqlalchemy.ext.asyncio.AsyncSession`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def begin(self) -> None:
        if not self.session.in_transaction():
            await self.session.begin()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
