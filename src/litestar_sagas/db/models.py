"""SQLAlchemy models for saga persistence.

This module defines the database model storing the latest snapshot of each
workflow instance: status, current step, context and the step history.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from litestar_sagas.core.types import WorkflowStatus

__all__ = ["WorkflowInstanceModel"]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowInstanceModel(UUIDAuditBase):
    """Persisted snapshot of a workflow instance.

    The row is overwritten after every transition, so it always holds the last
    durable state a run can be resumed from.

    Attributes:
        definition_id: Identity of the definition being run.
        workflow_name: Name of the definition, pinned at start.
        workflow_version: Version of the definition, pinned at start.
        status: Current execution status.
        current_step_id: Step being executed or last executed.
        step_pending: Whether the current step was entered but not yet recorded.
        context_data: Workflow context as JSON.
        history: Step attempts in execution order as JSON.
        error: Terminal error message if the workflow failed.
        started_at: Timestamp when execution began.
        completed_at: Timestamp when execution finished.
    """

    __tablename__ = "saga_instances"
    __table_args__ = (
        Index("ix_saga_instances_status", "status"),
        Index("ix_saga_instances_workflow", "workflow_name", "workflow_version"),
    )

    definition_id: Mapped[UUID | None] = mapped_column(nullable=True)
    workflow_name: Mapped[str] = mapped_column(String(255))
    workflow_version: Mapped[str] = mapped_column(String(50))
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, native_enum=False, length=50),
        default=WorkflowStatus.RUNNING,
    )
    current_step_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    step_pending: Mapped[bool] = mapped_column(default=False)
    context_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
