"""Repository implementations for saga persistence.

This module provides async repositories for workflow instance snapshots using
advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import select

from litestar_sagas.core.types import WorkflowStatus
from litestar_sagas.db.models import WorkflowInstanceModel

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["WorkflowInstanceRepository"]


class WorkflowInstanceRepository(SQLAlchemyAsyncRepository[WorkflowInstanceModel]):
    """Repository for workflow instance snapshots.

    Provides methods for querying instances by workflow and finding the
    instances that still need to be driven to a terminal state.
    """

    model_type = WorkflowInstanceModel

    async def find_by_workflow(
        self,
        workflow_name: str,
        status: WorkflowStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowInstanceModel], int]:
        """Find instances by workflow name with optional status filter.

        Args:
            workflow_name: The workflow name to filter by.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (instances, total_count).
        """
        conditions = [WorkflowInstanceModel.workflow_name == workflow_name]

        if status:
            conditions.append(WorkflowInstanceModel.status == status)

        return await self.list_and_count(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
        )

    async def find_running(self) -> Sequence[WorkflowInstanceModel]:
        """Find all running workflow instances, oldest first.

        Returns:
            List of running workflow instances.
        """
        stmt = (
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.status == WorkflowStatus.RUNNING)
            .order_by(WorkflowInstanceModel.started_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
