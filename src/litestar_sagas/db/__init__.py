"""Database persistence layer for litestar-sagas.

This module provides the SQLAlchemy model, repository and port adapters for
persisting workflow instance snapshots and wrapping operator writes in a
transaction.

Requires the [db] extra:
    pip install litestar-sagas[db]
"""

from __future__ import annotations

from litestar_sagas.db.models import WorkflowInstanceModel
from litestar_sagas.db.repositories import WorkflowInstanceRepository
from litestar_sagas.db.store import (
    SQLAlchemyInstanceStore,
    SQLAlchemyTransactionDriver,
    instance_from_model,
    instance_to_model,
)

__all__ = [
    "SQLAlchemyInstanceStore",
    "SQLAlchemyTransactionDriver",
    "WorkflowInstanceModel",
    "WorkflowInstanceRepository",
    "instance_from_model",
    "instance_to_model",
]
