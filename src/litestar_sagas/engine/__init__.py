"""Saga execution engine.

This module provides the coordinator driving workflow instances, the step
executor, the unit of work collecting compensations, the registries and the
in-process persistence and event adapters.
"""

from __future__ import annotations

from litestar_sagas.engine.coordinator import Coordinator, CoordinatorConfig
from litestar_sagas.engine.executor import Err, ExecutionResult, Ok, StepExecutor, SubStepOutcome
from litestar_sagas.engine.memory import InMemoryEventBus, InMemoryInstanceStore
from litestar_sagas.engine.registry import DefinitionRegistry, OperatorRegistry
from litestar_sagas.engine.transaction import (
    CompensationAction,
    CompensationOutcome,
    RollbackResult,
    TransactionContext,
    UnitOfWork,
)

__all__ = [
    "CompensationAction",
    "CompensationOutcome",
    "Coordinator",
    "CoordinatorConfig",
    "DefinitionRegistry",
    "Err",
    "ExecutionResult",
    "InMemoryEventBus",
    "InMemoryInstanceStore",
    "Ok",
    "OperatorRegistry",
    "RollbackResult",
    "StepExecutor",
    "SubStepOutcome",
    "TransactionContext",
    "UnitOfWork",
]
