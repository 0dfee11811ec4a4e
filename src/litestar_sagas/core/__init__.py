"""Core domain module for litestar-sagas.

This module exports the fundamental building blocks of a saga: types, context,
definitions, instances, events and the collaborator protocols.
"""

from __future__ import annotations

from litestar_sagas.core.context import WorkflowContext, WorkflowHistoryEntry, step_result_key
from litestar_sagas.core.definition import (
    RetryPolicy,
    TimeoutPolicy,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowStep,
)
from litestar_sagas.core.events import (
    CompensationFailed,
    CriticalTransactionFailure,
    StepCompleted,
    StepFailed,
    WorkflowCompleted,
    WorkflowEvent,
    WorkflowFailed,
    WorkflowStarted,
)
from litestar_sagas.core.models import WorkflowInstance
from litestar_sagas.core.protocols import (
    DefinitionStore,
    EventPublisher,
    InstancePersistence,
    OperatorResolver,
    RuleSetProtocol,
    TransactionDriver,
)
from litestar_sagas.core.types import Context, StepStatus, StepType, WorkflowStatus

__all__ = [
    "CompensationFailed",
    "Context",
    "CriticalTransactionFailure",
    "DefinitionStore",
    "EventPublisher",
    "InstancePersistence",
    "OperatorResolver",
    "RetryPolicy",
    "RuleSetProtocol",
    "StepCompleted",
    "StepFailed",
    "StepStatus",
    "StepType",
    "TimeoutPolicy",
    "TransactionDriver",
    "WorkflowCompleted",
    "WorkflowCondition",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowEvent",
    "WorkflowFailed",
    "WorkflowHistoryEntry",
    "WorkflowInstance",
    "WorkflowStarted",
    "WorkflowStep",
    "step_result_key",
]
