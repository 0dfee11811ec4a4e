"""Litestar Sagas - Saga orchestration with compensating rollback for Litestar.

This package provides a single-process workflow coordinator that drives a
sequence of steps against registered business operations, rolls back the
compensations of completed steps in reverse order when a required step fails,
and gates steps behind weighted rule checkpoints.

Key Features:
    - Immutable, versioned workflow definitions with conditional branching
    - Operator calls, decisions, parallel fan-out and timed waits
    - Reverse-order, best-effort compensation on critical failure
    - Weighted rule checkpoints with confidence scoring
    - Pluggable persistence, event publishing and transaction ports
    - Litestar plugin with dependency injection

Example:
    >>> from litestar_sagas import Coordinator, DefinitionRegistry, OperatorRegistry
    >>> from litestar_sagas import WorkflowDefinition, WorkflowStep
    >>>
    >>> definition = WorkflowDefinition(
    ...     name="place_order",
    ...     version="1.0.0",
    ...     steps=[
    ...         WorkflowStep.operator_call("reserve", "inventory", "reserve", compensate_with="release"),
    ...         WorkflowStep.operator_call("charge", "payments", "charge"),
    ...         WorkflowStep.compensation("release", "inventory", "release"),
    ...     ],
    ... )
    >>> coordinator = Coordinator(DefinitionRegistry(), OperatorRegistry())
"""

from __future__ import annotations

from litestar_sagas.__metadata__ import __project__, __version__
from litestar_sagas.core import (
    RetryPolicy,
    StepStatus,
    StepType,
    TimeoutPolicy,
    WorkflowCondition,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowHistoryEntry,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowStep,
)
from litestar_sagas.engine import (
    Coordinator,
    CoordinatorConfig,
    DefinitionRegistry,
    InMemoryEventBus,
    InMemoryInstanceStore,
    OperatorRegistry,
    StepExecutor,
    UnitOfWork,
)
from litestar_sagas.exceptions import (
    CheckpointFailedError,
    CriticalTransactionError,
    InstanceSerializationError,
    InvalidTransitionError,
    MethodNotFoundError,
    OperatorNotFoundError,
    OperatorResolutionError,
    ParallelStepError,
    SagasError,
    StepExecutionError,
    StepTimeoutError,
    TransactionAlreadyActiveError,
    TransactionError,
    TransactionNotActiveError,
    WorkflowAlreadyCompletedError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_sagas.plugin import SagaPlugin, SagaPluginConfig
from litestar_sagas.rules import (
    Checkpoint,
    PredicateRuleSet,
    RequiredKeysRuleSet,
    RuleReport,
    RuleSet,
    ThresholdRuleSet,
)

__all__ = (
    "Checkpoint",
    "CheckpointFailedError",
    "Coordinator",
    "CoordinatorConfig",
    "CriticalTransactionError",
    "InstanceSerializationError",
    "DefinitionRegistry",
    "InMemoryEventBus",
    "InMemoryInstanceStore",
    "InvalidTransitionError",
    "MethodNotFoundError",
    "OperatorNotFoundError",
    "OperatorRegistry",
    "OperatorResolutionError",
    "ParallelStepError",
    "PredicateRuleSet",
    "RequiredKeysRuleSet",
    "RetryPolicy",
    "RuleReport",
    "RuleSet",
    "SagaPlugin",
    "SagaPluginConfig",
    "SagasError",
    "StepExecutionError",
    "StepExecutor",
    "StepStatus",
    "StepTimeoutError",
    "StepType",
    "ThresholdRuleSet",
    "TimeoutPolicy",
    "TransactionAlreadyActiveError",
    "TransactionError",
    "TransactionNotActiveError",
    "UnitOfWork",
    "WorkflowAlreadyCompletedError",
    "WorkflowCondition",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowHistoryEntry",
    "WorkflowInstance",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowValidationError",
    "__project__",
    "__version__",
)
