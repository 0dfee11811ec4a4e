"""Exception hierarchy for litestar-sagas."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from litestar_sagas.rules.report import RuleReport

__all__ = (
    "CheckpointFailedError",
    "CriticalTransactionError",
    "InstanceSerializationError",
    "InvalidTransitionError",
    "MethodNotFoundError",
    "OperatorNotFoundError",
    "OperatorResolutionError",
    "ParallelStepError",
    "SagasError",
    "StepExecutionError",
    "StepTimeoutError",
    "TransactionAlreadyActiveError",
    "TransactionError",
    "TransactionNotActiveError",
    "WorkflowAlreadyCompletedError",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
)


class SagasError(Exception):
    """Base exception for all litestar-sagas errors.

    All exceptions raised by litestar-sagas inherit from this class, so callers
    can catch every orchestration error with a single except clause.
    """


class WorkflowNotFoundError(SagasError):
    """Raised when a workflow definition is not found in the definition store.

    Attributes:
        name: The name of the workflow that was not found.
        version: The specific version requested, if any.
    """

    def __init__(self, name: str, version: str | None = None) -> None:
        """Initialize the exception with workflow details.

        Args:
            name: The name of the workflow that was not found.
            version: The specific version requested, if any.
        """
        self.name = name
        self.version = version
        msg = f"Workflow '{name}'"
        if version:
            msg += f" version '{version}'"
        msg += " not found"
        super().__init__(msg)


class WorkflowInstanceNotFoundError(SagasError):
    """Raised when a workflow instance is not found in the persistence port.

    Attributes:
        instance_id: The ID of the workflow instance that was not found.
    """

    def __init__(self, instance_id: str | UUID) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class InstanceSerializationError(SagasError):
    """Raised when an instance snapshot cannot be stored as JSON.

    Attributes:
        instance_id: The ID of the instance that could not be saved.
        cause: The encoding error.
    """

    def __init__(self, instance_id: str | UUID, cause: Exception) -> None:
        self.instance_id = instance_id
        self.cause = cause
        super().__init__(f"Workflow instance '{instance_id}' cannot be serialized: {cause}")


class WorkflowValidationError(SagasError):
    """Raised when a workflow definition fails validation.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class InvalidTransitionError(SagasError):
    """Raised when an instance state transition is not allowed.

    Instance status only ever moves from RUNNING to COMPLETED or FAILED. Any
    attempt to leave a terminal state, or to complete a run with a step still
    pending, raises this error.

    Attributes:
        from_state: The state being transitioned from.
        to_state: The state being transitioned to.
    """

    def __init__(self, from_state: str, to_state: str, reason: str | None = None) -> None:
        """Initialize the exception with transition details.

        Args:
            from_state: The state being transitioned from.
            to_state: The state being transitioned to.
            reason: Additional context about why the transition is invalid.
        """
        self.from_state = from_state
        self.to_state = to_state
        msg = f"Invalid transition from '{from_state}' to '{to_state}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WorkflowAlreadyCompletedError(SagasError):
    """Raised when trying to resume a workflow that reached a terminal state.

    Attributes:
        instance_id: The ID of the workflow instance.
        status: The terminal status of the workflow.
    """

    def __init__(self, instance_id: str | UUID, status: str) -> None:
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow '{instance_id}' is already {status}")


class OperatorResolutionError(SagasError):
    """Base exception for operator registry lookups."""


class OperatorNotFoundError(OperatorResolutionError):
    """Raised when no operator is registered under the requested name.

    Attributes:
        operator_name: The operator that was requested.
    """

    def __init__(self, operator_name: str) -> None:
        self.operator_name = operator_name
        super().__init__(f"Operator '{operator_name}' not found")


class MethodNotFoundError(OperatorResolutionError):
    """Raised when an operator exists but does not expose the requested method.

    Attributes:
        operator_name: The operator that was requested.
        method_name: The method that was requested.
    """

    def __init__(self, operator_name: str, method_name: str) -> None:
        self.operator_name = operator_name
        self.method_name = method_name
        super().__init__(f"Method '{method_name}' not found on operator '{operator_name}'")


class StepExecutionError(SagasError):
    """Raised when a step fails to execute.

    This wraps the underlying exception that caused the step to fail. A
    ``critical`` error aborts the run and triggers rollback even when the step
    itself is not marked as required.

    Attributes:
        step_id: The id of the step that failed.
        cause: The underlying exception that caused the failure, if any.
        critical: Whether the failure must abort the run regardless of the
            step's ``is_required`` flag.
        attempts: How many attempts were made before giving up.
    """

    def __init__(
        self,
        step_id: str,
        cause: BaseException | None = None,
        *,
        critical: bool = False,
        message: str | None = None,
        attempts: int = 1,
    ) -> None:
        """Initialize the exception with step execution details.

        Args:
            step_id: The id of the step that failed.
            cause: The underlying exception that caused the failure, if any.
            critical: Whether the failure always aborts the run.
            message: Optional override for the failure description.
            attempts: How many attempts were made before giving up.
        """
        self.step_id = step_id
        self.attempts = attempts
        self.cause = cause
        self.critical = critical
        msg = f"Step '{step_id}' failed"
        if message:
            msg += f": {message}"
        elif cause:
            msg += f": {cause}"
        super().__init__(msg)


class StepTimeoutError(StepExecutionError):
    """Raised when a step exceeds its timeout.

    Attributes:
        timeout: The timeout in seconds that was exceeded.
    """

    def __init__(self, step_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(step_id, message=f"timed out after {timeout:g}s")


class CheckpointFailedError(StepExecutionError):
    """Raised when a step's checkpoint rejects the current context.

    Attributes:
        report: The aggregate rule report produced by the checkpoint.
    """

    def __init__(self, step_id: str, report: RuleReport, *, critical: bool = False) -> None:
        self.report = report
        reasons = "; ".join(report.reasons) or "checkpoint rejected context"
        super().__init__(step_id, critical=critical, message=f"checkpoint '{report.rule_name}' failed: {reasons}")


class ParallelStepError(StepExecutionError):
    """Raised when a required parallel step has at least one failed sub-step.

    Attributes:
        outcomes: Every sub-step outcome, successful or not, in declaration order.
    """

    def __init__(self, step_id: str, outcomes: Sequence[Any]) -> None:
        self.outcomes = list(outcomes)
        failed = [outcome.step_id for outcome in self.outcomes if not outcome.ok]
        super().__init__(step_id, message=f"sub-steps failed: {', '.join(failed)}")


class TransactionError(SagasError):
    """Base exception for unit of work errors."""


class TransactionAlreadyActiveError(TransactionError):
    """Raised when ``begin()`` is called on a unit of work that is already active.

    Attributes:
        transaction_id: The id of the active transaction.
    """

    def __init__(self, transaction_id: str | UUID) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction '{transaction_id}' is already active")


class TransactionNotActiveError(TransactionError):
    """Raised by a strict unit of work when committing or rolling back without a transaction.

    Attributes:
        operation: The operation that was attempted.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: no active transaction")


class CriticalTransactionError(TransactionError):
    """Raised when the transaction driver itself fails while rolling back.

    This is the most severe failure class. Compensations have already been run on
    a best-effort basis, but the underlying store may be inconsistent and needs
    manual intervention.

    Attributes:
        transaction_id: The id of the transaction that failed to roll back.
        cause: The driver error.
        instance: The failed instance snapshot, when raised by the coordinator.
    """

    def __init__(self, transaction_id: str | UUID, cause: BaseException | None = None) -> None:
        self.transaction_id = transaction_id
        self.cause = cause
        self.instance: Any = None
        msg = f"Rollback of transaction '{transaction_id}' failed; manual intervention required"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)
