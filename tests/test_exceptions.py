"""Tests for exception hierarchy."""

from __future__ import annotations

from uuid import uuid4

import pytest


@pytest.mark.unit
class TestSagasError:
    """Tests for base SagasError exception."""

    def test_base_exception_creation(self) -> None:
        """Test creating base SagasError."""
        from litestar_sagas.exceptions import SagasError

        error = SagasError("Test error message")

        assert str(error) == "Test error message"
        assert isinstance(error, Exception)

    def test_all_errors_inherit_from_base(self) -> None:
        """Test every exported error is a SagasError."""
        from litestar_sagas import exceptions

        for name in exceptions.__all__:
            assert issubclass(getattr(exceptions, name), exceptions.SagasError), name


@pytest.mark.unit
class TestWorkflowNotFoundError:
    """Tests for WorkflowNotFoundError exception."""

    def test_without_version(self) -> None:
        """Test the message for a missing workflow."""
        from litestar_sagas.exceptions import WorkflowNotFoundError

        error = WorkflowNotFoundError("place_order")

        assert error.name == "place_order"
        assert error.version is None
        assert str(error) == "Workflow 'place_order' not found"

    def test_with_version(self) -> None:
        """Test the message names the missing version."""
        from litestar_sagas.exceptions import WorkflowNotFoundError

        error = WorkflowNotFoundError("place_order", "2.0.0")

        assert str(error) == "Workflow 'place_order' version '2.0.0' not found"


@pytest.mark.unit
class TestInstanceErrors:
    """Tests for instance related errors."""

    def test_instance_not_found(self) -> None:
        """Test WorkflowInstanceNotFoundError carries the id."""
        from litestar_sagas.exceptions import WorkflowInstanceNotFoundError

        instance_id = uuid4()
        error = WorkflowInstanceNotFoundError(instance_id)

        assert error.instance_id == instance_id
        assert str(instance_id) in str(error)

    def test_serialization(self) -> None:
        """Test InstanceSerializationError carries the id and the encoding error."""
        from litestar_sagas.exceptions import InstanceSerializationError

        cause = TypeError("Object of type Decimal is not JSON serializable")
        error = InstanceSerializationError("abc", cause)

        assert error.instance_id == "abc"
        assert error.cause is cause
        assert str(error) == (
            "Workflow instance 'abc' cannot be serialized: Object of type Decimal is not JSON serializable"
        )

    def test_already_completed(self) -> None:
        """Test WorkflowAlreadyCompletedError names the status."""
        from litestar_sagas.exceptions import WorkflowAlreadyCompletedError

        error = WorkflowAlreadyCompletedError("abc", "failed")

        assert str(error) == "Workflow 'abc' is already failed"

    def test_invalid_transition(self) -> None:
        """Test InvalidTransitionError with and without reason."""
        from litestar_sagas.exceptions import InvalidTransitionError

        assert str(InvalidTransitionError("completed", "failed")) == "Invalid transition from 'completed' to 'failed'"
        error = InvalidTransitionError("running", "completed", "step 'a' is still pending")
        assert error.from_state == "running"
        assert str(error).endswith(": step 'a' is still pending")

    def test_validation_error(self) -> None:
        """Test WorkflowValidationError joins the messages."""
        from litestar_sagas.exceptions import WorkflowValidationError

        error = WorkflowValidationError(["first", "second"])

        assert error.errors == ["first", "second"]
        assert str(error) == "Workflow validation failed: first; second"


@pytest.mark.unit
class TestOperatorErrors:
    """Tests for operator resolution errors."""

    def test_hierarchy(self) -> None:
        """Test both lookups share a base class."""
        from litestar_sagas.exceptions import MethodNotFoundError, OperatorNotFoundError, OperatorResolutionError

        assert issubclass(OperatorNotFoundError, OperatorResolutionError)
        assert issubclass(MethodNotFoundError, OperatorResolutionError)

    def test_messages(self) -> None:
        """Test the messages name the operator and method."""
        from litestar_sagas.exceptions import MethodNotFoundError, OperatorNotFoundError

        assert str(OperatorNotFoundError("payments")) == "Operator 'payments' not found"
        assert str(MethodNotFoundError("payments", "refund")) == "Method 'refund' not found on operator 'payments'"


@pytest.mark.unit
class TestStepErrors:
    """Tests for step execution errors."""

    def test_wraps_cause(self) -> None:
        """Test StepExecutionError describes its cause."""
        from litestar_sagas.exceptions import StepExecutionError

        cause = RuntimeError("card declined")
        error = StepExecutionError("charge", cause, attempts=3)

        assert error.cause is cause
        assert error.attempts == 3
        assert error.critical is False
        assert str(error) == "Step 'charge' failed: card declined"

    def test_message_overrides_cause(self) -> None:
        """Test an explicit message wins over the cause."""
        from litestar_sagas.exceptions import StepExecutionError

        error = StepExecutionError("charge", RuntimeError("x"), message="custom")

        assert str(error) == "Step 'charge' failed: custom"

    def test_timeout(self) -> None:
        """Test StepTimeoutError reports the timeout."""
        from litestar_sagas.exceptions import StepExecutionError, StepTimeoutError

        error = StepTimeoutError("charge", 1.5)

        assert isinstance(error, StepExecutionError)
        assert error.timeout == 1.5
        assert str(error) == "Step 'charge' failed: timed out after 1.5s"

    def test_checkpoint_failed(self) -> None:
        """Test CheckpointFailedError carries the report."""
        from litestar_sagas.exceptions import CheckpointFailedError
        from litestar_sagas.rules import RuleReport

        report = RuleReport.failure("limits", ["too large", "too early"])
        error = CheckpointFailedError("charge", report, critical=True)

        assert error.report is report
        assert error.critical is True
        assert str(error) == "Step 'charge' failed: checkpoint 'limits' failed: too large; too early"

    def test_parallel(self) -> None:
        """Test ParallelStepError lists the failed sub-steps."""
        from litestar_sagas.engine.executor import Err, Ok
        from litestar_sagas.exceptions import ParallelStepError

        outcomes = [Ok("a", 1), Err("b", ValueError("x")), Err("c", ValueError("y"))]
        error = ParallelStepError("fan_out", outcomes)

        assert error.outcomes == outcomes
        assert str(error) == "Step 'fan_out' failed: sub-steps failed: b, c"


@pytest.mark.unit
class TestTransactionErrors:
    """Tests for unit of work errors."""

    def test_not_active(self) -> None:
        """Test TransactionNotActiveError names the operation."""
        from litestar_sagas.exceptions import TransactionError, TransactionNotActiveError

        error = TransactionNotActiveError("commit")

        assert isinstance(error, TransactionError)
        assert str(error) == "Cannot commit: no active transaction"

    def test_critical(self) -> None:
        """Test CriticalTransactionError carries the driver error."""
        from litestar_sagas.exceptions import CriticalTransactionError

        cause = ConnectionError("lost")
        error = CriticalTransactionError("tx-1", cause)

        assert error.cause is cause
        assert error.instance is None
        assert "manual intervention required: lost" in str(error)
