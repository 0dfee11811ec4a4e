"""Tests for the WorkflowInstance state machine."""

from __future__ import annotations

import pytest

from litestar_sagas.core.definition import WorkflowDefinition
from litestar_sagas.core.models import WorkflowInstance
from litestar_sagas.core.types import StepStatus, WorkflowStatus
from litestar_sagas.exceptions import InvalidTransitionError


@pytest.fixture
def instance(place_order_definition: WorkflowDefinition) -> WorkflowInstance:
    return WorkflowInstance.start(place_order_definition, {"order_id": "o-1", "amount": 25.0})


@pytest.mark.unit
class TestWorkflowInstance:
    """Tests for WorkflowInstance transitions."""

    def test_start(self, instance: WorkflowInstance, place_order_definition: WorkflowDefinition) -> None:
        """Test a new instance is RUNNING with empty history."""
        assert instance.status == WorkflowStatus.RUNNING
        assert instance.workflow_name == "place_order"
        assert instance.workflow_version == "1.0.0"
        assert instance.definition_id == place_order_definition.id
        assert instance.history == ()
        assert instance.current_step_id is None
        assert instance.context["order_id"] == "o-1"

    def test_transitions_return_new_values(self, instance: WorkflowInstance) -> None:
        """Test the original instance is untouched by a transition."""
        moved = instance.move_to_step("reserve_inventory")

        assert moved is not instance
        assert instance.current_step_id is None
        assert moved.current_step_id == "reserve_inventory"
        assert moved.has_pending_step

    def test_complete_step_merges_result(self, instance: WorkflowInstance) -> None:
        """Test a mapping result is merged into the context."""
        done = instance.move_to_step("reserve_inventory").complete_step(
            "reserve_inventory",
            {"reservation_id": "res-o-1"},
        )

        assert done.context["reservation_id"] == "res-o-1"
        assert done.context.get_step_result("reserve_inventory") == {"reservation_id": "res-o-1"}
        assert done.history[-1].status == StepStatus.COMPLETED
        assert not done.has_pending_step

    def test_complete_step_scalar_result(self, instance: WorkflowInstance) -> None:
        """Test a scalar result is stored only under the step result key."""
        done = instance.move_to_step("confirm_order").complete_step("confirm_order", True)

        assert done.context.get_step_result("confirm_order") is True
        assert set(done.context) == {"order_id", "amount", "step_confirm_order_result"}

    def test_skip_failed_step(self, instance: WorkflowInstance) -> None:
        """Test a skipped failure keeps the run going."""
        skipped = instance.move_to_step("notify").skip_failed_step("notify", RuntimeError("smtp down"), attempts=2)

        assert skipped.status == WorkflowStatus.RUNNING
        assert skipped.history[-1].error == "smtp down"
        assert skipped.history[-1].attempts == 2
        assert "step_notify_result" in skipped.context
        assert skipped.context.get_step_result("notify") is None

    def test_fail_step(self, instance: WorkflowInstance) -> None:
        """Test a critical failure moves the instance to FAILED."""
        failed = instance.move_to_step("charge_payment").fail_step("charge_payment", "card declined")

        assert failed.status == WorkflowStatus.FAILED
        assert failed.error == "card declined"
        assert failed.completed_at is not None
        assert failed.is_terminal
        assert failed.duration_seconds is not None
        assert failed.history[-1].result is None

    def test_fail_step_keeps_partial_result(self, instance: WorkflowInstance) -> None:
        """Test a failed step can keep a partial result on its history entry."""
        outcomes = [{"step_id": "a", "ok": True, "value": 1, "attempts": 1}]
        failed = instance.move_to_step("fan").fail_step("fan", "sub-steps failed: b", result=outcomes)

        assert failed.history[-1].result == outcomes
        assert failed.history[-1].error == "sub-steps failed: b"
        assert "step_fan_result" not in failed.context

    def test_complete(self, instance: WorkflowInstance) -> None:
        """Test completing a run with every step recorded."""
        done = instance.move_to_step("confirm_order").complete_step("confirm_order", {}).complete()

        assert done.status == WorkflowStatus.COMPLETED
        assert done.current_step_id is None
        assert done.completed_at is not None

    def test_complete_with_pending_step(self, instance: WorkflowInstance) -> None:
        """Test completing is rejected while a step is pending."""
        with pytest.raises(InvalidTransitionError, match="still pending"):
            instance.move_to_step("confirm_order").complete()

    @pytest.mark.parametrize("terminal", ["complete", "fail"])
    def test_terminal_states_are_final(self, instance: WorkflowInstance, terminal: str) -> None:
        """Test no transition leaves a terminal state."""
        finished = instance.complete() if terminal == "complete" else instance.fail("boom")

        with pytest.raises(InvalidTransitionError):
            finished.move_to_step("reserve_inventory")
        with pytest.raises(InvalidTransitionError):
            finished.complete()
        with pytest.raises(InvalidTransitionError):
            finished.fail("again")
        with pytest.raises(InvalidTransitionError):
            finished.complete_step("reserve_inventory", {})

    def test_history_is_append_only(self, instance: WorkflowInstance) -> None:
        """Test history grows by one entry per recorded step."""
        first = instance.move_to_step("a").complete_step("a", {"x": 1})
        second = first.move_to_step("b").skip_failed_step("b", "nope")

        assert second.history[: len(first.history)] == first.history
        assert [entry.step_id for entry in second.history] == ["a", "b"]
        assert second.completed_step_ids() == ["a"]
        assert second.last_entry().step_id == "b"
        assert second.last_entry("a").result == {"x": 1}
        assert second.last_entry("missing") is None
