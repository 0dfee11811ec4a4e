"""Tests for workflow definitions, steps, conditions and navigation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from litestar_sagas.core.context import WorkflowContext
from litestar_sagas.core.definition import (
    RetryPolicy,
    TimeoutPolicy,
    WorkflowCondition,
    WorkflowDefinition,
    WorkflowStep,
)
from litestar_sagas.core.types import StepType


def _noop_definition(*steps: WorkflowStep, conditions: tuple[WorkflowCondition, ...] = ()) -> WorkflowDefinition:
    return WorkflowDefinition(name="test", version="1", steps=steps, conditions=conditions)


def _call(step_id: str, **kwargs) -> WorkflowStep:
    return WorkflowStep.operator_call(step_id, "ops", step_id, **kwargs)


@pytest.mark.unit
class TestWorkflowStep:
    """Tests for the step constructors."""

    def test_operator_call(self) -> None:
        """Test creating an operator call step."""
        step = _call("reserve", compensate_with="release", is_required=False)

        assert step.kind == StepType.OPERATOR_CALL
        assert step.operator == "ops"
        assert step.method == "reserve"
        assert step.compensate_with == "release"
        assert step.is_required is False

    def test_parallel_collects_sub_steps(self) -> None:
        """Test parallel sub-steps are stored as a tuple."""
        step = WorkflowStep.parallel("notify", _call("email"), _call("sms"), max_concurrency=1)

        assert step.kind == StepType.PARALLEL
        assert [sub.id for sub in step.sub_steps] == ["email", "sms"]
        assert [s.id for s in step.walk()] == ["notify", "email", "sms"]

    def test_wait_duration(self) -> None:
        """Test fixed and computed wait durations."""
        fixed = WorkflowStep.wait("pause", timedelta(seconds=2))
        computed = WorkflowStep.wait("pause", lambda ctx: timedelta(seconds=ctx["delay"]))

        assert fixed.get_duration(WorkflowContext()) == timedelta(seconds=2)
        assert computed.get_duration(WorkflowContext({"delay": 5})) == timedelta(seconds=5)

    def test_steps_are_immutable(self) -> None:
        """Test a step cannot be modified."""
        step = _call("reserve")

        with pytest.raises(AttributeError):
            step.is_required = False  # type: ignore[misc]


@pytest.mark.unit
class TestPolicies:
    """Tests for retry and timeout policies."""

    def test_retry_delays(self) -> None:
        """Test exponential backoff between attempts."""
        policy = RetryPolicy(max_attempts=4, backoff=timedelta(seconds=1), multiplier=2.0)

        assert policy.delay_before(1) == timedelta(0)
        assert policy.delay_before(2) == timedelta(seconds=1)
        assert policy.delay_before(4) == timedelta(seconds=4)

    def test_retry_requires_one_attempt(self) -> None:
        """Test zero attempts is rejected."""
        with pytest.raises(ValueError, match="at least 1"):
            RetryPolicy(max_attempts=0)

    def test_step_overrides_definition(self) -> None:
        """Test a step's own policies win over the definition's."""
        own = _call("a", timeout=timedelta(seconds=1), retry=RetryPolicy(max_attempts=2))
        inherited = _call("b")
        definition = WorkflowDefinition(
            name="test",
            version="1",
            steps=[own, inherited],
            retry_policy=RetryPolicy(max_attempts=5),
            timeout_policy=TimeoutPolicy(step_timeout=timedelta(seconds=9)),
        )

        assert definition.retry_for(own).max_attempts == 2
        assert definition.retry_for(inherited).max_attempts == 5
        assert definition.timeout_for(own) == timedelta(seconds=1)
        assert definition.timeout_for(inherited) == timedelta(seconds=9)

    def test_timeout_default(self) -> None:
        """Test the coordinator default applies when nothing else is set."""
        step = _call("a")
        definition = _noop_definition(step)

        assert definition.timeout_for(step) is None
        assert definition.timeout_for(step, timedelta(seconds=3)) == timedelta(seconds=3)


@pytest.mark.unit
class TestNavigation:
    """Tests for get_next_step."""

    def test_falls_back_to_declaration_order(self) -> None:
        """Test the following step is chosen without conditions."""
        definition = _noop_definition(_call("a"), _call("b"), _call("c"))

        assert definition.get_next_step("a", WorkflowContext()).id == "b"
        assert definition.get_next_step("b", WorkflowContext()).id == "c"

    def test_last_step_ends_run(self) -> None:
        """Test the last step without a matching condition returns None."""
        definition = _noop_definition(_call("a"), _call("b"))

        assert definition.get_next_step("b", WorkflowContext()) is None

    def test_first_declared_condition_wins(self) -> None:
        """Test overlapping conditions resolve in declaration order."""
        definition = _noop_definition(
            _call("A"),
            _call("B"),
            _call("C"),
            _call("D"),
            conditions=(
                WorkflowCondition(source="A", target="C", predicate=lambda ctx: True),
                WorkflowCondition(source="A", target="D", predicate=lambda ctx: True),
            ),
        )

        assert definition.get_next_step("A", WorkflowContext()).id == "C"

    def test_condition_predicate_false_falls_back(self) -> None:
        """Test a non-matching condition falls back to the next step."""
        definition = _noop_definition(
            _call("a"),
            _call("b"),
            _call("c"),
            conditions=(WorkflowCondition(source="a", target="c", predicate=lambda ctx: ctx.get("skip", False)),),
        )

        assert definition.get_next_step("a", WorkflowContext()).id == "b"
        assert definition.get_next_step("a", WorkflowContext({"skip": True})).id == "c"

    def test_condition_without_predicate_always_matches(self) -> None:
        """Test a condition with no predicate is unconditional."""
        definition = _noop_definition(
            _call("a"),
            _call("b"),
            conditions=(WorkflowCondition(source="b", target="a"),),
        )

        assert definition.get_next_step("b", WorkflowContext()).id == "a"

    def test_navigation_skips_compensation_steps(self) -> None:
        """Test declaration-order fallback never lands on a compensation step."""
        definition = _noop_definition(
            _call("reserve", compensate_with="release"),
            WorkflowStep.compensation("release", "ops", "release"),
            _call("charge"),
        )

        assert definition.get_next_step("reserve", WorkflowContext()).id == "charge"
        assert definition.get_next_step("charge", WorkflowContext()) is None

    def test_navigation_is_deterministic(self) -> None:
        """Test repeated navigation returns the same step."""
        definition = _noop_definition(
            _call("a"),
            _call("b"),
            _call("c"),
            conditions=(WorkflowCondition(source="a", target="c", predicate=lambda ctx: ctx["n"] > 1),),
        )
        context = WorkflowContext({"n": 2})

        assert {definition.get_next_step("a", context).id for _ in range(10)} == {"c"}

    def test_unknown_step_raises(self) -> None:
        """Test navigating from an unknown step raises KeyError."""
        with pytest.raises(KeyError):
            _noop_definition(_call("a")).get_next_step("missing", WorkflowContext())

    def test_first_step(self) -> None:
        """Test the first forward step starts the run."""
        definition = _noop_definition(WorkflowStep.compensation("undo", "ops", "undo"), _call("a"))

        assert definition.first_step().id == "a"
        assert _noop_definition().first_step() is None


@pytest.mark.unit
class TestValidation:
    """Tests for WorkflowDefinition.validate."""

    def test_valid_definition(self, place_order_definition: WorkflowDefinition) -> None:
        """Test a well-formed definition has no errors."""
        assert place_order_definition.validate() == []

    def test_empty_definition(self) -> None:
        """Test a definition without forward steps is rejected."""
        assert "Workflow has no executable steps" in _noop_definition().validate()

    def test_duplicate_step_ids(self) -> None:
        """Test duplicate ids are reported, including inside parallel steps."""
        definition = _noop_definition(_call("a"), WorkflowStep.parallel("p", _call("a")))

        assert "Duplicate step id 'a'" in definition.validate()

    def test_condition_references(self) -> None:
        """Test conditions must reference existing forward steps."""
        definition = _noop_definition(
            _call("a", compensate_with="undo"),
            WorkflowStep.compensation("undo", "ops", "undo"),
            conditions=(
                WorkflowCondition(source="a", target="missing"),
                WorkflowCondition(source="a", target="undo"),
            ),
        )

        errors = definition.validate()
        assert "Condition 0: target step 'missing' not found" in errors
        assert "Condition 1: target step 'undo' is a compensation step" in errors

    def test_compensation_references(self) -> None:
        """Test compensate_with must name a compensation step."""
        definition = _noop_definition(_call("a", compensate_with="b"), _call("b"), _call("c", compensate_with="x"))

        errors = definition.validate()
        assert "Step 'a' compensates with non-compensation step 'b'" in errors
        assert "Step 'c' compensates with unknown step 'x'" in errors

    def test_parallel_requires_sub_steps(self) -> None:
        """Test an empty parallel step is rejected."""
        definition = _noop_definition(WorkflowStep.parallel("p"))

        assert "Parallel step 'p' has no sub-steps" in definition.validate()


@pytest.mark.unit
def test_to_mermaid(place_order_definition: WorkflowDefinition) -> None:
    """Test the Mermaid rendering contains nodes and edges."""
    graph = place_order_definition.to_mermaid()

    assert graph.startswith("graph TD")
    assert "reserve_inventory --> charge_payment" in graph
    assert "charge_payment --> confirm_order" in graph
    assert "reserve_inventory -.-> release_inventory" in graph
