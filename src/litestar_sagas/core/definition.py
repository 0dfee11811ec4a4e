"""Workflow definition, step and condition structures.

This module provides the immutable data structures describing a saga: the
ordered steps, the conditions that branch between them, and the retry and
timeout policies applied while executing them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from litestar_sagas.core.types import InputMapping, OutputMapping, Predicate, StepType

if TYPE_CHECKING:
    from litestar_sagas.core.context import WorkflowContext
    from litestar_sagas.rules.checkpoint import Checkpoint

__all__ = ["RetryPolicy", "TimeoutPolicy", "WorkflowCondition", "WorkflowDefinition", "WorkflowStep"]


@dataclass(frozen=True)
class RetryPolicy:
    """How often an operator call is retried before it counts as failed.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        backoff: Delay before the second attempt.
        multiplier: Factor applied to the delay after every retry.

    Example:
        >>> policy = RetryPolicy(max_attempts=3, backoff=timedelta(seconds=1), multiplier=2.0)
        >>> [policy.delay_before(n).total_seconds() for n in (2, 3)]
        [1.0, 2.0]
    """

    max_attempts: int = 1
    backoff: timedelta = timedelta(0)
    multiplier: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)

    def delay_before(self, attempt: int) -> timedelta:
        """Return the delay to wait before the given (1-based) attempt."""
        if attempt <= 1:
            return timedelta(0)
        return self.backoff * (self.multiplier ** (attempt - 2))


@dataclass(frozen=True)
class TimeoutPolicy:
    """Default per-step timeout for operator calls.

    Attributes:
        step_timeout: Maximum duration of a single operator call attempt, or
            ``None`` for no limit.
    """

    step_timeout: timedelta | None = None


@dataclass(frozen=True)
class WorkflowStep:
    """One unit of work in a workflow definition.

    Steps are immutable. Use the kind-specific constructors rather than building
    a step by hand.

    Attributes:
        id: Unique identifier of the step within its definition.
        kind: What the step does when executed.
        operator: Registered operator name (OPERATOR_CALL, COMPENSATION).
        method: Method name on the operator (OPERATOR_CALL, COMPENSATION).
        input_mapping: Maps the context to call arguments. A mapping result is
            passed as keyword arguments, a tuple or list as positional arguments,
            anything else as a single argument. Defaults to passing the context.
        output_mapping: Maps the call result to the value merged into the context.
        is_required: Whether a failure of this step aborts the run.
        description: Human-readable description.
        decision_fn: Decision function (DECISION).
        duration: Fixed duration or callable returning one (WAIT).
        sub_steps: Embedded steps run concurrently (PARALLEL).
        max_concurrency: Upper bound on concurrently running sub-steps (PARALLEL).
        compensate_with: Id of the COMPENSATION step that reverses this step.
        checkpoint: Rule checkpoint that must pass before the operator is invoked.
        timeout: Per-step timeout overriding the definition's timeout policy.
        retry: Per-step retry policy overriding the definition's retry policy.
    """

    id: str
    kind: StepType
    operator: str | None = None
    method: str | None = None
    input_mapping: InputMapping | None = None
    output_mapping: OutputMapping | None = None
    is_required: bool = True
    description: str = ""
    decision_fn: Callable[[WorkflowContext], Any] | None = None
    duration: timedelta | Callable[[WorkflowContext], timedelta] | None = None
    sub_steps: tuple[WorkflowStep, ...] = ()
    max_concurrency: int | None = None
    compensate_with: str | None = None
    checkpoint: Checkpoint | None = None
    timeout: timedelta | None = None
    retry: RetryPolicy | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.sub_steps, tuple):
            object.__setattr__(self, "sub_steps", tuple(self.sub_steps))

    @classmethod
    def operator_call(
        cls,
        id: str,  # noqa: A002
        operator: str,
        method: str,
        *,
        input_mapping: InputMapping | None = None,
        output_mapping: OutputMapping | None = None,
        is_required: bool = True,
        compensate_with: str | None = None,
        checkpoint: Checkpoint | None = None,
        timeout: timedelta | None = None,
        retry: RetryPolicy | None = None,
        description: str = "",
    ) -> WorkflowStep:
        """Create a step that invokes ``operator.method``.

        Example:
            >>> step = WorkflowStep.operator_call(
            ...     "reserve",
            ...     "inventory",
            ...     "reserve",
            ...     input_mapping=lambda ctx: {"sku": ctx["sku"]},
            ...     compensate_with="release",
            ... )
        """
        return cls(
            id=id,
            kind=StepType.OPERATOR_CALL,
            operator=operator,
            method=method,
            input_mapping=input_mapping,
            output_mapping=output_mapping,
            is_required=is_required,
            compensate_with=compensate_with,
            checkpoint=checkpoint,
            timeout=timeout,
            retry=retry,
            description=description,
        )

    @classmethod
    def decision(
        cls,
        id: str,  # noqa: A002
        decision_fn: Callable[[WorkflowContext], Any],
        *,
        is_required: bool = True,
        description: str = "",
    ) -> WorkflowStep:
        """Create a step that records the value of ``decision_fn`` in the context."""
        return cls(
            id=id,
            kind=StepType.DECISION,
            decision_fn=decision_fn,
            is_required=is_required,
            description=description,
        )

    @classmethod
    def parallel(
        cls,
        id: str,  # noqa: A002
        *sub_steps: WorkflowStep,
        max_concurrency: int | None = None,
        is_required: bool = True,
        description: str = "",
    ) -> WorkflowStep:
        """Create a step that runs ``sub_steps`` concurrently and joins on all of them."""
        return cls(
            id=id,
            kind=StepType.PARALLEL,
            sub_steps=sub_steps,
            max_concurrency=max_concurrency,
            is_required=is_required,
            description=description,
        )

    @classmethod
    def wait(
        cls,
        id: str,  # noqa: A002
        duration: timedelta | Callable[[WorkflowContext], timedelta],
        *,
        is_required: bool = True,
        description: str = "",
    ) -> WorkflowStep:
        """Create a step that suspends the run for ``duration``."""
        return cls(id=id, kind=StepType.WAIT, duration=duration, is_required=is_required, description=description)

    @classmethod
    def compensation(
        cls,
        id: str,  # noqa: A002
        operator: str,
        method: str,
        *,
        input_mapping: InputMapping | None = None,
        description: str = "",
    ) -> WorkflowStep:
        """Create a step that reverses another step; it only runs during rollback."""
        return cls(
            id=id,
            kind=StepType.COMPENSATION,
            operator=operator,
            method=method,
            input_mapping=input_mapping,
            description=description,
        )

    def get_duration(self, context: WorkflowContext) -> timedelta:
        """Get the wait duration for a WAIT step.

        Args:
            context: The workflow execution context.

        Returns:
            The duration to wait.
        """
        if self.duration is None:
            return timedelta(0)
        if isinstance(self.duration, timedelta):
            return self.duration
        return self.duration(context)

    def walk(self) -> Iterator[WorkflowStep]:
        """Yield this step followed by all nested sub-steps, depth first."""
        yield self
        for sub_step in self.sub_steps:
            yield from sub_step.walk()


@dataclass(frozen=True)
class WorkflowCondition:
    """A conditional transition from one step to another.

    Conditions are evaluated in declaration order and the first one whose source
    matches and whose predicate holds decides the next step.

    Attributes:
        source: Id of the step the transition leaves from.
        target: Id of the step to continue with.
        predicate: Condition over the context; ``None`` always matches.
        label: Optional label used when rendering the graph.

    Example:
        >>> condition = WorkflowCondition(
        ...     source="score",
        ...     target="manual_review",
        ...     predicate=lambda ctx: ctx.get("decision") == "review",
        ... )
    """

    source: str
    target: str
    predicate: Predicate | None = None
    label: str | None = None

    def evaluate(self, context: WorkflowContext) -> bool:
        """Evaluate the predicate against the context.

        Args:
            context: The current workflow context.

        Returns:
            True if the predicate holds or there is no predicate.
        """
        if self.predicate is None:
            return True
        return bool(self.predicate(context))


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable, named and versioned description of a saga.

    A definition is never mutated once published; a change is published as a
    new version.

    Attributes:
        name: Workflow name.
        version: Version string.
        steps: Steps in declaration order, including COMPENSATION steps.
        conditions: Branching conditions in declaration order.
        description: Human-readable description.
        retry_policy: Default retry policy for operator calls.
        timeout_policy: Default timeout policy for operator calls.
        id: Identity of this definition.

    Example:
        >>> definition = WorkflowDefinition(
        ...     name="place_order",
        ...     version="1.0.0",
        ...     steps=[
        ...         WorkflowStep.operator_call("reserve", "inventory", "reserve", compensate_with="release"),
        ...         WorkflowStep.operator_call("charge", "payments", "charge"),
        ...         WorkflowStep.compensation("release", "inventory", "release"),
        ...     ],
        ... )
        >>> definition.first_step().id
        'reserve'
    """

    name: str
    version: str
    steps: tuple[WorkflowStep, ...]
    conditions: tuple[WorkflowCondition, ...] = ()
    description: str = ""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_policy: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if not isinstance(self.steps, tuple):
            object.__setattr__(self, "steps", tuple(self.steps))
        if not isinstance(self.conditions, tuple):
            object.__setattr__(self, "conditions", tuple(self.conditions))

    @property
    def forward_steps(self) -> tuple[WorkflowStep, ...]:
        """Steps visited during forward execution, in declaration order."""
        return tuple(step for step in self.steps if step.kind != StepType.COMPENSATION)

    def first_step(self) -> WorkflowStep | None:
        """Return the step a new run starts with, or ``None`` for an empty definition."""
        forward = self.forward_steps
        return forward[0] if forward else None

    def get_step(self, step_id: str) -> WorkflowStep:
        """Get a top-level step by id.

        Args:
            step_id: The step id.

        Returns:
            The step.

        Raises:
            KeyError: If no top-level step has this id.
        """
        for step in self.steps:
            if step.id == step_id:
                return step
        msg = f"Step '{step_id}' not found in workflow '{self.name}'"
        raise KeyError(msg)

    def has_step(self, step_id: str) -> bool:
        """Check whether a top-level step with this id exists."""
        return any(step.id == step_id for step in self.steps)

    def get_next_step(self, current_step_id: str, context: WorkflowContext) -> WorkflowStep | None:
        """Get the step to execute after ``current_step_id``.

        Conditions are scanned in declaration order and the first one leaving
        ``current_step_id`` whose predicate holds wins. Without a match, the next
        forward step in declaration order follows. ``None`` means the run is done.

        Args:
            current_step_id: Id of the step that just finished.
            context: The context produced by that step.

        Returns:
            The next step, or ``None`` if the workflow is complete.

        Raises:
            KeyError: If ``current_step_id`` is not a forward step of this definition.

        Example:
            >>> definition.get_next_step("reserve", context).id
            'charge'
        """
        for condition in self.conditions:
            if condition.source == current_step_id and condition.evaluate(context):
                return self.get_step(condition.target)

        forward = self.forward_steps
        for index, step in enumerate(forward):
            if step.id == current_step_id:
                return forward[index + 1] if index + 1 < len(forward) else None

        msg = f"Step '{current_step_id}' is not a forward step of workflow '{self.name}'"
        raise KeyError(msg)

    def all_steps(self) -> Iterator[WorkflowStep]:
        """Yield every step including nested sub-steps, depth first."""
        for step in self.steps:
            yield from step.walk()

    def find_step(self, step_id: str) -> WorkflowStep | None:
        """Find a step by id anywhere in the definition, including sub-steps."""
        for step in self.all_steps():
            if step.id == step_id:
                return step
        return None

    def retry_for(self, step: WorkflowStep) -> RetryPolicy:
        """Return the retry policy that applies to ``step``."""
        return step.retry or self.retry_policy

    def timeout_for(self, step: WorkflowStep, default: timedelta | None = None) -> timedelta | None:
        """Return the timeout that applies to ``step``, if any."""
        return step.timeout or self.timeout_policy.step_timeout or default

    def validate(self) -> list[str]:
        """Validate the definition for authoring errors.

        Returns:
            List of validation error messages. Empty list if valid.

        Example:
            >>> errors = definition.validate()
            >>> if errors:
            ...     print("Validation errors:", errors)
        """
        errors: list[str] = []

        if not self.forward_steps:
            errors.append("Workflow has no executable steps")

        seen: set[str] = set()
        for step in self.all_steps():
            if step.id in seen:
                errors.append(f"Duplicate step id '{step.id}'")
            seen.add(step.id)

        for step in self.all_steps():
            errors.extend(self._validate_step(step))

        compensation_ids = {step.id for step in self.steps if step.kind == StepType.COMPENSATION}
        for i, condition in enumerate(self.conditions):
            for role, step_id in (("source", condition.source), ("target", condition.target)):
                if not self.has_step(step_id):
                    errors.append(f"Condition {i}: {role} step '{step_id}' not found")
                elif step_id in compensation_ids:
                    errors.append(f"Condition {i}: {role} step '{step_id}' is a compensation step")

        return errors

    def _validate_step(self, step: WorkflowStep) -> list[str]:
        errors: list[str] = []
        if step.kind in (StepType.OPERATOR_CALL, StepType.COMPENSATION) and not (step.operator and step.method):
            errors.append(f"Step '{step.id}' must name an operator and a method")
        if step.kind == StepType.DECISION and step.decision_fn is None:
            errors.append(f"Decision step '{step.id}' has no decision function")
        if step.kind == StepType.WAIT and step.duration is None:
            errors.append(f"Wait step '{step.id}' has no duration")
        if step.kind == StepType.PARALLEL:
            if not step.sub_steps:
                errors.append(f"Parallel step '{step.id}' has no sub-steps")
            if step.max_concurrency is not None and step.max_concurrency < 1:
                errors.append(f"Parallel step '{step.id}' must allow at least one concurrent sub-step")
            errors.extend(
                f"Parallel step '{step.id}' cannot embed compensation step '{sub.id}'"
                for sub in step.sub_steps
                if sub.kind == StepType.COMPENSATION
            )
        if step.compensate_with is not None:
            target = self.find_step(step.compensate_with)
            if target is None:
                errors.append(f"Step '{step.id}' compensates with unknown step '{step.compensate_with}'")
            elif target.kind != StepType.COMPENSATION:
                errors.append(f"Step '{step.id}' compensates with non-compensation step '{step.compensate_with}'")
        return errors

    def to_mermaid(self) -> str:
        """Generate a MermaidJS graph representation of the workflow.

        Declaration-order fallbacks are drawn as plain arrows, conditions as
        labelled arrows and compensations as dotted arrows.

        Returns:
            MermaidJS graph definition as a string.

        Example:
            >>> print(definition.to_mermaid())
            graph TD
                reserve[Reserve]
                charge[Charge]
                release>Release]
                reserve --> charge
                reserve -.-> release
        """
        lines = ["graph TD"]
        shapes = {
            StepType.DECISION: ("{", "}"),
            StepType.PARALLEL: ("[[", "]]"),
            StepType.WAIT: ("([", "])"),
            StepType.COMPENSATION: (">", "]"),
        }

        for step in self.steps:
            start, end = shapes.get(step.kind, ("[", "]"))
            lines.append(f"    {step.id}{start}{step.id.replace('_', ' ').title()}{end}")

        for condition in self.conditions:
            label = (condition.label or "conditional").replace("'", "").replace('"', "")
            lines.append(f"    {condition.source} -->|{label}| {condition.target}")

        forward = self.forward_steps
        lines.extend(f"    {current.id} --> {following.id}" for current, following in zip(forward, forward[1:]))

        for step in self.steps:
            lines.extend(f"    {step.id} --> {sub.id}" for sub in step.sub_steps)
            if step.compensate_with:
                lines.append(f"    {step.id} -.-> {step.compensate_with}")

        return "\n".join(lines)
