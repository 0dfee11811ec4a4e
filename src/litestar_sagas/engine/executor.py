"""Step executor.

This module interprets a single workflow step against an instance, dispatching on
the step kind. Operator calls go through the operator registry with the step's
retry and timeout policies applied; successful calls that name a compensation
register it on the run's unit of work.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Union

from litestar_sagas.core.types import StepType
from litestar_sagas.exceptions import (
    CheckpointFailedError,
    ParallelStepError,
    StepExecutionError,
    StepTimeoutError,
)

if TYPE_CHECKING:
    from datetime import timedelta

    from litestar_sagas.core.context import WorkflowContext
    from litestar_sagas.core.definition import WorkflowDefinition, WorkflowStep
    from litestar_sagas.core.models import WorkflowInstance
    from litestar_sagas.core.protocols import OperatorResolver
    from litestar_sagas.core.types import OperatorCallable
    from litestar_sagas.engine.transaction import CompensationAction, UnitOfWork

__all__ = ["Err", "ExecutionResult", "Ok", "StepExecutor", "SubStepOutcome"]

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionResult:
    """Value produced by a step, with the number of attempts it took."""

    value: Any
    attempts: int = 1


@dataclass(frozen=True)
class Ok:
    """Successful outcome of a parallel sub-step."""

    step_id: str
    value: Any
    attempts: int = 1
    ok = True

    def to_dict(self) -> dict[str, Any]:
        return {"step_id": self.step_id, "ok": True, "value": self.value, "attempts": self.attempts}


@dataclass(frozen=True)
class Err:
    """Failed outcome of a parallel sub-step."""

    step_id: str
    error: BaseException
    ok = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "ok": False,
            "error": str(self.error),
            "error_type": type(self.error).__name__,
        }


SubStepOutcome = Union[Ok, Err]


def build_call_arguments(step: WorkflowStep, context: WorkflowContext) -> tuple[tuple[Any, ...], dict[str, Any]]:
    """Apply a step's input mapping to the context.

    Returns:
        Positional and keyword arguments for the operator call.
    """
    if step.input_mapping is None:
        return (context,), {}
    mapped = step.input_mapping(context)
    if isinstance(mapped, Mapping):
        return (), dict(mapped)
    if isinstance(mapped, (tuple, list)):
        return tuple(mapped), {}
    return (mapped,), {}


class StepExecutor:
    """Executes one step of a workflow.

    The executor never changes the instance it is given; it returns the step's
    result and leaves recording it to the coordinator.

    Attributes:
        operators: Resolver for ``(operator, method)`` names.
        default_step_timeout: Timeout for operator calls without a step or
            definition level timeout.
    """

    def __init__(self, operators: OperatorResolver, *, default_step_timeout: timedelta | None = None) -> None:
        self.operators = operators
        self.default_step_timeout = default_step_timeout

    async def execute(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        uow: UnitOfWork,
    ) -> ExecutionResult:
        """Execute ``step`` against the instance's current context.

        Args:
            step: The step to run.
            instance: The instance the step belongs to.
            definition: The definition the instance is pinned to.
            uow: The run's unit of work, receiving compensations.

        Returns:
            The step result.

        Raises:
            StepExecutionError: If the step failed. Subclasses describe
                timeouts, rejected checkpoints and failed parallel fan-outs.
            OperatorResolutionError: If the operator or method is not registered.
        """
        logger.debug("Executing step %s (%s) of instance %s", step.id, step.kind, instance.id)

        if step.kind == StepType.OPERATOR_CALL:
            return await self._execute_operator_call(step, instance, definition, uow)
        if step.kind == StepType.DECISION:
            return await self._execute_decision(step, instance.context)
        if step.kind == StepType.PARALLEL:
            return await self._execute_parallel(step, instance, definition, uow)
        if step.kind == StepType.WAIT:
            return await self._execute_wait(step, instance.context)
        if step.kind == StepType.COMPENSATION:
            raise StepExecutionError(step.id, message="compensation steps only run during rollback")
        raise StepExecutionError(step.id, message=f"unsupported step kind '{step.kind}'")

    async def _execute_operator_call(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        uow: UnitOfWork,
    ) -> ExecutionResult:
        context = instance.context
        if step.checkpoint is not None:
            report = await step.checkpoint.run(context)
            if not report.passed:
                critical = bool(report.metadata.get("critical_failure")) and step.checkpoint.fail_fast
                raise CheckpointFailedError(step.id, report, critical=critical)

        fn = self.operators.resolve(step.operator or "", step.method or "")
        args, kwargs = build_call_arguments(step, context)
        raw, attempts = await self._call_with_retry(step, definition, fn, args, kwargs)
        value = step.output_mapping(raw) if step.output_mapping is not None else raw

        if step.compensate_with is not None:
            post_context = instance.complete_step(step.id, value).context
            self.register_compensation(step, definition, post_context, uow)

        return ExecutionResult(value=value, attempts=attempts)

    async def _call_with_retry(
        self,
        step: WorkflowStep,
        definition: WorkflowDefinition,
        fn: OperatorCallable,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> tuple[Any, int]:
        policy = definition.retry_for(step)
        timeout = definition.timeout_for(step, self.default_step_timeout)
        seconds = timeout.total_seconds() if timeout is not None else None

        error: Exception | None = None
        for attempt in range(1, policy.max_attempts + 1):
            delay = policy.delay_before(attempt).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                return await self._invoke(step, fn, args, kwargs, seconds), attempt
            except Exception as exc:
                error = exc
                if attempt < policy.max_attempts:
                    logger.warning(
                        "Step %s failed on attempt %d/%d: %s",
                        step.id,
                        attempt,
                        policy.max_attempts,
                        exc,
                    )

        if isinstance(error, StepExecutionError):
            error.attempts = policy.max_attempts
            raise error
        raise StepExecutionError(step.id, error, attempts=policy.max_attempts) from error

    @staticmethod
    async def _invoke(
        step: WorkflowStep,
        fn: OperatorCallable,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        # Sync operators run in a worker thread so they neither block the loop
        # nor escape the timeout. A timed out thread is abandoned, not killed.
        if inspect.iscoroutinefunction(fn):
            pending = fn(*args, **kwargs)
        else:
            pending = asyncio.to_thread(fn, *args, **kwargs)
        try:
            result = await asyncio.wait_for(pending, timeout)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.id, timeout or 0.0) from None
        return result

    def build_compensation(
        self,
        step: WorkflowStep,
        definition: WorkflowDefinition,
        context: WorkflowContext,
    ) -> tuple[str, OperatorCallable] | None:
        """Build the compensating action for a completed operator call.

        The compensation step's operator is resolved when the action runs, so a
        missing operator surfaces as a failed compensation during rollback.

        Args:
            step: The completed step naming a compensation.
            definition: The definition holding the compensation step.
            context: The context right after the step completed.

        Returns:
            A description and a zero-argument callable, or ``None`` if the step
            names no known compensation step.
        """
        if step.compensate_with is None:
            return None
        compensation = definition.find_step(step.compensate_with)
        if compensation is None or compensation.kind != StepType.COMPENSATION:
            logger.warning("Step %s names unknown compensation step %s", step.id, step.compensate_with)
            return None

        def action() -> Any:
            fn = self.operators.resolve(compensation.operator or "", compensation.method or "")
            args, kwargs = build_call_arguments(compensation, context)
            return fn(*args, **kwargs)

        description = compensation.description or f"{compensation.id} (compensates {step.id})"
        return description, action

    def register_compensation(
        self,
        step: WorkflowStep,
        definition: WorkflowDefinition,
        context: WorkflowContext,
        uow: UnitOfWork,
    ) -> CompensationAction | None:
        """Register the compensation of a completed step on the unit of work."""
        built = self.build_compensation(step, definition, context)
        if built is None:
            return None
        description, action = built
        return uow.register_compensation(description, action, step_id=step.id)

    async def _execute_decision(self, step: WorkflowStep, context: WorkflowContext) -> ExecutionResult:
        if step.decision_fn is None:
            raise StepExecutionError(step.id, message="decision step has no decision function")
        try:
            decision = step.decision_fn(context)
            if inspect.isawaitable(decision):
                decision = await decision
        except Exception as exc:
            raise StepExecutionError(step.id, exc) from exc
        return ExecutionResult({"decision": decision, "step_id": step.id, "timestamp": _now_iso()})

    async def _execute_wait(self, step: WorkflowStep, context: WorkflowContext) -> ExecutionResult:
        try:
            seconds = max(step.get_duration(context).total_seconds(), 0.0)
        except Exception as exc:
            raise StepExecutionError(step.id, exc) from exc
        logger.debug("Step %s waiting %.3fs", step.id, seconds)
        await asyncio.sleep(seconds)
        return ExecutionResult({"waited_seconds": seconds, "completed_at": _now_iso()})

    async def _execute_parallel(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        uow: UnitOfWork,
    ) -> ExecutionResult:
        semaphore = asyncio.Semaphore(step.max_concurrency) if step.max_concurrency else None

        async def run(sub_step: WorkflowStep) -> SubStepOutcome:
            try:
                if semaphore is None:
                    result = await self.execute(sub_step, instance, definition, uow)
                else:
                    async with semaphore:
                        result = await self.execute(sub_step, instance, definition, uow)
            except Exception as exc:
                logger.debug("Sub-step %s of %s failed: %s", sub_step.id, step.id, exc)
                return Err(step_id=sub_step.id, error=exc)
            return Ok(step_id=sub_step.id, value=result.value, attempts=result.attempts)

        outcomes: list[SubStepOutcome] = list(await asyncio.gather(*(run(sub) for sub in step.sub_steps)))
        failed = [outcome for outcome in outcomes if not outcome.ok]
        required = {sub.id: sub.is_required for sub in step.sub_steps}

        if step.is_required and any(required[outcome.step_id] for outcome in failed):
            raise ParallelStepError(step.id, outcomes)

        return ExecutionResult(
            {
                "outcomes": [outcome.to_dict() for outcome in outcomes],
                "succeeded": len(outcomes) - len(failed),
                "failed": len(failed),
            }
        )
