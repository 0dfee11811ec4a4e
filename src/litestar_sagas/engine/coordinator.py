"""Saga coordinator.

This module provides the top-level loop advancing a workflow instance through its
steps until it reaches a terminal state. Every transition is persisted, lifecycle
events are published fire-and-forget, and a critical failure rolls back the run's
unit of work, executing registered compensations in reverse order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from litestar_sagas.core.context import step_result_key
from litestar_sagas.core.events import (
    CompensationFailed,
    CriticalTransactionFailure,
    StepCompleted,
    StepFailed,
    WorkflowCompleted,
    WorkflowFailed,
    WorkflowStarted,
)
from litestar_sagas.core.models import WorkflowInstance
from litestar_sagas.core.types import StepStatus, StepType
from litestar_sagas.engine.executor import StepExecutor
from litestar_sagas.engine.memory import InMemoryEventBus, InMemoryInstanceStore
from litestar_sagas.engine.transaction import UnitOfWork
from litestar_sagas.exceptions import (
    CriticalTransactionError,
    InstanceSerializationError,
    InvalidTransitionError,
    OperatorResolutionError,
    ParallelStepError,
    SagasError,
    StepExecutionError,
    WorkflowAlreadyCompletedError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from datetime import timedelta
    from uuid import UUID

    from litestar_sagas.core.context import WorkflowContext
    from litestar_sagas.core.definition import WorkflowDefinition, WorkflowStep
    from litestar_sagas.core.events import WorkflowEvent
    from litestar_sagas.core.protocols import (
        DefinitionStore,
        EventPublisher,
        InstancePersistence,
        OperatorResolver,
        TransactionDriver,
    )

__all__ = ["Coordinator", "CoordinatorConfig"]

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorConfig:
    """Configuration for the coordinator.

    Attributes:
        strict_transactions: Raise instead of logging when the unit of work is
            committed or rolled back without an active transaction.
        validate_definitions: Validate the definition and resolve every operator
            method it references before a run starts.
        default_step_timeout: Timeout for operator calls when neither the step nor
            the definition sets one.
    """

    strict_transactions: bool = False
    validate_definitions: bool = True
    default_step_timeout: timedelta | None = None


class Coordinator:
    """Drives workflow instances to a terminal state.

    A single coordinator can run many instances concurrently, but each instance is
    only ever advanced by one task at a time.

    Attributes:
        definitions: Store of published definitions.
        operators: Resolver for operator methods.
        persistence: Instance snapshot store, written after every transition.
        events: Lifecycle event publisher.
        driver: Transaction driver wrapped by each run's unit of work.
        config: Coordinator configuration.
        executor: The step executor.

    Example:
        >>> coordinator = Coordinator(definitions, operators)
        >>> instance = await coordinator.start("place_order", "1.0.0", {"order_id": "o-1"})
        >>> instance.status
        <WorkflowStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        definitions: DefinitionStore,
        operators: OperatorResolver,
        persistence: InstancePersistence | None = None,
        events: EventPublisher | None = None,
        driver: TransactionDriver | None = None,
        config: CoordinatorConfig | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            definitions: Store of published definitions.
            operators: Resolver for operator methods.
            persistence: Instance snapshot store. Defaults to an in-memory store.
            events: Event publisher. Defaults to an in-memory event bus.
            driver: Optional transaction driver of the underlying store.
            config: Coordinator configuration.
        """
        self.definitions = definitions
        self.operators = operators
        self.persistence = persistence if persistence is not None else InMemoryInstanceStore()
        self.events = events if events is not None else InMemoryEventBus()
        self.driver = driver
        self.config = config or CoordinatorConfig()
        self.executor = StepExecutor(operators, default_step_timeout=self.config.default_step_timeout)
        self._advancing: set[UUID] = set()
        self._running: dict[UUID, asyncio.Task[WorkflowInstance | None]] = {}

    def get_definition(self, name: str, version: str) -> WorkflowDefinition:
        """Load a published definition.

        Raises:
            WorkflowNotFoundError: If no definition is published under that version.
        """
        definition = self.definitions.find_by_name_and_version(name, version)
        if definition is None:
            raise WorkflowNotFoundError(name, version)
        return definition

    def check_definition(self, definition: WorkflowDefinition) -> None:
        """Validate a definition and resolve every operator method it references.

        Raises:
            WorkflowValidationError: If the definition has authoring errors.
            OperatorResolutionError: If an operator or method is not registered.
        """
        if errors := definition.validate():
            raise WorkflowValidationError(errors)
        for step in definition.all_steps():
            if step.kind in (StepType.OPERATOR_CALL, StepType.COMPENSATION):
                self.operators.resolve(step.operator or "", step.method or "")

    async def start(
        self,
        name: str,
        version: str,
        initial_data: Mapping[str, Any] | None = None,
        *,
        instance_id: UUID | None = None,
    ) -> WorkflowInstance:
        """Start a new run and drive it to a terminal state.

        Args:
            name: Workflow name.
            version: Workflow version; the instance is pinned to it.
            initial_data: Data the context starts with.
            instance_id: Optional explicit instance id.

        Returns:
            The terminal instance snapshot, COMPLETED or FAILED.

        Raises:
            WorkflowNotFoundError: If the definition is not published.
            WorkflowValidationError: If definition validation is enabled and fails.
            OperatorResolutionError: If validation is enabled and an operator
                method is missing.
            CriticalTransactionError: If the transaction driver failed during
                rollback; the failed instance is attached to the error.
        """
        definition = self.get_definition(name, version)
        if self.config.validate_definitions:
            self.check_definition(definition)

        instance = WorkflowInstance.start(definition, initial_data, instance_id=instance_id)
        await self.persistence.save(instance)
        logger.info("Started workflow %s v%s as instance %s", name, version, instance.id)
        await self._publish(
            WorkflowStarted(
                instance_id=instance.id,
                workflow_name=name,
                workflow_version=version,
                initial_data=dict(initial_data or {}),
            )
        )
        return await self._drive(instance, definition, definition.first_step())

    async def resume(self, instance_id: UUID) -> WorkflowInstance:
        """Continue a persisted RUNNING instance under its pinned definition version.

        A step that was entered but never recorded is executed again; otherwise the
        run continues with the step following the last recorded one. Compensations
        of already completed steps are registered again before continuing.

        Args:
            instance_id: Id of the instance to resume.

        Returns:
            The terminal instance snapshot.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is terminal.
            WorkflowNotFoundError: If the pinned definition version is withdrawn.
            InvalidTransitionError: If the instance is already being advanced.
        """
        instance = await self.persistence.find(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        if instance.is_terminal:
            raise WorkflowAlreadyCompletedError(instance.id, str(instance.status))

        definition = self.get_definition(instance.workflow_name, instance.workflow_version)
        if instance.current_step_id is None:
            step = definition.first_step()
        elif instance.has_pending_step:
            step = definition.get_step(instance.current_step_id)
        else:
            step = definition.get_next_step(instance.current_step_id, instance.context)

        logger.info("Resuming instance %s of %s at step %s", instance.id, instance.workflow_name, step and step.id)
        return await self._drive(instance, definition, step, restore=True)

    async def recover(self) -> list[WorkflowInstance]:
        """Resume every RUNNING instance found in persistence.

        Instances that fail to resume are logged and skipped.

        Returns:
            The terminal snapshots of the instances that were resumed.
        """
        recovered: list[WorkflowInstance] = []
        for instance in await self.persistence.find_running():
            if instance.id in self._advancing:
                continue
            try:
                recovered.append(await self.resume(instance.id))
            except SagasError:
                logger.error("Failed to recover instance %s", instance.id, exc_info=True)
        return recovered

    async def recover_in_background(self) -> list[asyncio.Task[WorkflowInstance | None]]:
        """Resume every RUNNING instance as a tracked background task.

        Returns immediately; the tasks are tracked until they finish and can be
        awaited through :attr:`background_tasks` or stopped with :meth:`shutdown`.

        Returns:
            The tasks started by this call.
        """
        started: list[asyncio.Task[WorkflowInstance | None]] = []
        for instance in await self.persistence.find_running():
            if instance.id in self._advancing or instance.id in self._running:
                continue
            task = asyncio.create_task(self._resume_in_background(instance.id))
            self._running[instance.id] = task
            task.add_done_callback(lambda _, instance_id=instance.id: self._running.pop(instance_id, None))
            started.append(task)
        logger.info("Resuming %d running instance(s) in the background", len(started))
        return started

    @property
    def background_tasks(self) -> list[asyncio.Task[WorkflowInstance | None]]:
        """Background resumptions that have not finished yet."""
        return list(self._running.values())

    async def shutdown(self, *, cancel: bool = True) -> None:
        """Stop or drain the background resumptions.

        A cancelled run stays RUNNING in persistence and is picked up by the next
        recovery.

        Args:
            cancel: Cancel the tasks instead of waiting for them to finish.
        """
        tasks = self.background_tasks
        if cancel:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _resume_in_background(self, instance_id: UUID) -> WorkflowInstance | None:
        try:
            return await self.resume(instance_id)
        except Exception:
            logger.exception("Failed to resume instance %s in the background", instance_id)
            return None

    async def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        """Load the latest snapshot of an instance.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
        """
        instance = await self.persistence.find(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return instance

    async def _drive(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: WorkflowStep | None,
        *,
        restore: bool = False,
    ) -> WorkflowInstance:
        if instance.id in self._advancing:
            raise InvalidTransitionError(str(instance.status), str(instance.status), "instance is already running")
        self._advancing.add(instance.id)
        uow = UnitOfWork(self.driver, strict=self.config.strict_transactions)
        try:
            return await self._run(instance, definition, step, uow, restore=restore)
        finally:
            uow.dispose()
            self._advancing.discard(instance.id)

    async def _run(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        step: WorkflowStep | None,
        uow: UnitOfWork,
        *,
        restore: bool,
    ) -> WorkflowInstance:
        try:
            await uow.begin()
            if restore:
                self._restore_compensations(instance, definition, uow)

            while step is not None:
                instance = instance.move_to_step(step.id)
                await self.persistence.save(instance)
                try:
                    result = await self.executor.execute(step, instance, definition, uow)
                except Exception as exc:
                    attempts = exc.attempts if isinstance(exc, StepExecutionError) else 1
                    critical = self._is_critical(step, exc)
                    await self._publish(
                        StepFailed(
                            instance_id=instance.id,
                            step_id=step.id,
                            error=str(exc),
                            error_type=type(exc).__name__,
                            critical=critical,
                        )
                    )
                    if critical:
                        outcomes = None
                        if isinstance(exc, ParallelStepError):
                            outcomes = [outcome.to_dict() for outcome in exc.outcomes]
                        instance = instance.fail_step(step.id, exc, attempts=attempts, result=outcomes)
                        return await self._abort(instance, uow, exc)
                    logger.warning("Optional step %s of instance %s failed: %s", step.id, instance.id, exc)
                    instance = instance.skip_failed_step(step.id, exc, attempts=attempts)
                    await self.persistence.save(instance)
                else:
                    completed = instance.complete_step(step.id, result.value, attempts=result.attempts)
                    try:
                        await self.persistence.save(completed)
                    except InstanceSerializationError as exc:
                        # The unrecordable result is dropped; the step's compensation still runs.
                        await self._publish(
                            StepFailed(
                                instance_id=instance.id,
                                step_id=step.id,
                                error=str(exc),
                                error_type=type(exc).__name__,
                                critical=True,
                            )
                        )
                        instance = instance.fail_step(step.id, exc, attempts=result.attempts)
                        return await self._abort(instance, uow, exc)
                    instance = completed
                    await self._publish(
                        StepCompleted(
                            instance_id=instance.id,
                            step_id=step.id,
                            step_kind=str(step.kind),
                            result=result.value,
                            attempts=result.attempts,
                        )
                    )
                step = definition.get_next_step(step.id, instance.context)

            await uow.commit()
            final_step = instance.current_step_id
            instance = instance.complete()
            await self.persistence.save(instance)
        except CriticalTransactionError:
            raise
        except Exception as exc:
            if instance.is_terminal:
                raise
            logger.error("Instance %s aborted outside of a step", instance.id, exc_info=True)
            instance = instance.fail(exc)
            return await self._abort(instance, uow, exc)

        logger.info("Workflow %s instance %s completed", instance.workflow_name, instance.id)
        await self._publish(
            WorkflowCompleted(
                instance_id=instance.id,
                workflow_name=instance.workflow_name,
                final_step=final_step,
                duration_seconds=instance.duration_seconds,
            )
        )
        return instance

    @staticmethod
    def _is_critical(step: WorkflowStep, error: BaseException) -> bool:
        if step.is_required or isinstance(error, OperatorResolutionError):
            return True
        return isinstance(error, StepExecutionError) and error.critical

    async def _abort(self, instance: WorkflowInstance, uow: UnitOfWork, error: BaseException) -> WorkflowInstance:
        compensations_run: tuple[str, ...] = ()
        compensations_failed: tuple[str, ...] = ()
        if uow.is_active:
            try:
                result = await uow.rollback()
            except CriticalTransactionError as exc:
                exc.instance = instance
                await self.persistence.save(instance)
                await self._publish(
                    CriticalTransactionFailure(
                        instance_id=instance.id,
                        transaction_id=exc.transaction_id,
                        error=str(exc.cause),
                    )
                )
                raise
            if result is not None:
                compensations_run = result.compensations_run
                compensations_failed = result.compensations_failed
                for outcome in result.outcomes:
                    if not outcome.succeeded:
                        await self._publish(
                            CompensationFailed(
                                instance_id=instance.id,
                                description=outcome.action.description,
                                error=str(outcome.error),
                            )
                        )

        await self.persistence.save(instance)
        logger.info(
            "Workflow %s instance %s failed at step %s: %s",
            instance.workflow_name,
            instance.id,
            instance.current_step_id,
            error,
        )
        await self._publish(
            WorkflowFailed(
                instance_id=instance.id,
                workflow_name=instance.workflow_name,
                error=str(error),
                failed_step=instance.current_step_id,
                error_type=type(error).__name__,
                compensations_run=compensations_run,
                compensations_failed=compensations_failed,
            )
        )
        return instance

    def _restore_compensations(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        uow: UnitOfWork,
    ) -> None:
        for entry in instance.history:
            if entry.status != StepStatus.COMPLETED:
                continue
            step = definition.find_step(entry.step_id)
            if step is None:
                continue
            if step.kind == StepType.PARALLEL and isinstance(entry.result, Mapping):
                succeeded = {
                    outcome["step_id"]: outcome.get("value")
                    for outcome in entry.result.get("outcomes", ())
                    if outcome.get("ok")
                }
                for sub_step in step.sub_steps:
                    if sub_step.id in succeeded and sub_step.compensate_with:
                        context = _context_after(instance.context, sub_step.id, succeeded[sub_step.id])
                        self.executor.register_compensation(sub_step, definition, context, uow)
            elif step.compensate_with:
                context = _context_after(instance.context, step.id, entry.result)
                self.executor.register_compensation(step, definition, context, uow)

    async def _publish(self, event: WorkflowEvent) -> None:
        try:
            await self.events.publish(event)
        except Exception:
            logger.warning("Failed to publish %s for instance %s", type(event).__name__, event.instance_id, exc_info=True)


def _context_after(context: WorkflowContext, step_id: str, result: Any) -> WorkflowContext:
    delta: dict[str, Any] = dict(result) if isinstance(result, Mapping) else {}
    delta[step_result_key(step_id)] = result
    return context.merge(delta)
