"""Unit of work wrapping a workflow run.

The unit of work owns the transaction boundary of one run and the compensating
actions registered by its steps. On rollback the compensations are executed in
exact reverse registration order, best effort: a failing compensation is logged
and the sweep continues with the next one.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from litestar_sagas.exceptions import (
    CriticalTransactionError,
    TransactionAlreadyActiveError,
    TransactionNotActiveError,
)

if TYPE_CHECKING:
    from types import TracebackType

    from litestar_sagas.core.protocols import TransactionDriver

__all__ = [
    "CompensationAction",
    "CompensationOutcome",
    "RollbackResult",
    "TransactionContext",
    "UnitOfWork",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensationAction:
    """A zero-argument operation reversing the effect of a step.

    Attributes:
        description: Human-readable description, e.g. ``"release reservation r-9"``.
        action: The reversing operation; sync or async.
        step_id: Id of the step that registered the action, if any.
    """

    description: str
    action: Callable[[], Any | Awaitable[Any]]
    step_id: str | None = None


@dataclass
class TransactionContext:
    """Scratch state of one active transaction.

    Owned by a single in-flight run and discarded after commit or rollback.
    """

    id: UUID = field(default_factory=uuid4)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resources: dict[str, Any] = field(default_factory=dict)
    compensations: list[CompensationAction] = field(default_factory=list)


@dataclass(frozen=True)
class CompensationOutcome:
    """Result of running one compensation during rollback."""

    action: CompensationAction
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RollbackResult:
    """Summary of a rollback sweep.

    Attributes:
        transaction_id: Id of the rolled back transaction.
        outcomes: One outcome per compensation, in execution order.
        driver_error: Error raised by the transaction driver, if any.
    """

    transaction_id: UUID
    outcomes: tuple[CompensationOutcome, ...] = ()
    driver_error: BaseException | None = None

    @property
    def compensations_run(self) -> tuple[str, ...]:
        """Descriptions of the compensations that succeeded."""
        return tuple(outcome.action.description for outcome in self.outcomes if outcome.succeeded)

    @property
    def compensations_failed(self) -> tuple[str, ...]:
        """Descriptions of the compensations that raised."""
        return tuple(outcome.action.description for outcome in self.outcomes if not outcome.succeeded)


class UnitOfWork:
    """Transaction boundary and compensation list for a single workflow run.

    The unit of work is not reentrant. Calling :meth:`commit` or :meth:`rollback`
    without an active transaction logs a warning, or raises
    :class:`TransactionNotActiveError` when ``strict`` is set.

    Example:
        >>> uow = UnitOfWork(driver)
        >>> await uow.begin()
        >>> uow.register_compensation("release reservation r-9", lambda: inventory.release("r-9"))
        >>> result = await uow.rollback()
        >>> result.compensations_run
        ('release reservation r-9',)
        >>> uow.dispose()
    """

    def __init__(self, driver: TransactionDriver | None = None, *, strict: bool = False) -> None:
        """Initialize the unit of work.

        Args:
            driver: Transaction driver of the underlying store, if any.
            strict: Raise instead of logging on inactive commit or rollback.
        """
        self.driver = driver
        self.strict = strict
        self._context: TransactionContext | None = None
        self.last_rollback: RollbackResult | None = None

    @property
    def is_active(self) -> bool:
        """Whether a transaction is open."""
        return self._context is not None

    @property
    def context(self) -> TransactionContext:
        """The active transaction context.

        Raises:
            TransactionNotActiveError: If no transaction is open.
        """
        if self._context is None:
            raise TransactionNotActiveError("access the transaction context")
        return self._context

    @property
    def compensations(self) -> list[CompensationAction]:
        """Registered compensations in registration order."""
        return list(self._context.compensations) if self._context else []

    async def begin(self) -> TransactionContext:
        """Open a transaction.

        Returns:
            The new transaction context.

        Raises:
            TransactionAlreadyActiveError: If a transaction is already open.
        """
        if self._context is not None:
            raise TransactionAlreadyActiveError(self._context.id)
        context = TransactionContext()
        if self.driver is not None:
            await self.driver.begin()
        self._context = context
        logger.debug("Transaction %s started", context.id)
        return context

    async def commit(self) -> None:
        """Commit the open transaction and discard its compensations.

        If the driver fails to commit, the transaction stays active so the caller
        can roll it back.

        Raises:
            TransactionNotActiveError: In strict mode, if no transaction is open.
        """
        if self._context is None:
            self._inactive("commit")
            return
        if self.driver is not None:
            await self.driver.commit()
        logger.debug(
            "Transaction %s committed, discarding %d compensation(s)",
            self._context.id,
            len(self._context.compensations),
        )
        self._context = None

    async def rollback(self) -> RollbackResult | None:
        """Roll back the open transaction and run compensations in reverse order.

        Every compensation is attempted even when earlier ones fail. A failure of
        the driver itself is raised after the sweep as a critical error.

        Returns:
            The rollback summary, or ``None`` if no transaction was open.

        Raises:
            TransactionNotActiveError: In strict mode, if no transaction is open.
            CriticalTransactionError: If the driver failed to roll back.
        """
        if self._context is None:
            self._inactive("rollback")
            return None

        context = self._context
        driver_error: BaseException | None = None
        if self.driver is not None:
            try:
                await self.driver.rollback()
            except Exception as exc:
                driver_error = exc

        outcomes = [await self._run_compensation(action) for action in reversed(context.compensations)]
        self._context = None
        result = RollbackResult(transaction_id=context.id, outcomes=tuple(outcomes), driver_error=driver_error)
        self.last_rollback = result
        logger.info(
            "Transaction %s rolled back: %d compensation(s) run, %d failed",
            context.id,
            len(result.compensations_run),
            len(result.compensations_failed),
        )

        if driver_error is not None:
            logger.critical(
                "Transaction driver failed to roll back transaction %s; manual intervention required",
                context.id,
                exc_info=driver_error,
            )
            raise CriticalTransactionError(context.id, driver_error) from driver_error
        return result

    async def _run_compensation(self, action: CompensationAction) -> CompensationOutcome:
        try:
            result = action.action()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error("Compensation '%s' failed", action.description, exc_info=True)
            return CompensationOutcome(action=action, error=exc)
        logger.info("Compensation '%s' executed", action.description)
        return CompensationOutcome(action=action)

    def register_compensation(
        self,
        description: str,
        action: Callable[[], Any | Awaitable[Any]],
        *,
        step_id: str | None = None,
    ) -> CompensationAction:
        """Register a compensating action on the active transaction.

        Raises:
            TransactionNotActiveError: If no transaction is open.
        """
        compensation = CompensationAction(description=description, action=action, step_id=step_id)
        self.context.compensations.append(compensation)
        return compensation

    def add_resource(self, key: str, value: Any) -> None:
        """Store a named resource on the active transaction.

        Raises:
            TransactionNotActiveError: If no transaction is open.
        """
        self.context.resources[key] = value

    def get_resource(self, key: str, default: Any = None) -> Any:
        """Get a named resource from the active transaction.

        Raises:
            TransactionNotActiveError: If no transaction is open.
        """
        return self.context.resources.get(key, default)

    def dispose(self) -> None:
        """Release the transaction context; safe to call any number of times."""
        if self._context is not None:
            logger.warning(
                "Disposing active transaction %s with %d unexecuted compensation(s)",
                self._context.id,
                len(self._context.compensations),
            )
            self._context = None

    def _inactive(self, operation: str) -> None:
        if self.strict:
            raise TransactionNotActiveError(operation)
        logger.warning("Ignoring %s: no active transaction", operation)

    async def __aenter__(self) -> UnitOfWork:
        await self.begin()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self.is_active:
                if exc_type is None:
                    await self.commit()
                else:
                    await self.rollback()
        finally:
            self.dispose()
