"""Shared test fixtures for litestar-sagas test suite."""

from __future__ import annotations

from typing import Any

import pytest

from litestar_sagas.core.definition import WorkflowDefinition, WorkflowStep
from litestar_sagas.core.events import WorkflowEvent
from litestar_sagas.engine.coordinator import Coordinator, CoordinatorConfig
from litestar_sagas.engine.memory import InMemoryEventBus, InMemoryInstanceStore
from litestar_sagas.engine.registry import DefinitionRegistry, OperatorRegistry


class CallLog:
    """Ordered record of every operator call made during a test."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def record(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class InventoryService:
    """Fake inventory operator."""

    def __init__(self, log: CallLog) -> None:
        self.log = log
        self.reserved: set[str] = set()

    async def reserve(self, order_id: str) -> dict[str, Any]:
        reservation_id = f"res-{order_id}"
        self.reserved.add(reservation_id)
        self.log.record("inventory.reserve", order_id)
        return {"reservation_id": reservation_id}

    async def release(self, reservation_id: str) -> None:
        self.reserved.discard(reservation_id)
        self.log.record("inventory.release", reservation_id)


class PaymentService:
    """Fake payment operator; ``fail`` makes every charge raise."""

    def __init__(self, log: CallLog) -> None:
        self.log = log
        self.fail = False

    async def charge(self, order_id: str, amount: float) -> dict[str, Any]:
        self.log.record("payments.charge", order_id)
        if self.fail:
            msg = "card declined"
            raise RuntimeError(msg)
        return {"payment_id": f"pay-{order_id}", "amount_charged": amount}

    def refund(self, payment_id: str) -> None:
        self.log.record("payments.refund", payment_id)


class OrderService:
    """Fake order operator."""

    def __init__(self, log: CallLog) -> None:
        self.log = log

    def confirm(self, order_id: str) -> dict[str, Any]:
        self.log.record("orders.confirm", order_id)
        return {"confirmed": True}


@pytest.fixture
def call_log() -> CallLog:
    """Fresh call log."""
    return CallLog()


@pytest.fixture
def inventory(call_log: CallLog) -> InventoryService:
    return InventoryService(call_log)


@pytest.fixture
def payments(call_log: CallLog) -> PaymentService:
    return PaymentService(call_log)


@pytest.fixture
def orders(call_log: CallLog) -> OrderService:
    return OrderService(call_log)


@pytest.fixture
def operator_registry(
    inventory: InventoryService,
    payments: PaymentService,
    orders: OrderService,
) -> OperatorRegistry:
    """Operator registry with the fake order services registered.

    Returns:
        OperatorRegistry instance
    """
    registry = OperatorRegistry()
    registry.register_operator("inventory", inventory)
    registry.register_operator("payments", payments)
    registry.register_operator("orders", orders)
    return registry


@pytest.fixture
def place_order_definition() -> WorkflowDefinition:
    """Three-step order saga: reserve inventory, charge payment, confirm order.

    Returns:
        WorkflowDefinition instance
    """
    return WorkflowDefinition(
        name="place_order",
        version="1.0.0",
        description="Reserve, charge and confirm an order",
        steps=[
            WorkflowStep.operator_call(
                "reserve_inventory",
                "inventory",
                "reserve",
                input_mapping=lambda ctx: {"order_id": ctx["order_id"]},
                compensate_with="release_inventory",
            ),
            WorkflowStep.operator_call(
                "charge_payment",
                "payments",
                "charge",
                input_mapping=lambda ctx: {"order_id": ctx["order_id"], "amount": ctx["amount"]},
                compensate_with="refund_payment",
            ),
            WorkflowStep.operator_call(
                "confirm_order",
                "orders",
                "confirm",
                input_mapping=lambda ctx: ctx["order_id"],
            ),
            WorkflowStep.compensation(
                "release_inventory",
                "inventory",
                "release",
                input_mapping=lambda ctx: ctx["reservation_id"],
                description="release inventory",
            ),
            WorkflowStep.compensation(
                "refund_payment",
                "payments",
                "refund",
                input_mapping=lambda ctx: ctx["payment_id"],
                description="refund payment",
            ),
        ],
    )


@pytest.fixture
def definition_registry(place_order_definition: WorkflowDefinition) -> DefinitionRegistry:
    """Definition registry with the order saga published."""
    registry = DefinitionRegistry()
    registry.publish(place_order_definition)
    return registry


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def published_events(event_bus: InMemoryEventBus) -> list[WorkflowEvent]:
    """Every event published on ``event_bus``, in order."""
    events: list[WorkflowEvent] = []
    event_bus.subscribe(WorkflowEvent, events.append)
    return events


@pytest.fixture
def instance_store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def coordinator(
    definition_registry: DefinitionRegistry,
    operator_registry: OperatorRegistry,
    instance_store: InMemoryInstanceStore,
    event_bus: InMemoryEventBus,
) -> Coordinator:
    """Coordinator wired to the in-memory collaborators.

    Returns:
        Coordinator instance
    """
    return Coordinator(
        definitions=definition_registry,
        operators=operator_registry,
        persistence=instance_store,
        events=event_bus,
        config=CoordinatorConfig(),
    )


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
