"""Minimal example of litestar-sagas integration.

This example demonstrates the basic usage of the SagaPlugin with an order
saga: inventory is reserved, the payment is charged behind a rule checkpoint
and the order is confirmed. When a step fails, the completed steps are
compensated in reverse order.

Run with:
    cd examples/minimal
    litestar run

Or:
    uvicorn app:app --reload
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from litestar import Controller, Litestar, get, post

from litestar_sagas import (
    Checkpoint,
    Coordinator,
    DefinitionRegistry,
    PredicateRuleSet,
    RequiredKeysRuleSet,
    SagaPlugin,
    SagaPluginConfig,
    ThresholdRuleSet,
    WorkflowDefinition,
    WorkflowStep,
)
from litestar_sagas.core.events import WorkflowFailed

logger = logging.getLogger(__name__)

# =============================================================================
# Operators
# =============================================================================


class InventoryService:
    """Reserves stock for orders."""

    def __init__(self) -> None:
        self.reservations: dict[str, list[str]] = {}

    async def reserve(self, order_id: str, items: list[str]) -> dict[str, Any]:
        reservation_id = f"RES-{order_id}"
        self.reservations[reservation_id] = list(items)
        return {"reservation_id": reservation_id}

    async def release(self, reservation_id: str) -> None:
        self.reservations.pop(reservation_id, None)


class PaymentGateway:
    """Charges and refunds customers.

    Amounts ending in ``.13`` are declined, which makes it easy to watch the
    compensation run from the API.
    """

    def __init__(self) -> None:
        self.charges: dict[str, float] = {}

    async def charge(self, order_id: str, amount: float) -> dict[str, Any]:
        if round(amount % 1, 2) == 0.13:
            msg = f"Card declined for order {order_id}"
            raise RuntimeError(msg)
        payment_id = f"PAY-{order_id}"
        self.charges[payment_id] = amount
        return {"payment_id": payment_id}

    async def refund(self, payment_id: str) -> None:
        self.charges.pop(payment_id, None)


class ShippingService:
    """Schedules shipments."""

    def ship(self, order_id: str) -> dict[str, Any]:
        return {"tracking_number": f"TRACK-{order_id}"}


# =============================================================================
# Workflow Definition
# =============================================================================

payment_checkpoint = (
    Checkpoint("payment_checks", fail_fast=True)
    .add_rule(RequiredKeysRuleSet(["order_id", "amount", "items"], name="order_complete"), critical=True)
    .add_rule(ThresholdRuleSet("amount", minimum=0.01, maximum=1000, name="amount_limits"), weight=2.0)
    .add_rule(
        PredicateRuleSet("small_basket", lambda ctx: len(ctx.get("items", [])) <= 20, "Too many items"),
        weight=0.5,
    )
)

order_saga = WorkflowDefinition(
    name="order_saga",
    version="1.0.0",
    description="Reserve inventory, charge payment and ship an order",
    steps=[
        WorkflowStep.operator_call(
            "reserve_inventory",
            "inventory",
            "reserve",
            input_mapping=lambda ctx: {"order_id": ctx["order_id"], "items": ctx["items"]},
            compensate_with="release_inventory",
        ),
        WorkflowStep.operator_call(
            "charge_payment",
            "payments",
            "charge",
            input_mapping=lambda ctx: {"order_id": ctx["order_id"], "amount": ctx["amount"]},
            compensate_with="refund_payment",
            checkpoint=payment_checkpoint,
        ),
        WorkflowStep.operator_call(
            "ship_order",
            "shipping",
            "ship",
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


# =============================================================================
# API Controller
# =============================================================================


class OrderController(Controller):
    """REST API for order sagas."""

    path = "/orders"
    tags = ["Orders"]

    @post("/")
    async def place_order(self, data: dict[str, Any], saga_coordinator: Coordinator) -> dict[str, Any]:
        """Run the order saga to completion or compensation."""
        instance = await saga_coordinator.start(order_saga.name, order_saga.version, data)
        return {
            "instance_id": str(instance.id),
            "status": instance.status.value,
            "error": instance.error,
            "data": instance.context.to_dict(),
        }

    @get("/{instance_id:uuid}")
    async def get_order(self, instance_id: UUID, saga_coordinator: Coordinator) -> dict[str, Any]:
        """Get the state and history of an order saga."""
        instance = await saga_coordinator.get_instance(instance_id)
        return {
            "instance_id": str(instance.id),
            "workflow_name": instance.workflow_name,
            "status": instance.status.value,
            "current_step": instance.current_step_id,
            "history": [entry.to_dict() for entry in instance.history],
            "error": instance.error,
        }

    @get("/definition")
    async def get_definition(self, definition_registry: DefinitionRegistry) -> dict[str, Any]:
        """Describe the order saga."""
        definition = definition_registry.get_definition(order_saga.name)
        return {
            "name": definition.name,
            "version": definition.version,
            "description": definition.description,
            "steps": [step.id for step in definition.forward_steps],
            "mermaid": definition.to_mermaid(),
        }


# =============================================================================
# Application
# =============================================================================


def log_failure(event: WorkflowFailed) -> None:
    logger.warning(
        "Order saga %s failed: %s (compensated: %s)",
        event.instance_id,
        event.error,
        ", ".join(event.compensations_run) or "nothing",
    )


# Configure the plugin
plugin_config = SagaPluginConfig(
    operators={
        "inventory": InventoryService(),
        "payments": PaymentGateway(),
        "shipping": ShippingService(),
    },
    definitions=[order_saga],
    subscriptions=[(WorkflowFailed, log_failure)],
)

# Create the Litestar application
app = Litestar(
    route_handlers=[OrderController],
    plugins=[SagaPlugin(config=plugin_config)],
    debug=True,
)


# =============================================================================
# Health Check (for testing)
# =============================================================================


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Add health check to app
app.register(health_check)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
