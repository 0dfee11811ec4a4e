"""Integration tests for the example application.

Tests the minimal example app using Litestar's test client to verify
end-to-end functionality.
"""

from __future__ import annotations

import pytest
from litestar.testing import AsyncTestClient

from litestar_sagas import WorkflowStatus

ORDER = {"order_id": "A-100", "amount": 40.0, "items": ["sku-1", "sku-2"]}


# =============================================================================
# Minimal App Tests
# =============================================================================


@pytest.mark.integration
class TestMinimalApp:
    """Integration tests for the minimal example app."""

    @pytest.fixture
    def minimal_app(self):
        """Import and return the minimal example app."""
        from examples.minimal.app import app

        return app

    async def test_health_check(self, minimal_app):
        """Test health check endpoint."""
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.get("/health")

            assert response.status_code == 200
            assert response.json() == {"status": "healthy"}

    async def test_get_definition(self, minimal_app):
        """Test describing the order saga."""
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.get("/orders/definition")

            assert response.status_code == 200
            data = response.json()
            assert data["name"] == "order_saga"
            assert data["steps"] == ["reserve_inventory", "charge_payment", "ship_order"]
            assert "reserve_inventory -.-> release_inventory" in data["mermaid"]

    async def test_place_order(self, minimal_app):
        """Test a successful order runs every step."""
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.post("/orders", json=ORDER)

            assert response.status_code == 201
            data = response.json()
            assert data["status"] == WorkflowStatus.COMPLETED.value
            assert data["data"]["tracking_number"] == "TRACK-A-100"

            status = await client.get(f"/orders/{data['instance_id']}")
            history = status.json()["history"]
            assert [entry["step_id"] for entry in history] == ["reserve_inventory", "charge_payment", "ship_order"]

    async def test_declined_payment_is_compensated(self, minimal_app):
        """Test a declined charge releases the reserved inventory."""
        from examples.minimal.app import plugin_config

        inventory = plugin_config.operators["inventory"]

        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.post("/orders", json={**ORDER, "order_id": "A-101", "amount": 10.13})

            data = response.json()
            assert data["status"] == WorkflowStatus.FAILED.value
            assert "Card declined" in data["error"]
            assert "RES-A-101" not in inventory.reservations

    async def test_checkpoint_blocks_large_order(self, minimal_app):
        """Test the payment checkpoint rejects amounts over the limit."""
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.post("/orders", json={**ORDER, "order_id": "A-102", "amount": 5000})

            data = response.json()
            assert data["status"] == WorkflowStatus.FAILED.value
            assert "checkpoint 'payment_checks' failed" in data["error"]
