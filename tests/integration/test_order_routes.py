"""Integration tests for admin order management endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def confirmed_order(order_service, order_fields) -> dict:
    return asyncio.run(order_service.create({**order_fields, "status": "confirmed"}))


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


class TestAdminAccess:
    def test_customer_cannot_list_orders(self, client: TestClient, user_token: str) -> None:
        response = client.get("/api/v1/admin/orders", headers={"Authorization": f"Bearer {user_token}"})
        assert response.status_code == 403

    def test_anonymous_is_rejected(self, client: TestClient) -> None:
        assert client.get("/api/v1/admin/orders/stats").status_code == 401


class TestListOrders:
    def test_filter_by_status(
        self, client: TestClient, order_service, order_fields, confirmed_order: dict, admin_headers: dict
    ) -> None:
        asyncio.run(order_service.create(order_fields))

        all_orders = client.get("/api/v1/admin/orders", headers=admin_headers)
        confirmed = client.get("/api/v1/admin/orders", params={"status": "confirmed"}, headers=admin_headers)

        assert all_orders.json()["total"] == 2
        assert confirmed.json()["total"] == 1
        assert confirmed.json()["items"][0]["id"] == confirmed_order["id"]

    def test_unknown_status_filter(self, client: TestClient, admin_headers: dict) -> None:
        response = client.get("/api/v1/admin/orders", params={"status": "lost"}, headers=admin_headers)
        assert response.status_code == 422

    def test_stats(self, client: TestClient, order_service, order_fields, confirmed_order: dict, admin_headers: dict) -> None:
        asyncio.run(order_service.create(order_fields))

        response = client.get("/api/v1/admin/orders/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_orders"] == 2
        assert data["status_counts"]["pending"] == 1
        assert data["status_counts"]["confirmed"] == 1
        assert data["revenue"] == 68.43


class TestUpdateStatus:
    def test_move_to_production_sends_email(
        self, client: TestClient, confirmed_order: dict, admin_headers: dict, mock_email_service
    ) -> None:
        response = client.patch(
            f"/api/v1/admin/orders/{confirmed_order['id']}/status",
            json={"status": "production"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "production"
        assert data["emails_sent"]["production"]["sent"] is True
        mock_email_service.render_order_email.assert_called_once()
        assert mock_email_service.render_order_email.call_args.args[0] == "production"

    def test_skipping_a_step_is_rejected(self, client: TestClient, confirmed_order: dict, admin_headers: dict) -> None:
        response = client.patch(
            f"/api/v1/admin/orders/{confirmed_order['id']}/status",
            json={"status": "delivered"},
            headers=admin_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_same_status_saves_tracking_without_email(
        self, client: TestClient, order_service, confirmed_order: dict, admin_headers: dict, mock_email_service
    ) -> None:
        asyncio.run(order_service.transition(confirmed_order["id"], "production"))
        asyncio.run(order_service.transition(confirmed_order["id"], "shipped"))

        response = client.patch(
            f"/api/v1/admin/orders/{confirmed_order['id']}/status",
            json={"status": "shipped", "tracking_number": "1Z999", "notes": "Left the warehouse"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["tracking_number"] == "1Z999"
        assert "Left the warehouse" in data["notes"]
        mock_email_service.deliver.assert_not_awaited()

    def test_unknown_order(self, client: TestClient, admin_headers: dict) -> None:
        response = client.patch(
            "/api/v1/admin/orders/missing/status",
            json={"status": "production"},
            headers=admin_headers,
        )
        assert response.status_code == 404


class TestResendEmail:
    def test_resend_records_result(
        self, client: TestClient, confirmed_order: dict, admin_headers: dict, fake_db
    ) -> None:
        response = client.post(
            f"/api/v1/admin/orders/{confirmed_order['id']}/emails/resend",
            json={"email_type": "receipt"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["email_type"] == "receipt"
        assert data["sent"] is True
        assert data["message_id"] == "msg_123"
        assert fake_db.rows("orders")[0]["emails_sent"]["receipt"]["sent"] is True

    def test_resend_unknown_type(self, client: TestClient, confirmed_order: dict, admin_headers: dict) -> None:
        response = client.post(
            f"/api/v1/admin/orders/{confirmed_order['id']}/emails/resend",
            json={"email_type": "refund"},
            headers=admin_headers,
        )
        assert response.status_code == 422
