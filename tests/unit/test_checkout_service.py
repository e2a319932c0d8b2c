"""Unit tests for CheckoutService."""

from unittest.mock import patch

import pytest
import stripe

from src.api.middleware.error_handler import ExternalServiceError, ValidationError


@pytest.fixture
def checkout_request(shipping_address) -> dict:
    return {
        "customer_name": "Ada Lovelace",
        "email": "Ada@Example.com",
        "phone": "+14155550100",
        "card_config": {"first_name": "Ada", "last_name": "Lovelace", "quantity": 2, "color": "gold"},
        "shipping_address": shipping_address,
        "voucher_code": None,
    }


@pytest.fixture
def mock_intent_create():
    with patch.object(
        stripe.PaymentIntent,
        "create",
        return_value={"id": "pi_123", "client_secret": "pi_123_secret_abc"},
    ) as mock_create:
        yield mock_create


class TestCreateCheckout:
    @pytest.mark.asyncio
    async def test_creates_order_and_intent(self, checkout_service, checkout_request, mock_intent_create, fake_db) -> None:
        result = await checkout_service.create_checkout(checkout_request)

        order = fake_db.rows("orders")[0]
        assert result["order_id"] == order["id"]
        assert result["client_secret"] == "pi_123_secret_abc"
        assert result["pricing"]["total"] == 68.43
        assert order["status"] == "pending"
        assert order["payment_id"] == "pi_123"
        assert order["card_config"]["color"] == "gold"

        kwargs = mock_intent_create.call_args.kwargs
        assert kwargs["amount"] == 6843
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"]["order_id"] == order["id"]
        assert kwargs["metadata"]["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_guest_checkout_upserts_customer(self, checkout_service, checkout_request, mock_intent_create, fake_db) -> None:
        await checkout_service.create_checkout(checkout_request)

        user = fake_db.rows("users")[0]
        assert user["email"] == "ada@example.com"
        assert fake_db.rows("orders")[0]["user_id"] == user["id"]

    @pytest.mark.asyncio
    async def test_logged_in_user_is_kept(self, checkout_service, checkout_request, mock_intent_create, fake_db) -> None:
        await checkout_service.create_checkout(checkout_request, user_id="user-42")

        assert fake_db.rows("orders")[0]["user_id"] == "user-42"
        assert fake_db.rows("users") == []

    @pytest.mark.asyncio
    async def test_applies_voucher(self, checkout_service, checkout_request, mock_intent_create, fake_db) -> None:
        fake_db.insert_row(
            "vouchers",
            {"code": "FLAT10", "discount_type": "fixed", "discount_value": 10, "is_active": True, "used_count": 0},
        )

        result = await checkout_service.create_checkout({**checkout_request, "voucher_code": "flat10"})

        assert result["pricing"]["discount"] == 10.0
        assert result["pricing"]["total"] == 58.43
        order = fake_db.rows("orders")[0]
        assert order["voucher_code"] == "FLAT10"
        assert order["voucher_discount"] == 10.0
        assert mock_intent_create.call_args.kwargs["amount"] == 5843

    @pytest.mark.asyncio
    async def test_rejected_voucher(self, checkout_service, checkout_request, mock_intent_create, fake_db) -> None:
        with pytest.raises(ValidationError, match="Voucher not found"):
            await checkout_service.create_checkout({**checkout_request, "voucher_code": "NOPE"})

        assert fake_db.rows("orders") == []
        mock_intent_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_stripe_failure_cancels_order(self, checkout_service, checkout_request, fake_db) -> None:
        with patch.object(stripe.PaymentIntent, "create", side_effect=stripe.CardError("declined", None, "card_declined")):
            with pytest.raises(ExternalServiceError):
                await checkout_service.create_checkout(checkout_request)

        assert fake_db.rows("orders")[0]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_requires_stripe_key(self, checkout_service, checkout_request) -> None:
        checkout_service.settings = checkout_service.settings.model_copy(update={"stripe_secret_key": ""})
        with pytest.raises(ValidationError, match="Stripe is not configured"):
            await checkout_service.create_checkout(checkout_request)
