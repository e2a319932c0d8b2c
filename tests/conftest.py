"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from tenacity import wait_none

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("ADMIN_PIN", "4321")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")

from tests.fakes import FakeSupabaseClient  # noqa: E402


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = 1_800_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Any:
    """Settings built from the test environment, independent of the cache."""
    from src.core.config import Settings

    return Settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_db() -> FakeSupabaseClient:
    """In-memory Supabase client."""
    return FakeSupabaseClient()


@pytest.fixture
def code_store(settings: Any, clock: FakeClock) -> Any:
    from src.services.code_store import CodeStore

    return CodeStore(settings=settings, clock=clock)


@pytest.fixture
def session_store(settings: Any, clock: FakeClock) -> Any:
    from src.services.session_store import SessionStore

    return SessionStore(settings=settings, clock=clock)


@pytest.fixture
def mock_email_service() -> MagicMock:
    """Email service that accepts every message."""
    service = MagicMock()
    service.is_configured = True
    service.render_order_email.return_value = ("Subject", "<p>Body</p>")
    service.deliver = AsyncMock(return_value="msg_123")
    service.send_code_email = AsyncMock(return_value={"success": True, "message_id": "msg_code", "error": None})
    return service


@pytest.fixture
def mock_sms_service() -> MagicMock:
    service = MagicMock()
    service.is_configured = True
    service.send_code = AsyncMock(return_value={"success": True, "message_id": "SM123", "error": None})
    return service


@pytest.fixture
def order_service(fake_db: FakeSupabaseClient, settings: Any) -> Any:
    from src.services.order_service import OrderService

    return OrderService(fake_db, settings)


@pytest.fixture
def voucher_service(fake_db: FakeSupabaseClient) -> Any:
    from src.services.voucher_service import VoucherService

    return VoucherService(fake_db)


@pytest.fixture
def user_service(fake_db: FakeSupabaseClient) -> Any:
    from src.services.user_service import UserService

    return UserService(fake_db)


@pytest.fixture
def notification_service(mock_email_service: MagicMock, order_service: Any, settings: Any) -> Any:
    from src.services.notification_service import NotificationService

    return NotificationService(
        email_service=mock_email_service,
        order_service=order_service,
        settings=settings,
        wait=wait_none(),
    )


@pytest.fixture
def payment_service(
    fake_db: FakeSupabaseClient,
    order_service: Any,
    voucher_service: Any,
    notification_service: Any,
    settings: Any,
) -> Any:
    from src.services.payment_service import PaymentService

    return PaymentService(fake_db, order_service, voucher_service, notification_service, settings)


@pytest.fixture
def checkout_service(order_service: Any, voucher_service: Any, user_service: Any, settings: Any) -> Any:
    from src.services.checkout_service import CheckoutService

    return CheckoutService(order_service, voucher_service, user_service, settings)


@pytest.fixture
def verification_service(
    code_store: Any,
    session_store: Any,
    mock_email_service: MagicMock,
    mock_sms_service: MagicMock,
    user_service: Any,
    settings: Any,
) -> Any:
    from src.services.verification_service import VerificationService

    return VerificationService(
        code_store=code_store,
        session_store=session_store,
        email_service=mock_email_service,
        sms_service=mock_sms_service,
        user_service=user_service,
        settings=settings,
    )


@pytest.fixture
def shipping_address() -> dict[str, Any]:
    return {
        "address_line1": "1 Market St",
        "city": "San Francisco",
        "state": "CA",
        "postal_code": "94105",
        "country": "US",
    }


@pytest.fixture
def order_fields(shipping_address: dict[str, Any]) -> dict[str, Any]:
    """Fields for a valid order."""
    return {
        "customer_name": "Ada Lovelace",
        "email": "Ada@Example.com",
        "card_config": {"first_name": "Ada", "last_name": "Lovelace", "quantity": 2},
        "shipping_address": shipping_address,
        "pricing": {"subtotal": 59.98, "shipping": 5.0, "tax": 3.45, "discount": 0.0, "total": 68.43},
        "payment_method": "card",
    }


@pytest.fixture
def client(
    fake_db: FakeSupabaseClient,
    session_store: Any,
    verification_service: Any,
    order_service: Any,
    checkout_service: Any,
    payment_service: Any,
    voucher_service: Any,
    notification_service: Any,
    user_service: Any,
) -> Generator[TestClient, None, None]:
    """Test client whose services all run against the in-memory database.

    The code rate limit is disabled; tests of the limiter patch it back in.
    """
    from src.api import deps
    from src.main import app

    app.dependency_overrides.update({
        deps.get_sessions: lambda: session_store,
        deps.get_verification_service: lambda: verification_service,
        deps.get_order_service: lambda: order_service,
        deps.get_checkout_service: lambda: checkout_service,
        deps.get_payment_service: lambda: payment_service,
        deps.get_voucher_service: lambda: voucher_service,
        deps.get_notification_service: lambda: notification_service,
        deps.get_user_service: lambda: user_service,
        deps.check_code_rate_limit: lambda: None,
    })

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def user_token(fake_db: FakeSupabaseClient, session_store: Any) -> str:
    """Session token for a stored customer."""
    user = fake_db.insert_row("users", {"email": "ada@example.com", "role": "user", "phone_number": "+14155550100"})
    return session_store.create(user["id"], user["email"])


@pytest.fixture
def admin_token(session_store: Any) -> str:
    return session_store.create("admin", None, role="admin")
