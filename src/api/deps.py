"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Request, Response

from src.api.middleware.error_handler import AuthenticationError, AuthorizationError, RateLimitError
from src.core.config import get_settings
from src.core.rate_limiter import get_rate_limiter
from src.services.checkout_service import CheckoutService
from src.services.code_store import get_code_store
from src.services.notification_service import NotificationService
from src.services.order_service import OrderService
from src.services.payment_service import PaymentService
from src.services.session_store import Session, SessionStore, get_session_store
from src.services.user_service import UserService
from src.services.verification_service import VerificationService
from src.services.voucher_service import VoucherService


def get_session_cookie_config() -> dict:
    """Get session cookie configuration from settings."""
    settings = get_settings()
    # SameSite=None requires Secure=True; fall back to Lax for local HTTP
    samesite = "none" if settings.session_cookie_secure else "lax"
    return {
        "key": settings.session_cookie_name,
        "max_age": settings.session_expiry_days * 24 * 60 * 60,
        "httponly": True,
        "secure": settings.session_cookie_secure,
        "samesite": samesite,
        "path": "/",
    }


def get_session_token(request: Request) -> str | None:
    """Extract the session token from a Bearer header or the session cookie.

    Args:
        request: FastAPI request object.

    Returns:
        str | None: The session token or None if not present.
    """
    authorization = request.headers.get("authorization")
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    config = get_session_cookie_config()
    return request.cookies.get(config["key"])


def set_session_cookie(response: Response, token: str) -> None:
    """Set session cookie on response.

    Args:
        response: FastAPI response object.
        token: The session token to set.
    """
    config = get_session_cookie_config()
    response.set_cookie(
        key=config["key"],
        value=token,
        max_age=config["max_age"],
        httponly=config["httponly"],
        secure=config["secure"],
        samesite=config["samesite"],
        path=config["path"],
    )


def clear_session_cookie(response: Response) -> None:
    """Clear session cookie from response."""
    config = get_session_cookie_config()
    response.delete_cookie(key=config["key"], path=config["path"])


# Service providers, overridable in tests through app.dependency_overrides


def get_sessions() -> SessionStore:
    return get_session_store()


def get_verification_service() -> VerificationService:
    return VerificationService(code_store=get_code_store(), session_store=get_session_store())


def get_order_service() -> OrderService:
    return OrderService()


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_payment_service() -> PaymentService:
    return PaymentService()


def get_voucher_service() -> VoucherService:
    return VoucherService()


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_user_service() -> UserService:
    return UserService()


Sessions = Annotated[SessionStore, Depends(get_sessions)]
Verification = Annotated[VerificationService, Depends(get_verification_service)]
Orders = Annotated[OrderService, Depends(get_order_service)]
Checkout = Annotated[CheckoutService, Depends(get_checkout_service)]
Payments = Annotated[PaymentService, Depends(get_payment_service)]
Vouchers = Annotated[VoucherService, Depends(get_voucher_service)]
Notifications = Annotated[NotificationService, Depends(get_notification_service)]
Users = Annotated[UserService, Depends(get_user_service)]


# Session dependencies


async def get_optional_session(request: Request, sessions: Sessions) -> Session | None:
    """Return the caller's session, or None if absent or expired."""
    return sessions.find(get_session_token(request))


async def get_current_session(session: Annotated[Session | None, Depends(get_optional_session)]) -> Session:
    """Require a live session.

    Raises:
        AuthenticationError: 401 if no valid session is present.
    """
    if session is None:
        raise AuthenticationError("Authentication required")
    return session


async def get_admin_session(session: Annotated[Session, Depends(get_current_session)]) -> Session:
    """Require an admin session.

    Raises:
        AuthorizationError: 403 for non-admin sessions.
    """
    if not session.is_admin:
        raise AuthorizationError("Admin access required")
    return session


OptionalSession = Annotated[Session | None, Depends(get_optional_session)]
CurrentSession = Annotated[Session, Depends(get_current_session)]
AdminSession = Annotated[Session, Depends(get_admin_session)]


# Rate limiting dependency


def get_client_address(request: Request, trusted_proxies: list[str]) -> str:
    """Address of the caller for rate limiting.

    X-Forwarded-For is only read when the direct peer is a trusted proxy.
    The chain is walked from the right and the first hop that is not a
    trusted proxy is the client; entries further left are caller-supplied.
    """
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted_proxies:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return hops[0] if hops else peer


async def check_code_rate_limit(request: Request) -> None:
    """Limit one-time code requests per client address.

    Raises:
        RateLimitError: If the client exceeded the window's request budget.
    """
    settings = get_settings()
    limiter = get_rate_limiter()
    client_host = get_client_address(request, settings.trusted_proxies_list)

    decision = limiter.hit(
        f"otp:{client_host}:{request.url.path}",
        max_requests=settings.rate_limit_otp_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    if not decision.allowed:
        raise RateLimitError(
            message="Too many code requests. Please wait before trying again.",
            retry_after=decision.retry_after,
        )


CodeRateLimit = Annotated[None, Depends(check_code_rate_limit)]
