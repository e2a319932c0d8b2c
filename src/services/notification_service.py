"""Order lifecycle emails with bounded retry."""

import logging
from datetime import datetime, timezone
from typing import Any, Literal

from resend.exceptions import ResendError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from src.core.config import Settings, get_settings
from src.services.email_service import EmailService
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)

ErrorClass = Literal["transient", "permanent"]

TRANSIENT_ERROR_TYPES = (
    "network",
    "timeout",
    "rate_limit_exceeded",
    "internal_server_error",
    "service_unavailable",
    "application_error",
)

# Emails sent when an admin moves an order to these statuses
STATUS_EMAILS = {
    "production": "production",
    "shipped": "shipped",
    "delivered": "delivered",
}


def classify_email_error(error: BaseException) -> ErrorClass:
    """Decide whether a failed send is worth retrying.

    Network failures, rate limiting and provider 5xx responses are
    transient. Everything else (bad address, auth, validation) is permanent.
    """
    if isinstance(error, (OSError, TimeoutError)):
        return "transient"

    if isinstance(error, ResendError):
        try:
            code = int(getattr(error, "code", 0) or 0)
        except (TypeError, ValueError):
            code = 0
        if code == 429 or code >= 500:
            return "transient"
        error_type = str(getattr(error, "error_type", "") or "").lower()
        if any(marker in error_type for marker in TRANSIENT_ERROR_TYPES):
            return "transient"
        return "permanent"

    message = str(error).lower()
    if any(marker in message for marker in ("network", "timeout", "timed out", "rate limit")):
        return "transient"
    return "permanent"


def _is_transient(error: BaseException) -> bool:
    return classify_email_error(error) == "transient"


class NotificationService:
    """Sends lifecycle emails and records the outcome on the order."""

    def __init__(
        self,
        email_service: EmailService | None = None,
        order_service: OrderService | None = None,
        settings: Settings | None = None,
        wait: wait_base | None = None,
    ) -> None:
        """Initialize notification service.

        Args:
            email_service: Email sender.
            order_service: Used to write ``emails_sent``.
            settings: Retry policy settings.
            wait: Override of the backoff strategy.
        """
        self.settings = settings or get_settings()
        self.email_service = email_service or EmailService(self.settings)
        self._order_service = order_service
        self.wait = wait or wait_exponential(
            multiplier=self.settings.email_retry_base_seconds,
            max=self.settings.email_retry_max_seconds,
        )

    @property
    def order_service(self) -> OrderService:
        if self._order_service is None:
            self._order_service = OrderService()
        return self._order_service

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.settings.email_max_attempts),
            wait=self.wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

    async def send_email(self, email_type: str, order: dict[str, Any]) -> dict[str, Any]:
        """Send one lifecycle email, retrying transient failures.

        Never raises on delivery failure.

        Returns:
            dict: sent, timestamp, message_id, error, attempts.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        if not self.email_service.is_configured:
            logger.warning("Email provider not configured; %s email for %s not sent", email_type, order["order_number"])
            return {"sent": False, "timestamp": timestamp, "message_id": None, "error": "Email provider not configured", "attempts": 0}

        subject, html = self.email_service.render_order_email(email_type, order)
        tags = {
            "email_type": email_type,
            "order_number": order["order_number"],
            "environment": self.settings.app_env,
        }

        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    message_id = await self.email_service.deliver(order["email"], subject, html, tags)
        except Exception as e:
            error_class = classify_email_error(e)
            logger.error(
                "%s email for order %s failed after %d attempt(s) (%s): %s",
                email_type,
                order["order_number"],
                attempts,
                error_class,
                str(e),
            )
            return {
                "sent": False,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "message_id": None,
                "error": str(e),
                "attempts": attempts,
            }

        logger.info("%s email for order %s sent on attempt %d", email_type, order["order_number"], attempts)
        return {
            "sent": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message_id": message_id,
            "error": None,
            "attempts": attempts,
        }

    async def _send_and_record(self, order: dict[str, Any], email_types: list[str]) -> dict[str, dict[str, Any]]:
        results = {email_type: await self.send_email(email_type, order) for email_type in email_types}
        try:
            await self.order_service.record_emails(order["id"], results)
        except Exception as e:
            logger.error("Failed to record email results on order %s: %s", order["id"], str(e))
        return results

    async def send_lifecycle_emails(self, order: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """Send the confirmation and receipt emails for a newly confirmed order."""
        return await self._send_and_record(order, ["confirmation", "receipt"])

    async def send_status_email(self, order: dict[str, Any]) -> dict[str, Any] | None:
        """Send the email matching the order's current status, if there is one."""
        email_type = STATUS_EMAILS.get(order["status"])
        if email_type is None:
            return None
        results = await self._send_and_record(order, [email_type])
        return results[email_type]

    async def resend(self, order: dict[str, Any], email_type: str) -> dict[str, Any]:
        """Send one lifecycle email again, e.g. after a failed attempt."""
        results = await self._send_and_record(order, [email_type])
        return results[email_type]
