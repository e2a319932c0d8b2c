"""SMS service using Twilio for verification codes."""

import logging
from typing import Any

from twilio.base.exceptions import TwilioException

from src.core.config import Settings, get_settings
from src.core.twilio import get_twilio_client

logger = logging.getLogger(__name__)


class SmsService:
    """Service for sending SMS messages via Twilio."""

    def __init__(self, client: Any | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.client = client if client is not None else get_twilio_client()
        self.from_number = self.settings.twilio_from_number

    @property
    def is_configured(self) -> bool:
        return self.client is not None and bool(self.from_number)

    async def send(self, phone_number: str, message: str) -> dict[str, Any]:
        """Send one SMS.

        Args:
            phone_number: E.164 destination number.
            message: Message body.

        Returns:
            dict: ``success``, ``message_id`` and ``error``.
        """
        if not self.is_configured:
            return {"success": False, "message_id": None, "error": "SMS provider not configured"}

        try:
            result = self.client.messages.create(
                body=message,
                from_=self.from_number,
                to=phone_number,
            )
            logger.info("SMS sent to %s, sid: %s", _mask(phone_number), result.sid)
            return {"success": True, "message_id": result.sid, "error": None}
        except (TwilioException, OSError) as e:
            logger.error("Failed to send SMS to %s: %s", _mask(phone_number), str(e))
            return {"success": False, "message_id": None, "error": str(e)}

    async def send_code(self, phone_number: str, code: str, expires_in_minutes: int) -> dict[str, Any]:
        """Send a verification code SMS."""
        message = (
            f"Your Linkist verification code is: {code}. "
            f"Valid for {expires_in_minutes} minutes. Do not share this code."
        )
        return await self.send(phone_number, message)


def _mask(phone_number: str) -> str:
    return f"***{phone_number[-4:]}" if len(phone_number) > 4 else "***"
