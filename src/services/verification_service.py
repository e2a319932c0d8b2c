"""One-time code issuance, delivery and verification."""

import hmac
import logging
import re
import secrets
from typing import Any

from src.api.middleware.error_handler import AuthenticationError, NotFoundError, ValidationError
from src.core.config import Settings, get_settings
from src.services.code_store import CodeStore, get_code_store
from src.services.email_service import EmailService
from src.services.session_store import Session, SessionStore, get_session_store
from src.services.sms_service import SmsService
from src.services.user_service import UserService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")
PHONE_SEPARATORS = re.compile(r"[\s\-().]")
CODE_PATTERN = re.compile(r"^\d{6}$")


def normalize_identifier(identifier: str) -> tuple[str, str]:
    """Work out the channel for an identifier and normalise it.

    Returns:
        tuple: (channel, normalised identifier), channel is "email" or "mobile".

    Raises:
        ValidationError: If the identifier is neither an email nor a phone number.
    """
    identifier = identifier.strip()
    if "@" in identifier:
        email = identifier.lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address")
        return "email", email

    phone = PHONE_SEPARATORS.sub("", identifier)
    if not PHONE_PATTERN.match(phone):
        raise ValidationError("Invalid phone number")
    return "mobile", phone


def generate_code() -> str:
    """Generate a six-digit numeric code."""
    return f"{secrets.randbelow(1_000_000):06d}"


class VerificationService:
    """Generates, dispatches and validates one-time codes."""

    def __init__(
        self,
        code_store: CodeStore | None = None,
        session_store: SessionStore | None = None,
        email_service: EmailService | None = None,
        sms_service: SmsService | None = None,
        user_service: UserService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.code_store = code_store or get_code_store()
        self.session_store = session_store or get_session_store()
        self.email_service = email_service or EmailService(self.settings)
        self.sms_service = sms_service or SmsService(settings=self.settings)
        self._user_service = user_service

    @property
    def user_service(self) -> UserService:
        # Created lazily so pure code checks never need a database
        if self._user_service is None:
            self._user_service = UserService()
        return self._user_service

    async def request_code(self, identifier: str) -> dict[str, Any]:
        """Issue a code for an identifier and send it.

        Args:
            identifier: Email address or phone number.

        Returns:
            dict: sent, channel, expires_in, message and (outside
            production with debug on) dev_code.

        Raises:
            ValidationError: If the identifier is malformed.
            TooSoonError: If the previous code is still within its cooldown.
        """
        channel, normalized = normalize_identifier(identifier)
        code = generate_code()
        self.code_store.issue(channel, normalized, code)
        ttl = self.code_store.ttl_for(channel)
        expires_in_minutes = ttl // 60

        provider = self.email_service if channel == "email" else self.sms_service
        if provider.is_configured:
            if channel == "email":
                result = await self.email_service.send_code_email(normalized, code, expires_in_minutes)
            else:
                result = await self.sms_service.send_code(normalized, code, expires_in_minutes)
            sent = bool(result.get("success"))
            kept = sent
            if not sent:
                # Undeliverable code must not stay verifiable
                self.code_store.discard(channel, normalized)
                logger.error("Failed to deliver %s code to %s: %s", channel, normalized, result.get("error"))
        else:
            sent = False
            kept = not self.settings.is_production
            if not kept:
                self.code_store.discard(channel, normalized)
                logger.error("No %s provider configured; code for %s discarded", channel, normalized)
            else:
                logger.warning("No %s provider configured. Code for %s: %s", channel, normalized, code)

        if sent:
            message = f"Verification code sent to your {'email' if channel == 'email' else 'phone'}"
        elif kept:
            message = "Verification code generated but not delivered"
        else:
            message = "Failed to send verification code. Please try again."

        response: dict[str, Any] = {
            "sent": sent,
            "channel": channel,
            "expires_in": ttl,
            "message": message,
        }
        if self.settings.expose_dev_codes:
            response["dev_code"] = code
        return response

    async def verify_code(self, identifier: str, code: str) -> dict[str, Any]:
        """Check a code without creating a session.

        Raises:
            ValidationError: Malformed identifier or code.
            NotFoundError, CodeExpiredError, TooManyAttemptsError,
            InvalidCodeError: See CodeStore.verify.
        """
        channel, normalized = normalize_identifier(identifier)
        code = code.strip()
        if not CODE_PATTERN.match(code):
            raise ValidationError("Verification code must be 6 digits")

        self.code_store.verify(channel, normalized, code)
        logger.info("Verified %s code for %s", channel, normalized)
        return {"verified": True, "channel": channel, "identifier": normalized}

    async def login(self, identifier: str, code: str) -> dict[str, Any]:
        """Verify a code and open a session for the matching user.

        Returns:
            dict: token, session and user.

        Raises:
            NotFoundError: If no account exists for the identifier.
        """
        result = await self.verify_code(identifier, code)
        channel, normalized = result["channel"], result["identifier"]

        if channel == "email":
            user = await self.user_service.get_by_email(normalized)
        else:
            user = await self.user_service.get_by_phone(normalized)
        if not user:
            raise NotFoundError("User account not found. Please register first.")

        await self.user_service.mark_verified(user["id"], channel)
        token = self.session_store.create(user["id"], user.get("email"), user.get("role") or "user")
        return {"token": token, "session": self.session_store.get(token), "user": user}

    async def mark_session_user_verified(self, session: Session, channel: str, identifier: str) -> None:
        """Record a pure verification against the logged-in user."""
        if session.is_admin:
            return
        phone_number = identifier if channel == "mobile" else None
        await self.user_service.mark_verified(session.user_id, channel, phone_number=phone_number)

    def admin_login(self, pin: str) -> str:
        """Exchange the admin PIN for an admin session token.

        Raises:
            AuthenticationError: If admin login is disabled or the PIN is wrong.
        """
        if not self.settings.admin_pin:
            raise AuthenticationError("Admin login is not configured")
        if not hmac.compare_digest(pin.encode(), self.settings.admin_pin.encode()):
            logger.warning("Rejected admin login attempt")
            raise AuthenticationError("Invalid PIN")
        return self.session_store.create("admin", None, role="admin")
