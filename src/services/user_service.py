"""User lookup and upsert against the users table."""

import logging
from datetime import datetime, timezone
from typing import Any, Literal

from supabase import Client

from src.api.middleware.error_handler import ConflictError
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.user import User

logger = logging.getLogger(__name__)


def phone_variants(phone: str) -> list[str]:
    """Formats a stored phone number may have been saved in."""
    digits = phone.lstrip("+")
    variants = [phone, f"+{digits}", digits]
    return list(dict.fromkeys(variants))


class UserService:
    """Service for customer accounts."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def get_by_id(self, user_id: str) -> User | None:
        response = (
            self.client.table("users")
            .select("*")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_email(self, email: str) -> User | None:
        response = (
            self.client.table("users")
            .select("*")
            .eq("email", email.strip().lower())
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_by_phone(self, phone: str) -> User | None:
        """Find a user by phone number, trying each stored format."""
        for variant in phone_variants(phone):
            response = (
                self.client.table("users")
                .select("*")
                .eq("phone_number", variant)
                .limit(1)
                .execute()
            )
            if response.data:
                return response.data[0]
        return None

    async def register(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
    ) -> User:
        """Create a new customer account.

        Raises:
            ConflictError: An account with this email already exists.
        """
        email = email.strip().lower()
        if await self.get_by_email(email):
            raise ConflictError("An account with this email already exists")

        try:
            response = (
                self.client.table("users")
                .insert({
                    "email": email,
                    "first_name": first_name,
                    "last_name": last_name,
                    "phone_number": phone_number,
                    "role": "user",
                    "email_verified": False,
                    "mobile_verified": False,
                })
                .execute()
            )
        except Exception as e:
            if is_unique_violation(e):
                raise ConflictError("An account with this email already exists") from e
            raise
        logger.info("Registered user %s", email)
        return response.data[0]

    async def upsert_by_email(
        self,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone_number: str | None = None,
    ) -> User:
        """Create the user, or fill in details missing on the existing row.

        Args:
            email: Account email (lowercased).
            first_name: Optional first name.
            last_name: Optional last name.
            phone_number: Optional phone number.

        Returns:
            dict: The stored user.
        """
        email = email.strip().lower()
        existing = await self.get_by_email(email)
        details = {
            "first_name": first_name,
            "last_name": last_name,
            "phone_number": phone_number,
        }
        details = {k: v for k, v in details.items() if v}

        if existing:
            details = {k: v for k, v in details.items() if not existing.get(k)}
            if not details:
                return existing
            details["updated_at"] = datetime.now(timezone.utc).isoformat()
            response = (
                self.client.table("users")
                .update(details)
                .eq("id", existing["id"])
                .execute()
            )
            return response.data[0] if response.data else {**existing, **details}

        response = (
            self.client.table("users")
            .insert({
                "email": email,
                "role": "user",
                "email_verified": False,
                "mobile_verified": False,
                **details,
            })
            .execute()
        )
        logger.info("Created user for %s", email)
        return response.data[0]

    async def mark_verified(
        self,
        user_id: str,
        channel: Literal["email", "mobile"],
        phone_number: str | None = None,
    ) -> None:
        """Set the email_verified or mobile_verified flag."""
        update: dict[str, Any] = {
            f"{channel}_verified": True,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if channel == "mobile" and phone_number:
            update["phone_number"] = phone_number
        self.client.table("users").update(update).eq("id", user_id).execute()
