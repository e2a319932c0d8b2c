"""Twilio client singleton for SMS delivery."""

import logging
from functools import lru_cache

from twilio.rest import Client

from src.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_twilio_client() -> Client | None:
    """Get cached Twilio client, or None when credentials are missing."""
    settings = get_settings()
    if not settings.is_sms_configured:
        logger.warning("Twilio credentials not configured. SMS delivery is disabled.")
        return None
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)
