"""Ephemeral login sessions keyed by opaque token."""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from src.api.middleware.error_handler import NotFoundError
from src.core.config import Settings, get_settings
from src.core.kv_store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """A logged-in session. ``token`` is only known to the client."""

    user_id: str
    email: str | None
    role: str
    created_at: float
    expires_at: float

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)


class SessionStore:
    """Maps session tokens to sessions with a fixed absolute expiry.

    Only a SHA-256 digest of each token is used as the storage key. A user
    may hold any number of sessions.
    """

    TOKEN_LENGTH = 64  # Length of session token in characters

    def __init__(
        self,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self.store = store or InMemoryKeyValueStore(
            "session",
            cleanup_interval_seconds=self.settings.store_cleanup_interval_seconds,
            clock=clock,
        )

    @property
    def ttl_seconds(self) -> int:
        return self.settings.session_expiry_days * 24 * 60 * 60

    @staticmethod
    def _key(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def create(self, user_id: str, email: str | None, role: str = "user") -> str:
        """Create a session and return its token."""
        token = secrets.token_hex(self.TOKEN_LENGTH // 2)
        now = self._clock()
        session = Session(
            user_id=str(user_id),
            email=email,
            role=role,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self.store.set(self._key(token), session, self.ttl_seconds)
        logger.info("Session created for user %s (role=%s)", user_id, role)
        return token

    def get(self, token: str) -> Session:
        """Get a live session.

        Raises:
            NotFoundError: If the token is unknown or expired.
        """
        session = self.find(token)
        if session is None:
            raise NotFoundError("Session not found or expired")
        return session

    def find(self, token: str | None) -> Session | None:
        """Like ``get`` but returns None instead of raising."""
        if not token:
            return None
        session = self.store.get(self._key(token))
        if session is None:
            return None
        if session.expires_at <= self._clock():
            self.store.delete(self._key(token))
            return None
        return session

    def delete(self, token: str) -> bool:
        """Delete a session. Deleting an unknown token is not an error."""
        return self.store.delete(self._key(token))


# Global singleton instance
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get or create the global session store."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


async def init_session_store() -> SessionStore:
    """Start the session store sweep. Call at app startup."""
    session_store = get_session_store()
    if isinstance(session_store.store, InMemoryKeyValueStore):
        await session_store.store.start_cleanup_task()
    return session_store


async def shutdown_session_store() -> None:
    """Stop the session store sweep. Call at app shutdown."""
    if _session_store and isinstance(_session_store.store, InMemoryKeyValueStore):
        await _session_store.store.stop_cleanup_task()
