"""Ephemeral storage for one-time verification codes."""

from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from src.api.middleware.error_handler import (
    CodeExpiredError,
    InvalidCodeError,
    NotFoundError,
    TooManyAttemptsError,
    TooSoonError,
)
from src.core.config import Settings, get_settings
from src.core.kv_store import DELETE, InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationCode:
    """A code issued for one identifier on one channel."""

    identifier: str
    channel: str
    code: str
    created_at: float
    expires_at: float
    attempts: int = 0


class CheckResult(str, Enum):
    """Outcome of checking a submitted code."""

    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID = "invalid"


class CodeStore:
    """One active code per identifier, with expiry and attempt counters.

    Expired codes are retained for a while after ``expires_at`` so a late
    submission is reported as expired rather than missing.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self.store = store or InMemoryKeyValueStore(
            "code",
            cleanup_interval_seconds=self.settings.store_cleanup_interval_seconds,
            clock=clock,
        )

    @staticmethod
    def _key(channel: str, identifier: str) -> str:
        return f"{channel}:{identifier}"

    def ttl_for(self, channel: str) -> int:
        if channel == "mobile":
            return self.settings.otp_mobile_ttl_seconds
        return self.settings.otp_email_ttl_seconds

    def issue(self, channel: str, identifier: str, code: str) -> VerificationCode:
        """Store a new code, replacing any code old enough to be resent.

        Raises:
            TooSoonError: If the current code was issued less than the
                resend cooldown ago.
        """
        ttl = self.ttl_for(channel)
        cooldown = self.settings.otp_resend_cooldown_seconds
        now = self._clock()

        def _issue(current: VerificationCode | None) -> VerificationCode:
            if current is not None and current.expires_at > now:
                remaining = current.expires_at - now
                fresh_window = ttl - cooldown
                if remaining > fresh_window:
                    raise TooSoonError(retry_after=max(1, int(remaining - fresh_window + 0.999)))
            return VerificationCode(
                identifier=identifier,
                channel=channel,
                code=code,
                created_at=now,
                expires_at=now + ttl,
            )

        issued = self.store.update(
            self._key(channel, identifier),
            _issue,
            ttl_seconds=ttl + self.settings.otp_expired_retention_seconds,
        )
        logger.debug("Issued %s code for %s (ttl %ds)", channel, identifier, ttl)
        return issued

    def check(self, channel: str, identifier: str, code: str) -> tuple[CheckResult, int]:
        """Atomically check a submitted code and apply its side effects.

        A match, expiry or exhausted attempt budget deletes the record. A
        mismatch increments ``attempts``.

        Returns:
            tuple: (result, remaining_attempts).
        """
        max_attempts = self.settings.otp_max_attempts
        now = self._clock()
        outcome = [CheckResult.NOT_FOUND, 0]

        def _check(current: VerificationCode | None):
            if current is None:
                return None
            if now >= current.expires_at:
                outcome[0] = CheckResult.EXPIRED
                return DELETE
            if current.attempts >= max_attempts:
                outcome[0] = CheckResult.TOO_MANY_ATTEMPTS
                return DELETE
            if hmac.compare_digest(current.code.encode(), code.encode()):
                outcome[0] = CheckResult.VERIFIED
                return DELETE
            attempts = current.attempts + 1
            outcome[0] = CheckResult.INVALID
            outcome[1] = max_attempts - attempts
            return replace(current, attempts=attempts)

        self.store.update(self._key(channel, identifier), _check)
        return outcome[0], outcome[1]

    def verify(self, channel: str, identifier: str, code: str) -> None:
        """Verify a code, raising the matching error on failure.

        Raises:
            NotFoundError: No code for this identifier.
            CodeExpiredError: The code is past its expiry.
            TooManyAttemptsError: The attempt ceiling was reached.
            InvalidCodeError: The code does not match.
        """
        result, remaining = self.check(channel, identifier, code)
        if result is CheckResult.VERIFIED:
            return
        if result is CheckResult.NOT_FOUND:
            raise NotFoundError("No verification code found. Please request a new code.")
        if result is CheckResult.EXPIRED:
            raise CodeExpiredError()
        if result is CheckResult.TOO_MANY_ATTEMPTS:
            logger.warning("Attempt ceiling reached for %s code %s", channel, identifier)
            raise TooManyAttemptsError()
        raise InvalidCodeError(remaining_attempts=remaining)

    def get(self, channel: str, identifier: str) -> VerificationCode | None:
        return self.store.get(self._key(channel, identifier))

    def discard(self, channel: str, identifier: str) -> bool:
        return self.store.delete(self._key(channel, identifier))


# Global singleton instance
_code_store: CodeStore | None = None


def get_code_store() -> CodeStore:
    """Get or create the global code store."""
    global _code_store
    if _code_store is None:
        _code_store = CodeStore()
    return _code_store


async def init_code_store() -> CodeStore:
    """Start the code store sweep. Call at app startup."""
    code_store = get_code_store()
    if isinstance(code_store.store, InMemoryKeyValueStore):
        await code_store.store.start_cleanup_task()
    return code_store


async def shutdown_code_store() -> None:
    """Stop the code store sweep. Call at app shutdown."""
    if _code_store and isinstance(_code_store.store, InMemoryKeyValueStore):
        await _code_store.store.stop_cleanup_task()
