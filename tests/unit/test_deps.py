"""Unit tests for FastAPI dependency injection functions."""

from unittest.mock import MagicMock, patch

import pytest

from src.api.deps import (
    check_code_rate_limit,
    get_admin_session,
    get_client_address,
    get_current_session,
    get_optional_session,
    get_session_token,
)
from src.api.middleware.error_handler import AuthenticationError, AuthorizationError, RateLimitError
from src.core.rate_limiter import RateLimiter


def make_request(headers: dict | None = None, cookies: dict | None = None, host: str = "10.0.0.1") -> MagicMock:
    request = MagicMock()
    request.headers = headers or {}
    request.cookies = cookies or {}
    request.client.host = host
    request.url.path = "/api/v1/auth/otp/request"
    return request


class TestGetSessionToken:
    def test_bearer_header(self) -> None:
        assert get_session_token(make_request(headers={"authorization": "Bearer abc"})) == "abc"

    def test_cookie(self) -> None:
        assert get_session_token(make_request(cookies={"session": "from-cookie"})) == "from-cookie"

    def test_header_wins_over_cookie(self) -> None:
        request = make_request(headers={"authorization": "Bearer abc"}, cookies={"session": "from-cookie"})
        assert get_session_token(request) == "abc"

    def test_malformed_header_falls_back(self) -> None:
        assert get_session_token(make_request(headers={"authorization": "Token abc"})) is None


class TestSessionDependencies:
    @pytest.mark.asyncio
    async def test_optional_session(self, session_store) -> None:
        token = session_store.create("user-1", "ada@example.com")

        session = await get_optional_session(make_request(headers={"authorization": f"Bearer {token}"}), session_store)

        assert session.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_optional_session_unknown_token(self, session_store) -> None:
        request = make_request(headers={"authorization": "Bearer nope"})
        assert await get_optional_session(request, session_store) is None

    @pytest.mark.asyncio
    async def test_current_session_required(self) -> None:
        with pytest.raises(AuthenticationError):
            await get_current_session(None)

    @pytest.mark.asyncio
    async def test_admin_required(self, session_store) -> None:
        user = session_store.get(session_store.create("user-1", None))
        admin = session_store.get(session_store.create("admin", None, role="admin"))

        with pytest.raises(AuthorizationError):
            await get_admin_session(user)
        assert await get_admin_session(admin) is admin


class TestCodeRateLimit:
    @pytest.mark.asyncio
    async def test_blocks_after_budget(self, settings) -> None:
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        settings = settings.model_copy(update={"rate_limit_otp_requests": 2})

        with patch("src.api.deps.get_rate_limiter", return_value=limiter), \
             patch("src.api.deps.get_settings", return_value=settings):
            await check_code_rate_limit(make_request())
            await check_code_rate_limit(make_request())
            with pytest.raises(RateLimitError) as exc_info:
                await check_code_rate_limit(make_request())

            # A different client has its own budget
            await check_code_rate_limit(make_request(host="10.0.0.2"))

        assert exc_info.value.retry_after > 0

    @pytest.mark.asyncio
    async def test_spoofed_forwarded_header_is_ignored(self, settings) -> None:
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        settings = settings.model_copy(update={"rate_limit_otp_requests": 1})

        with patch("src.api.deps.get_rate_limiter", return_value=limiter), \
             patch("src.api.deps.get_settings", return_value=settings):
            await check_code_rate_limit(make_request(headers={"x-forwarded-for": "1.1.1.1"}))
            with pytest.raises(RateLimitError):
                await check_code_rate_limit(make_request(headers={"x-forwarded-for": "2.2.2.2"}))

    @pytest.mark.asyncio
    async def test_trusted_proxy_forwards_client_address(self, settings) -> None:
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        settings = settings.model_copy(update={"rate_limit_otp_requests": 1, "trusted_proxies": "10.0.0.1"})

        with patch("src.api.deps.get_rate_limiter", return_value=limiter), \
             patch("src.api.deps.get_settings", return_value=settings):
            await check_code_rate_limit(make_request(headers={"x-forwarded-for": "1.2.3.4"}))
            await check_code_rate_limit(make_request(headers={"x-forwarded-for": "5.6.7.8"}))
            with pytest.raises(RateLimitError):
                # Caller-supplied hops left of the real client do not matter
                await check_code_rate_limit(make_request(headers={"x-forwarded-for": "9.9.9.9, 1.2.3.4"}))


class TestGetClientAddress:
    def test_untrusted_peer(self) -> None:
        request = make_request(headers={"x-forwarded-for": "1.2.3.4"}, host="203.0.113.9")
        assert get_client_address(request, ["10.0.0.1"]) == "203.0.113.9"

    def test_skips_trusted_hops(self) -> None:
        request = make_request(headers={"x-forwarded-for": "1.2.3.4, 10.0.0.2"}, host="10.0.0.1")
        assert get_client_address(request, ["10.0.0.1", "10.0.0.2"]) == "1.2.3.4"

    def test_trusted_peer_without_header(self) -> None:
        assert get_client_address(make_request(host="10.0.0.1"), ["10.0.0.1"]) == "10.0.0.1"
