"""Email and phone verification routes (no session is created)."""

import logging

from fastapi import APIRouter

from src.api.deps import CodeRateLimit, OptionalSession, Verification
from src.schemas.verification import (
    CodeRequest,
    CodeRequestResponse,
    CodeVerifyRequest,
    CodeVerifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verify", tags=["verification"])


@router.post(
    "/code/request",
    response_model=CodeRequestResponse,
    response_model_exclude_none=True,
    summary="Send a verification code",
    description="Send a six-digit code to an email address or phone number.",
)
async def request_code(
    data: CodeRequest,
    service: Verification,
    _: CodeRateLimit,
) -> CodeRequestResponse:
    """Issue and send a verification code.

    Raises:
        ValidationError: 400 if the identifier is malformed.
        TooSoonError: 429 if a fresh code was sent less than a minute ago.
    """
    result = await service.request_code(data.identifier)
    return CodeRequestResponse(**result)


@router.post(
    "/code/confirm",
    response_model=CodeVerifyResponse,
    summary="Verify a code",
    description="Check a verification code. Marks the logged-in user's email or phone as verified.",
)
async def confirm_code(
    data: CodeVerifyRequest,
    service: Verification,
    session: OptionalSession,
    _: CodeRateLimit,
) -> CodeVerifyResponse:
    """Verify a code without logging in.

    Raises:
        NotFoundError: 404 if no code exists.
        CodeExpiredError: 410 if the code expired.
        TooManyAttemptsError: 429 after too many wrong codes.
        InvalidCodeError: 401 with the remaining attempts.
    """
    result = await service.verify_code(data.identifier, data.code)

    if session is not None:
        try:
            await service.mark_session_user_verified(session, result["channel"], result["identifier"])
        except Exception as e:
            logger.error("Failed to record verification for user %s: %s", session.user_id, str(e))

    channel_label = "Email" if result["channel"] == "email" else "Phone number"
    return CodeVerifyResponse(verified=True, message=f"{channel_label} verified successfully")
