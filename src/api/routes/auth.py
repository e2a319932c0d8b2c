"""Authentication API routes: OTP login, admin PIN login and sessions."""

from fastapi import APIRouter, Request, Response, status

from src.api.deps import (
    CodeRateLimit,
    CurrentSession,
    Sessions,
    Users,
    Verification,
    clear_session_cookie,
    get_session_token,
    set_session_cookie,
)
from src.schemas.auth import (
    AdminLoginRequest,
    LoginVerifyResponse,
    LogoutResponse,
    RegisterRequest,
    RegisterResponse,
    SessionUser,
    UserProfile,
)
from src.schemas.verification import CodeRequest, CodeRequestResponse, CodeVerifyRequest

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_user(session) -> SessionUser:
    return SessionUser(
        user_id=session.user_id,
        email=session.email,
        role=session.role,
        expires_at=session.expires_at_datetime,
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
    description="Create a customer account. Log in afterwards with a one-time code.",
)
async def register(data: RegisterRequest, users: Users) -> RegisterResponse:
    """Register a new customer.

    Raises:
        ConflictError: 409 if an account with the email already exists.
    """
    user = await users.register(
        data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        phone_number=data.phone,
    )
    return RegisterResponse(user=UserProfile(**user))


@router.post(
    "/otp/request",
    response_model=CodeRequestResponse,
    response_model_exclude_none=True,
    summary="Request a login code",
    description="Send a login code to the email address or phone number of an account.",
)
async def request_login_code(
    data: CodeRequest,
    service: Verification,
    _: CodeRateLimit,
) -> CodeRequestResponse:
    """Send a login code.

    Raises:
        ValidationError: 400 if the identifier is malformed.
        TooSoonError: 429 if a fresh code was sent less than a minute ago.
    """
    result = await service.request_code(data.identifier)
    return CodeRequestResponse(**result)


@router.post(
    "/otp/verify",
    response_model=LoginVerifyResponse,
    summary="Log in with a code",
    description="Verify a login code and open a session. The token is also set as an HTTP-only cookie.",
)
async def verify_login_code(
    data: CodeVerifyRequest,
    response: Response,
    service: Verification,
    _: CodeRateLimit,
) -> LoginVerifyResponse:
    """Verify a login code and create a session.

    Raises:
        NotFoundError: 404 if no code or no account exists.
        CodeExpiredError: 410 if the code expired.
        TooManyAttemptsError: 429 after too many wrong codes.
        InvalidCodeError: 401 with the remaining attempts.
    """
    result = await service.login(data.identifier, data.code)
    set_session_cookie(response, result["token"])
    return LoginVerifyResponse(
        verified=True,
        message="Logged in successfully",
        token=result["token"],
        user=_session_user(result["session"]),
    )


@router.post(
    "/admin-login",
    response_model=LoginVerifyResponse,
    summary="Admin PIN login",
    description="Exchange the admin PIN for an admin session.",
)
async def admin_login(
    data: AdminLoginRequest,
    response: Response,
    service: Verification,
    sessions: Sessions,
    _: CodeRateLimit,
) -> LoginVerifyResponse:
    """Log in as admin.

    Raises:
        AuthenticationError: 401 if the PIN is wrong or admin login is disabled.
    """
    token = service.admin_login(data.pin)
    set_session_cookie(response, token)
    return LoginVerifyResponse(
        verified=True,
        message="Admin logged in",
        token=token,
        user=_session_user(sessions.get(token)),
    )


@router.get(
    "/me",
    response_model=SessionUser,
    summary="Current session",
    description="Return the identity bound to the current session.",
)
async def me(session: CurrentSession) -> SessionUser:
    """Return the caller's session identity.

    Raises:
        AuthenticationError: 401 without a valid session.
    """
    return _session_user(session)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Log out",
    description="Delete the current session and clear the cookie. Safe to call without a session.",
)
async def logout(request: Request, response: Response, sessions: Sessions) -> LogoutResponse:
    """End the current session."""
    token = get_session_token(request)
    if token:
        sessions.delete(token)
    clear_session_cookie(response)
    return LogoutResponse()
