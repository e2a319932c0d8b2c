"""Authentication schemas for OTP login and sessions."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from src.schemas.verification import CodeVerifyResponse


class SessionUser(BaseModel):
    """The session-bound identity returned by /auth/me."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(description="User ID the session belongs to")
    email: str | None = Field(default=None, description="User email")
    role: str = Field(default="user", description="Role: user or admin")
    expires_at: datetime | None = Field(default=None, description="Absolute session expiry")


class LoginVerifyResponse(CodeVerifyResponse):
    """Verification result that also carries a new session."""

    token: str = Field(description="Opaque session token (also set as cookie)")
    user: SessionUser = Field(description="Logged-in user")


class AdminLoginRequest(BaseModel):
    """Schema for admin PIN login."""

    pin: str = Field(min_length=1, max_length=64, description="Admin PIN")


class LogoutResponse(BaseModel):
    """Response after logging out."""

    success: bool = Field(default=True)
    message: str = Field(default="Logged out")


class RegisterRequest(BaseModel):
    """Schema for creating an account. Login afterwards is by one-time code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=32, description="Phone number for SMS login")


class UserProfile(BaseModel):
    """Public fields of a user account."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    role: str = "user"


class RegisterResponse(BaseModel):
    """Response after registering."""

    success: bool = Field(default=True)
    message: str = Field(default="Account created successfully")
    user: UserProfile
