"""One-time code request and verification schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


Channel = Literal["email", "mobile"]


class CodeRequest(BaseModel):
    """Schema for requesting a one-time code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=254, description="Email address or phone number")


class CodeRequestResponse(BaseModel):
    """Outcome of a code request.

    ``sent`` is false when the provider could not deliver the code.
    """

    sent: bool = Field(description="Whether the code was handed to the delivery provider")
    channel: Channel = Field(description="Delivery channel chosen from the identifier")
    expires_in: int = Field(description="Seconds until the code expires")
    message: str = Field(description="Human-readable status")
    dev_code: str | None = Field(default=None, description="Generated code, only outside production")


class CodeVerifyRequest(BaseModel):
    """Schema for verifying a one-time code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=3, max_length=254, description="Email address or phone number")
    code: str = Field(description="Six-digit code")


class CodeVerifyResponse(BaseModel):
    """Result of a successful verification."""

    verified: bool = Field(default=True)
    message: str = Field(default="Verified successfully")
