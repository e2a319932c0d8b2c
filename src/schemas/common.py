"""Schemas shared by health checks and error responses."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

API_VERSION = "1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness probe response."""

    status: HealthStatus = Field(description="Current health status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(default=API_VERSION, description="API version")


class CheckResult(BaseModel):
    """Outcome of one dependency check (database, Stripe)."""

    name: str = Field(description="Dependency name")
    healthy: bool
    latency_ms: float | None = Field(default=None, description="Check duration in milliseconds")
    error: str | None = Field(default=None, description="Why the dependency is unhealthy")


class ReadinessResponse(BaseModel):
    """Readiness probe response; unhealthy if any check failed."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """One error detail, e.g. a failing request field or remaining attempts."""

    loc: list[str | int] | None = Field(default=None, description="Field path for validation errors")
    msg: str
    type: str = Field(description="Error type identifier")


class ErrorResponse(BaseModel):
    """Body of every error response.

    ``error`` is a stable machine-readable type (``too_soon``,
    ``invalid_code``, ``invalid_transition``...) and ``message`` is safe to
    show to the customer.
    """

    error: str = Field(description="Error type")
    message: str = Field(description="Human-readable error description")
    details: list[ErrorDetail] | None = None
    request_id: str | None = Field(default=None, description="X-Request-ID of the failing request")
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        """Build the body from an error's type, message and raw detail dicts."""
        error_details = None
        if details:
            error_details = [
                ErrorDetail(
                    loc=d.get("loc"),
                    msg=d.get("msg", str(d)),
                    type=d.get("type", "error"),
                )
                for d in details
            ]
        return cls(error=error_type, message=message, details=error_details, request_id=request_id)
