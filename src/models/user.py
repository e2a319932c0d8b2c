"""User model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict


UserRole = Literal["user", "admin"]


class User(TypedDict, total=False):
    """Users table row representation."""

    id: str
    email: str
    first_name: str | None
    last_name: str | None
    phone_number: str | None
    role: UserRole
    email_verified: bool
    mobile_verified: bool
    created_at: datetime
    updated_at: datetime
