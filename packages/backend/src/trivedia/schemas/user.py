"""Pydantic schemas for auth and user management.

Learn: The browser client speaks camelCase (firstName, isActive), so
every schema uses a camel alias generator and accepts either spelling
on input. Emails are normalised to lower case before they reach the
store, so uniqueness is case-insensitive.
"""

import uuid
from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from trivedia.auth.roles import Role

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"
PASSWORD_MIN_LEN = 6


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalise_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


Email = Annotated[
    str,
    Field(max_length=255, pattern=EMAIL_PATTERN),
    BeforeValidator(_normalise_email),
]


# ─── Auth ───────────────────────────────────────────────


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: Email
    password: str = Field(min_length=PASSWORD_MIN_LEN)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)


class LoginRequest(CamelModel):
    email: Email
    password: str = Field(min_length=1)


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[Email] = None


class PasswordChange(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=PASSWORD_MIN_LEN)


# ─── Admin ──────────────────────────────────────────────


class UserCreate(RegisterRequest):
    role: Role = Role.VIEWER


class UserUpdate(ProfileUpdate):
    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ─── Read ───────────────────────────────────────────────


class UserRead(CamelModel):
    """Public profile: never includes the password hash."""

    id: uuid.UUID
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def public_profile(user) -> dict:
    """Serialise a User row for a response envelope."""
    return UserRead.model_validate(user).model_dump(mode="json", by_alias=True)
