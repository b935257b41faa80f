"""Pydantic schemas for the auth API.

Learn: Wire format is camelCase (accessToken, displayName, isActive) so
the gateway, the user service and browser clients all speak the same
JSON. alias_generator=to_camel does the mapping; populate_by_name lets
Python code keep using snake_case field names.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ─── Requests ────────────────────────────────────────────


class RegisterRequest(CamelModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=72)
    display_name: Optional[str] = Field(None, max_length=100)


class LoginRequest(CamelModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class StatusUpdate(CamelModel):
    is_active: bool


# ─── Responses ───────────────────────────────────────────


class ProfileRead(CamelModel):
    display_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


class AccountRead(CamelModel):
    """Account summary — never includes the password hash."""
    id: uuid.UUID
    email: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    profile: ProfileRead
    roles: list[str]


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthResponse(TokenPair):
    account: AccountRead


class MessageResponse(CamelModel):
    message: str
