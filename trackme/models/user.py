"""Pydantic models for users and API keys stored in MongoDB."""

import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Roles a user can hold."""

    USER = "user"
    ADMIN = "admin"


class User(BaseModel):
    """Registered user document."""

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", use_enum_values=True
    )

    id: int = Field(
        validation_alias=AliasChoices("_id", "id"), description="User ID"
    )
    email: str = Field(description="Login email, unique")
    password: str = Field(description="bcrypt hash, or 'disabled' for key-only users")
    role: Role = Field(default=Role.USER)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")


class UserPublic(BaseModel):
    """User fields safe to return to clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    email: str
    role: Role = Role.USER
    created_at: datetime = Field(alias="createdAt")


class ApiKeyRecord(BaseModel):
    """API key document. Only the hash of the key is ever stored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(
        validation_alias=AliasChoices("_id", "id"), description="API key ID"
    )
    user_id: int = Field(alias="userId", description="Owner of the key")
    key_hash: str = Field(alias="keyHash", description="SHA-256 hash of the key")
    prefix: str = Field(description="Non-secret leading slice shown in listings")
    name: str = Field(description="Label for the key")
    is_active: bool = Field(default=True, alias="isActive")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_used_at: datetime | None = Field(default=None, alias="lastUsedAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")


class ApiKeyPublic(BaseModel):
    """API key listing entry, without the hash."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    prefix: str
    name: str
    is_active: bool = Field(alias="isActive")
    created_at: datetime = Field(alias="createdAt")
    last_used_at: datetime | None = Field(default=None, alias="lastUsedAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")

    @classmethod
    def from_record(cls, record: ApiKeyRecord) -> "ApiKeyPublic":
        return cls(
            id=record.id,
            prefix=record.prefix,
            name=record.name,
            is_active=record.is_active,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            expires_at=record.expires_at,
        )


class RegisterRequest(BaseModel):
    """Request body for account registration."""

    email: EmailStr
    password: str = Field(min_length=6, max_length=128)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Require lower and upper case letters and a digit."""
        if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value):
            raise ValueError("Password must mix upper and lower case letters")
        if not re.search(r"\d", value):
            raise ValueError("Password must contain a digit")
        return value


class LoginRequest(BaseModel):
    """Request body for login."""

    email: EmailStr
    password: str = Field(min_length=1)


class AdminCreateUserRequest(BaseModel):
    """Request body for provisioning an API-only user."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=100)
    expires_in_days: int | None = Field(default=None, ge=1, le=3650)


class AdminApiKeyRequest(BaseModel):
    """Request body for issuing an extra key to an existing user."""

    name: str | None = Field(default=None, max_length=100)
    expires_in_days: int | None = Field(default=None, ge=1, le=3650)


class AdminNotificationRequest(BaseModel):
    """Request body for pushing a notification to a user's open sockets."""

    message: str = Field(min_length=1, max_length=500)
    title: str | None = Field(default=None, max_length=100)
