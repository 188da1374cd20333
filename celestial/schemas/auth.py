"""Request/response schemas for auth endpoints."""

import re

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from celestial.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)

SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


class RegisterRequest(BaseModel):
    """New account details."""

    username: str = Field(..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        if not re.search(r"[A-Z]", v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[0-9]", v):
            raise ValueError("Password must contain at least one number")
        if not SPECIAL_CHARACTERS.search(v):
            raise ValueError("Password must contain at least one special character")
        return v


class CredentialsRequest(BaseModel):
    """Username and password; otp is required only by login."""

    username: str = Field(..., min_length=1, max_length=255, description="Username")
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN, description="Password")
    otp: str | None = Field(default=None, max_length=16, description="One-time passcode")


class MessageResponse(BaseModel):
    message: str


class CurrentUser(BaseModel):
    """Authenticated principal for dependency injection."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    user_type: str
    is_verified: bool
