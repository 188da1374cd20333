"""Pydantic request/response schemas."""

from celestial.schemas.auth import (
    CredentialsRequest,
    CurrentUser,
    MessageResponse,
    RegisterRequest,
)
from celestial.schemas.health import HealthResponse

__all__ = [
    "CredentialsRequest",
    "CurrentUser",
    "HealthResponse",
    "MessageResponse",
    "RegisterRequest",
]
