"""SQLAlchemy ORM models."""

from celestial.models.base import Base
from celestial.models.refresh_token import RefreshToken
from celestial.models.user import User, UserType

__all__ = ["Base", "RefreshToken", "User", "UserType"]
