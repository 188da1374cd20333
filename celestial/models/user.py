"""ORM model for user accounts (identity, email verification and OTP state)."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String, Text, func

from celestial.models.base import Base, new_id


class UserType(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class User(Base):
    """
    User account for password + OTP login and role-based access control.

    otp_hash, otp_expiry and otp_issued_at are either all set or all null.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(32), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_token = Column(Text, nullable=True)
    otp_hash = Column(String(255), nullable=True)
    otp_expiry = Column(DateTime(timezone=True), nullable=True)
    otp_issued_at = Column(DateTime(timezone=True), nullable=True)
    user_type = Column(String(16), nullable=False, default=UserType.USER.value)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
