"""
Credential storage: user records and refresh-token session records.

Every state transition that guards a security property (refresh rotation,
OTP issuance, OTP consumption) is a conditional UPDATE keyed on the value
the caller read, so two racing writers cannot both succeed.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from celestial.models import RefreshToken, User, UserType

logger = logging.getLogger(__name__)

# Fields update_user is allowed to touch.
UPDATABLE_USER_FIELDS = frozenset(
    {
        "username",
        "email",
        "password_hash",
        "is_verified",
        "verification_token",
        "otp_hash",
        "otp_expiry",
        "otp_issued_at",
        "user_type",
    }
)


class StoreError(Exception):
    """Unexpected persistence failure."""


class UniqueViolationError(StoreError):
    """A unique constraint (username or email) was violated."""


class CredentialStore(Protocol):
    def find_user_by_username(self, username: str) -> User | None: ...

    def find_user_by_email(self, email: str) -> User | None: ...

    def find_user_by_id(self, user_id: str) -> User | None: ...

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        user_type: UserType = UserType.USER,
        is_verified: bool = False,
    ) -> User: ...

    def update_user(self, user_id: str, **fields: Any) -> User | None: ...

    def delete_user(self, user_id: str) -> bool: ...

    def set_otp(
        self,
        user_id: str,
        otp_hash: str,
        otp_expiry: datetime,
        otp_issued_at: datetime,
        *,
        expected_issued_at: datetime | None,
    ) -> bool: ...

    def clear_otp(self, user_id: str, *, expected_hash: str) -> bool: ...

    def create_refresh_record(self, user_id: str, token_hash: str) -> RefreshToken: ...

    def find_refresh_record_by_id(self, record_id: str) -> RefreshToken | None: ...

    def update_refresh_record_hash(
        self, record_id: str, *, expected_hash: str, new_hash: str
    ) -> bool: ...

    def delete_refresh_record(self, record_id: str) -> bool: ...

    def delete_all_refresh_records_for_user(self, user_id: str) -> int: ...


class SqlCredentialStore:
    """CredentialStore over a SQLAlchemy session. Each mutating call commits."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Roll back and raise StoreError for any driver or ORM failure."""
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(str(e)) from e

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise UniqueViolationError(str(getattr(e, "orig", e))) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(str(e)) from e

    def _conditional_update(self, query, values: dict[str, Any]) -> bool:
        with self._guard():
            updated = query.update(values, synchronize_session=False)
        self._commit()
        # Drop cached instances so later reads see the committed row.
        self.session.expire_all()
        return updated == 1

    def _delete_where(self, *criteria) -> int:
        with self._guard():
            deleted = (
                self.session.query(RefreshToken)
                .filter(*criteria)
                .delete(synchronize_session=False)
            )
        self._commit()
        return deleted

    def find_user_by_username(self, username: str) -> User | None:
        with self._guard():
            return self.session.query(User).filter(User.username == username).first()

    def find_user_by_email(self, email: str) -> User | None:
        with self._guard():
            return self.session.query(User).filter(User.email == email).first()

    def find_user_by_id(self, user_id: str) -> User | None:
        with self._guard():
            return self.session.get(User, user_id)

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        user_type: UserType = UserType.USER,
        is_verified: bool = False,
    ) -> User:
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            user_type=user_type.value,
            is_verified=is_verified,
        )
        self.session.add(user)
        self._commit()
        with self._guard():
            self.session.refresh(user)
        return user

    def update_user(self, user_id: str, **fields: Any) -> User | None:
        unknown = set(fields) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        user = self.find_user_by_id(user_id)
        if user is None:
            return None
        for name, value in fields.items():
            setattr(user, name, value)
        self._commit()
        with self._guard():
            self.session.refresh(user)
        return user

    def delete_user(self, user_id: str) -> bool:
        user = self.find_user_by_id(user_id)
        if user is None:
            return False
        with self._guard():
            self.session.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(
                synchronize_session=False
            )
            self.session.delete(user)
        self._commit()
        return True

    def set_otp(
        self,
        user_id: str,
        otp_hash: str,
        otp_expiry: datetime,
        otp_issued_at: datetime,
        *,
        expected_issued_at: datetime | None,
    ) -> bool:
        """Store a new OTP only if otp_issued_at still holds the value the caller read."""
        query = self.session.query(User).filter(User.id == user_id)
        if expected_issued_at is None:
            query = query.filter(User.otp_issued_at.is_(None))
        else:
            query = query.filter(User.otp_issued_at == expected_issued_at)
        return self._conditional_update(
            query,
            {
                User.otp_hash: otp_hash,
                User.otp_expiry: otp_expiry,
                User.otp_issued_at: otp_issued_at,
            },
        )

    def clear_otp(self, user_id: str, *, expected_hash: str) -> bool:
        """Consume the pending OTP; False if it was already consumed or replaced."""
        query = self.session.query(User).filter(
            User.id == user_id, User.otp_hash == expected_hash
        )
        return self._conditional_update(
            query,
            {User.otp_hash: None, User.otp_expiry: None, User.otp_issued_at: None},
        )

    def create_refresh_record(self, user_id: str, token_hash: str) -> RefreshToken:
        record = RefreshToken(user_id=user_id, token_hash=token_hash)
        self.session.add(record)
        self._commit()
        with self._guard():
            self.session.refresh(record)
        return record

    def find_refresh_record_by_id(self, record_id: str) -> RefreshToken | None:
        with self._guard():
            return self.session.get(RefreshToken, record_id)

    def update_refresh_record_hash(
        self, record_id: str, *, expected_hash: str, new_hash: str
    ) -> bool:
        """Swap token_hash only if it still equals expected_hash."""
        query = self.session.query(RefreshToken).filter(
            RefreshToken.id == record_id, RefreshToken.token_hash == expected_hash
        )
        return self._conditional_update(query, {RefreshToken.token_hash: new_hash})

    def delete_refresh_record(self, record_id: str) -> bool:
        return self._delete_where(RefreshToken.id == record_id) > 0

    def delete_all_refresh_records_for_user(self, user_id: str) -> int:
        deleted = self._delete_where(RefreshToken.user_id == user_id)
        if deleted:
            logger.info(
                "Deleted refresh sessions", extra={"user_id": user_id, "session_count": deleted}
            )
        return deleted
