"""One-time passcode issuance, throttling and verification."""

import logging
import math
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from celestial.core.errors import OtpCooldownError
from celestial.core.security import SecretHasher
from celestial.models import User
from celestial.services.mailer import Mailer, dispatch_mail
from celestial.services.store import CredentialStore

logger = logging.getLogger(__name__)

OTP_LOW = 1000
OTP_HIGH = 9999


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes read back from storage as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def generate_code() -> str:
    """Uniform 4-digit code from the OS CSPRNG."""
    return str(OTP_LOW + secrets.randbelow(OTP_HIGH - OTP_LOW + 1))


class OtpChallenge:
    """
    Issues and checks short numeric codes tied to a user.

    Only the bcrypt hash of a code is stored, together with its expiry and
    issue time. Issuance is throttled to one code per cooldown window, and
    the write is conditional on the issue time read for the cooldown check.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        mailer: Mailer,
        *,
        expiry_seconds: int,
        cooldown_seconds: int,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.mailer = mailer
        self.expiry = timedelta(seconds=expiry_seconds)
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.clock = clock
        self.code_factory = code_factory

    def remaining_cooldown(self, user: User, now: datetime) -> int:
        """Seconds (rounded up) until a new code may be issued; 0 if allowed now."""
        if user.otp_issued_at is None:
            return 0
        elapsed = now - as_utc(user.otp_issued_at)
        remaining = (self.cooldown - elapsed).total_seconds()
        if remaining <= 0:
            return 0
        return min(math.ceil(remaining), math.ceil(self.cooldown.total_seconds()))

    def issue(self, user: User) -> None:
        """
        Generate a code, persist its hash, and mail it to the user.
        Raises OtpCooldownError if the previous code is younger than the cooldown.
        """
        now = self.clock()
        wait = self.remaining_cooldown(user, now)
        if wait > 0:
            raise OtpCooldownError(wait)

        code = self.code_factory()
        stored = self.store.set_otp(
            user.id,
            self.hasher.hash(code),
            now + self.expiry,
            now,
            expected_issued_at=user.otp_issued_at,
        )
        if not stored:
            # Lost a race with a concurrent issuance for the same user.
            current = self.store.find_user_by_id(user.id)
            wait = self.remaining_cooldown(current, now) if current is not None else 0
            logger.info("Concurrent OTP issuance rejected", extra={"user_id": user.id})
            raise OtpCooldownError(wait or math.ceil(self.cooldown.total_seconds()))

        logger.info("OTP issued", extra={"user_id": user.id})
        dispatch_mail(self.mailer, user.email, "Your one-time passcode", f"Your OTP is: {code}")

    def is_pending(self, user: User, now: datetime | None = None) -> bool:
        """True if the user holds an unexpired code."""
        if user.otp_hash is None or user.otp_expiry is None:
            return False
        return (now or self.clock()) < as_utc(user.otp_expiry)

    def verify(self, user: User, code: str | None) -> bool:
        """Check code against the pending hash; expired or absent codes never match."""
        if not code:
            logger.info("OTP rejected", extra={"user_id": user.id, "reason": "missing_code"})
            return False
        if not self.is_pending(user):
            logger.info("OTP rejected", extra={"user_id": user.id, "reason": "none_pending"})
            return False
        if not self.hasher.compare(code, user.otp_hash):
            logger.info("OTP rejected", extra={"user_id": user.id, "reason": "mismatch"})
            return False
        return True

    def consume(self, user: User, code: str | None) -> bool:
        """Verify and clear in one step; a code can be consumed at most once."""
        if not self.verify(user, code):
            return False
        if not self.store.clear_otp(user.id, expected_hash=user.otp_hash):
            logger.info("OTP rejected", extra={"user_id": user.id, "reason": "already_consumed"})
            return False
        return True
