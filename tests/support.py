"""Shared builders for tests: settings, SQLite sessions, a fake clock and a recording mailer."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from celestial.core.config import Settings
from celestial.core.security import BcryptHasher
from celestial.models import Base

AUTH_SECRET = "test-auth-secret-for-automation-only-0123456789"
VERIFICATION_SECRET = "test-verification-secret-for-automation-only-987"

hasher = BcryptHasher(rounds=4)


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "DATABASE_URL": "sqlite://",
        "JWT_AUTH_SECRET": AUTH_SECRET,
        "VERIFICATION_SECRET": VERIFICATION_SECRET,
        "BCRYPT_ROUNDS": 4,
        "OTP_EXPIRY_SECONDS": 600,
        "OTP_COOLDOWN_SECONDS": 60,
        "MAIL_HOST": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_session(engine: Engine | None = None) -> Session:
    return sessionmaker(bind=engine or make_engine(), autoflush=False)()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingMailer:
    """Mailer that keeps every message; set fail=True to make send raise."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.sent.append((to_address, subject, body))

    @property
    def last_body(self) -> str:
        return self.sent[-1][2]

    def last_otp(self) -> str:
        return self.last_body.rsplit(":", 1)[1].strip()

    def last_verification_token(self) -> str:
        return self.last_body.rsplit("/", 1)[1].strip()
