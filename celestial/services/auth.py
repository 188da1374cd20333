"""
Authentication flows: register, login (password + OTP), refresh, verify-email,
reverify, send-otp, logout and logout-all.

Refresh and OTP failures collapse into a single Forbidden outcome; the
specific reason is only logged.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from celestial.core.config import Settings
from celestial.core.errors import (
    AlreadyExistsError,
    BadRequestError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)
from celestial.core.security import SecretHasher
from celestial.core.tokens import InvalidTokenError
from celestial.models import User
from celestial.services.mailer import Mailer, dispatch_mail
from celestial.services.otp import OtpChallenge, utcnow
from celestial.services.sessions import RefreshSession, SessionRejected
from celestial.services.store import CredentialStore, StoreError, UniqueViolationError
from celestial.services.tokens import SESSION_CLAIM, TokenPair, TokenService

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Access Denied!"
INVALID_OTP = "Invalid or Expired OTP"

# Digest compared against for unknown usernames, one per bcrypt cost.
_decoy_digests: dict[int, str] = {}


class AuthService:
    """Composes the credential store, hasher, tokens, OTP and sessions into the auth flows."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        tokens: TokenService,
        mailer: Mailer,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.mailer = mailer
        self.settings = settings
        self.otp = OtpChallenge(
            store,
            hasher,
            mailer,
            expiry_seconds=settings.OTP_EXPIRY_SECONDS,
            cooldown_seconds=settings.OTP_COOLDOWN_SECONDS,
            clock=clock,
        )
        self.sessions = RefreshSession(store, hasher, tokens)

    def _decoy(self) -> str:
        rounds = self.settings.BCRYPT_ROUNDS
        if rounds not in _decoy_digests:
            _decoy_digests[rounds] = self.hasher.hash("decoy-password-for-unknown-users")
        return _decoy_digests[rounds]

    def _open_session(self, user: User) -> TokenPair:
        try:
            _, pair = self.sessions.open(user)
        except SessionRejected as e:
            logger.error("Session open failed", extra={"user_id": user.id, "reason": e.reason})
            raise InternalError("Something went wrong") from e
        except StoreError as e:
            logger.exception("Session open failed in storage", extra={"user_id": user.id})
            raise InternalError("Something went wrong") from e
        return pair

    def verification_link(self, token: str) -> str:
        issuer = self.settings.JWT_ISSUER.rstrip("/")
        return f"{issuer}{self.settings.API_V1_PREFIX}/auth/verify/{token}"

    def _send_verification(self, user: User) -> None:
        token = self.tokens.mint_verification(user)
        try:
            self.store.update_user(user.id, verification_token=token)
        except StoreError as e:
            logger.error("Storing verification token failed", extra={"user_id": user.id})
            raise InternalError("Something went wrong") from e
        dispatch_mail(
            self.mailer,
            user.email,
            "Verification",
            f"Click here to verify: {self.verification_link(token)}",
        )

    def register(self, username: str, email: str, password: str) -> User:
        """Create an unverified account and mail its verification link."""
        if self.store.find_user_by_username(username) or self.store.find_user_by_email(email):
            raise AlreadyExistsError("User already exists")
        try:
            user = self.store.create_user(username, email, self.hasher.hash(password))
        except UniqueViolationError as e:
            raise AlreadyExistsError("User already exists") from e
        except StoreError as e:
            logger.exception("User creation failed")
            raise InternalError("Something went wrong") from e

        logger.info("User registered", extra={"user_id": user.id})
        self._send_verification(user)
        return user

    def authenticate(self, username: str, password: str) -> User:
        """Check username and password; unknown users cost the same bcrypt compare."""
        user = self.store.find_user_by_username(username)
        if user is None:
            self.hasher.compare(password, self._decoy())
            raise UnauthorizedError("Invalid Credentials")
        if not self.hasher.compare(password, user.password_hash):
            raise UnauthorizedError("Invalid Credentials")
        return user

    def login(self, user: User, otp_code: str | None) -> TokenPair:
        """Second login step for a password-authenticated user: consume the OTP, open a session."""
        if not user.is_verified:
            raise ForbiddenError("User is not verified!")
        if not self.otp.consume(user, otp_code):
            raise ForbiddenError(INVALID_OTP)
        pair = self._open_session(user)
        logger.info("Login succeeded", extra={"user_id": user.id})
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. Every failure is the same Forbidden."""
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenError:
            logger.info("Refresh rejected", extra={"reason": "invalid_token"})
            raise ForbiddenError(ACCESS_DENIED) from None

        user_id = claims["sub"]
        session_id = claims.get(SESSION_CLAIM)
        if not session_id:
            logger.info("Refresh rejected", extra={"reason": "missing_session", "user_id": user_id})
            raise ForbiddenError(ACCESS_DENIED)
        try:
            return self.sessions.rotate(user_id, refresh_token, session_id)
        except SessionRejected as e:
            logger.warning(
                "Refresh rejected",
                extra={"reason": e.reason, "user_id": user_id, "session_id": session_id},
            )
            raise ForbiddenError(ACCESS_DENIED) from None
        except StoreError:
            logger.exception("Refresh failed in storage", extra={"session_id": session_id})
            raise ForbiddenError(ACCESS_DENIED) from None

    def verify_email(self, token: str) -> TokenPair:
        """Mark the account verified and log it in (first session)."""
        try:
            claims = self.tokens.verify_verification(token)
        except InvalidTokenError:
            raise UnauthorizedError("Token is invalid or expired!") from None

        user = self.store.find_user_by_id(claims["sub"])
        if user is None or user.verification_token != token:
            raise UnauthorizedError("Invalid token!")

        user = self.store.update_user(user.id, is_verified=True, verification_token=None)
        if user is None:
            raise UnauthorizedError("Invalid token!")
        pair = self._open_session(user)
        logger.info("Email verified", extra={"user_id": user.id})
        return pair

    def reverify(self, user: User) -> None:
        """Re-issue the verification link; the previous link stops working."""
        if user.is_verified:
            raise BadRequestError("User is already verified!")
        self._send_verification(user)

    def send_otp(self, user: User) -> None:
        current = self.store.find_user_by_id(user.id)
        if current is None:
            raise UnauthorizedError("User does not exist")
        self.otp.issue(current)

    def logout(self, refresh_token: str) -> bool:
        """
        Revoke the session named by refresh_token. Expired tokens are accepted;
        a token that fails signature checks is ignored.
        """
        try:
            claims = self.tokens.verify_refresh(refresh_token, allow_expired=True)
        except InvalidTokenError:
            logger.info("Logout with unreadable refresh token ignored")
            return False
        session_id = claims.get(SESSION_CLAIM)
        if not session_id:
            return False
        return self.sessions.revoke(session_id)

    def logout_all(self, user_id: str) -> int:
        return self.sessions.revoke_all(user_id)

    def revoke_user_sessions(self, user_id: str) -> int:
        """Administrative logout-all for another account."""
        if self.store.find_user_by_id(user_id) is None:
            raise NotFoundError("User not found!")
        count = self.sessions.revoke_all(user_id)
        logger.info("Sessions revoked by admin", extra={"user_id": user_id, "session_count": count})
        return count

    def current_user(self, access_token: str) -> User:
        """Resolve a verified user from an access token."""
        try:
            claims = self.tokens.verify_access(access_token)
        except InvalidTokenError:
            raise UnauthorizedError("Invalid or expired token") from None
        user = self.store.find_user_by_id(claims["sub"])
        if user is None:
            raise UnauthorizedError("User not found")
        if not user.is_verified:
            raise ForbiddenError("User is not verified")
        return user
