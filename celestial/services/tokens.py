"""Minting and verification of access, refresh and email-verification tokens."""

from dataclasses import dataclass
from typing import Any

from celestial.core.config import Settings
from celestial.core.tokens import TokenCodec, TokenPurpose
from celestial.models import User

SESSION_CLAIM = "tokenId"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """
    Binds TokenCodec to configured secrets and lifetimes.

    Access and refresh tokens are signed with JWT_AUTH_SECRET and told apart
    by their purpose claim; verification tokens use VERIFICATION_SECRET.
    """

    def __init__(self, settings: Settings, codec: TokenCodec | None = None) -> None:
        self.settings = settings
        self.codec = codec or TokenCodec(
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            algorithm=settings.JWT_ALGORITHM,
        )

    @property
    def _auth_secret(self) -> str:
        return self.settings.JWT_AUTH_SECRET.get_secret_value()

    @property
    def _verification_secret(self) -> str:
        return self.settings.VERIFICATION_SECRET.get_secret_value()

    def mint_access(self, user: User) -> str:
        return self.codec.sign(
            user.id,
            self.settings.JWT_EXPIRATION_TIME,
            self._auth_secret,
            TokenPurpose.ACCESS,
            {
                "username": user.username,
                "email": user.email,
                "userType": user.user_type,
                "isVerified": bool(user.is_verified),
            },
        )

    def mint_refresh(self, user: User, session_id: str) -> str:
        return self.codec.sign(
            user.id,
            self.settings.JWT_REFRESH_EXPIRATION_TIME,
            self._auth_secret,
            TokenPurpose.REFRESH,
            {SESSION_CLAIM: session_id},
        )

    def mint_pair(self, user: User, session_id: str) -> TokenPair:
        return TokenPair(
            access_token=self.mint_access(user),
            refresh_token=self.mint_refresh(user, session_id),
        )

    def mint_verification(self, user: User) -> str:
        return self.codec.sign(
            user.id,
            self.settings.VERIFICATION_EXPIRATION_TIME,
            self._verification_secret,
            TokenPurpose.VERIFICATION,
        )

    def verify_access(self, token: str) -> dict[str, Any]:
        return self.codec.verify(token, self._auth_secret, TokenPurpose.ACCESS)

    def verify_refresh(self, token: str, *, allow_expired: bool = False) -> dict[str, Any]:
        return self.codec.verify(
            token,
            self._auth_secret,
            TokenPurpose.REFRESH,
            verify_exp=not allow_expired,
        )

    def verify_verification(self, token: str) -> dict[str, Any]:
        return self.codec.verify(token, self._verification_secret, TokenPurpose.VERIFICATION)
