"""Signing and verification of compact expiring tokens (JWT via PyJWT)."""

import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt


class TokenPurpose(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"
    VERIFICATION = "VERIFICATION"


PURPOSE_CLAIM = "payloadType"


class InvalidTokenError(Exception):
    """Token is expired, malformed, forged, or minted for another purpose.

    Deliberately carries no detail about which of those it was.
    """


class TokenCodec:
    """
    Signs and verifies JWTs with a fixed issuer, audience and algorithm.

    Secrets are passed per call so each token purpose can use its own key.
    Expiry is strict: no leeway for clock skew.
    """

    def __init__(self, issuer: str, audience: str, algorithm: str = "HS256") -> None:
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm

    def sign(
        self,
        subject: str,
        expires_in: int,
        secret: str,
        purpose: TokenPurpose,
        extra_claims: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Create a signed token for subject expiring expires_in seconds after now."""
        issued_at = now or datetime.now(UTC)
        payload: dict[str, Any] = dict(extra_claims or {})
        payload.update(
            {
                "sub": str(subject),
                "iss": self.issuer,
                "aud": self.audience,
                "iat": issued_at,
                "exp": issued_at + timedelta(seconds=expires_in),
                "jti": uuid.uuid4().hex,
                PURPOSE_CLAIM: purpose.value,
            }
        )
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def verify(
        self,
        token: str,
        secret: str,
        purpose: TokenPurpose,
        *,
        verify_exp: bool = True,
    ) -> dict[str, Any]:
        """
        Decode and validate a token; return its claims.
        Raises InvalidTokenError for every failure, including a purpose mismatch.
        """
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                leeway=0,
                options={"verify_exp": verify_exp, "require": ["sub", "exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError() from exc
        if claims.get(PURPOSE_CLAIM) != purpose.value:
            raise InvalidTokenError()
        return claims
