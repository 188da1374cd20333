"""
Dependency wiring and route authorization.

Every endpoint is listed in ROUTE_POLICIES; the single authorize dependency
attached to the v1 router looks the endpoint up and enforces its policy.
Endpoints missing from the table are refused.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from celestial.core.config import Settings, get_settings
from celestial.core.database import get_db
from celestial.core.errors import ForbiddenError, UnauthorizedError
from celestial.core.security import BcryptHasher
from celestial.models import User, UserType
from celestial.services.auth import AuthService
from celestial.services.mailer import Mailer, SmtpMailer
from celestial.services.store import SqlCredentialStore
from celestial.services.tokens import TokenService

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RoutePolicy:
    """public routes skip authentication; roles, when set, restrict by userType."""

    public: bool = False
    roles: frozenset[str] = frozenset()


PUBLIC = RoutePolicy(public=True)
AUTHENTICATED = RoutePolicy()
ADMIN_ONLY = RoutePolicy(roles=frozenset({UserType.ADMIN.value}))

ROUTE_POLICIES: dict[str, RoutePolicy] = {
    "get_health": PUBLIC,
    "register": PUBLIC,
    "login": PUBLIC,
    "refresh": PUBLIC,
    "verify_user": PUBLIC,
    "reverify": PUBLIC,
    "send_otp": PUBLIC,
    "logout": PUBLIC,
    "logout_all": AUTHENTICATED,
    "me": AUTHENTICATED,
    "revoke_user_sessions": ADMIN_ONLY,
}


@lru_cache
def _hasher_for_rounds(rounds: int) -> BcryptHasher:
    return BcryptHasher(rounds=rounds)


def get_hasher(settings: Annotated[Settings, Depends(get_settings)]) -> BcryptHasher:
    return _hasher_for_rounds(settings.BCRYPT_ROUNDS)


def get_mailer(settings: Annotated[Settings, Depends(get_settings)]) -> Mailer:
    return SmtpMailer.from_settings(settings)


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    hasher: Annotated[BcryptHasher, Depends(get_hasher)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> AuthService:
    return AuthService(
        SqlCredentialStore(db),
        hasher,
        TokenService(settings),
        mailer,
        settings,
    )


def _endpoint_name(request: Request) -> str | None:
    endpoint = request.scope.get("endpoint")
    return getattr(endpoint, "__name__", None)


def authorize(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> None:
    """Enforce the route's policy; stores the authenticated user on request.state."""
    name = _endpoint_name(request)
    policy = ROUTE_POLICIES.get(name or "")
    if policy is None:
        logger.warning("Route without access policy refused", extra={"endpoint": name})
        raise ForbiddenError("Access Denied!")
    if policy.public:
        return

    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise UnauthorizedError("Not authenticated")
    user = auth.current_user(token)
    if policy.roles and user.user_type not in policy.roles:
        raise ForbiddenError("Insufficient role")
    request.state.user = user


def get_current_user(request: Request) -> User:
    """Dependency: the user authorize() resolved for this request."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise UnauthorizedError("Not authenticated")
    return user
