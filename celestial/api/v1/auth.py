"""Auth endpoints. Tokens travel as httpOnly cookies; the access token is also accepted as a Bearer header."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from celestial.api.deps import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_auth_service,
    get_current_user,
)
from celestial.core.config import Settings, get_settings
from celestial.core.errors import ForbiddenError
from celestial.models import User
from celestial.schemas.auth import (
    CredentialsRequest,
    CurrentUser,
    MessageResponse,
    RegisterRequest,
)
from celestial.services.auth import ACCESS_DENIED, AuthService
from celestial.services.tokens import TokenPair

router = APIRouter()


def _set_token_cookies(response: Response, pair: TokenPair, settings: Settings) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        max_age=settings.JWT_EXPIRATION_TIME,
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=settings.JWT_REFRESH_EXPIRATION_TIME,
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )


def _clear_token_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    """Create an unverified account and email a verification link."""
    auth.register(body.username, body.email, body.password)
    return MessageResponse(message="Registration Successful")


@router.post("/login", response_model=MessageResponse)
def login(
    body: CredentialsRequest,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    """
    Authenticate with username, password and the OTP from POST /auth/sendotp.
    Sets access_token and refresh_token cookies.
    """
    user = auth.authenticate(body.username, body.password)
    pair = auth.login(user, body.otp)
    _set_token_cookies(response, pair, settings)
    return MessageResponse(message="Login successful")


@router.post("/refresh", response_model=MessageResponse)
def refresh(
    request: Request,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    """Rotate the refresh_token cookie. The presented token cannot be used again."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise ForbiddenError(ACCESS_DENIED)
    pair = auth.refresh(token)
    _set_token_cookies(response, pair, settings)
    return MessageResponse(message="Refresh rotation successful")


@router.get("/verify/{token}", response_model=MessageResponse)
def verify_user(
    token: str,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    """Email verification link target; also logs the user in."""
    pair = auth.verify_email(token)
    _set_token_cookies(response, pair, settings)
    return MessageResponse(message="User verified successfully")


@router.post("/reverify", response_model=MessageResponse)
def reverify(
    body: CredentialsRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    user = auth.authenticate(body.username, body.password)
    auth.reverify(user)
    return MessageResponse(message="Email sent successfully")


@router.post("/sendotp", response_model=MessageResponse)
def send_otp(
    body: CredentialsRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    user = auth.authenticate(body.username, body.password)
    auth.send_otp(user)
    return MessageResponse(message="OTP successfully sent!")


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    """End the session behind the refresh_token cookie, even if that token has expired."""
    token = request.cookies.get(REFRESH_COOKIE)
    if token:
        auth.logout(token)
    _clear_token_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.post("/logoutall", response_model=MessageResponse)
def logout_all(
    response: Response,
    user: Annotated[User, Depends(get_current_user)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    auth.logout_all(user.id)
    _clear_token_cookies(response)
    return MessageResponse(message="Logged out from all devices")


@router.post("/users/{user_id}/logoutall", response_model=MessageResponse)
def revoke_user_sessions(
    user_id: str,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> MessageResponse:
    """Kill every session of another user (ADMIN only)."""
    count = auth.revoke_user_sessions(user_id)
    return MessageResponse(message=f"Revoked {count} sessions")


@router.get("/me", response_model=CurrentUser)
def me(user: Annotated[User, Depends(get_current_user)]) -> CurrentUser:
    return CurrentUser.model_validate(user)
