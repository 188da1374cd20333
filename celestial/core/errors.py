"""Domain errors raised by the auth services and mapped to HTTP statuses by the API."""


class AuthError(Exception):
    """Base class for auth failures surfaced to callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class BadRequestError(AuthError):
    status_code = 400


class UnauthorizedError(AuthError):
    """Identity could not be established (bad credentials or identity token)."""

    status_code = 401


class ForbiddenError(AuthError):
    """Identity is known but the action is disallowed."""

    status_code = 403


class NotFoundError(AuthError):
    status_code = 404


class AlreadyExistsError(AuthError):
    status_code = 409


class InternalError(AuthError):
    status_code = 500


class OtpCooldownError(BadRequestError):
    """A code was issued too recently; wait_seconds is rounded up."""

    def __init__(self, wait_seconds: int) -> None:
        self.wait_seconds = wait_seconds
        super().__init__(f"Wait for {wait_seconds}s more before trying again!")
