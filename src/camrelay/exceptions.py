"""Domain level exceptions and their HTTP failure mapping."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

__all__ = [
    "AppError",
    "AuthError",
    "NotAuthenticatedError",
    "UpstreamError",
    "MissingUrlError",
    "ProcessSpawnError",
    "GrantExpiredError",
    "NotFoundError",
    "install_error_handlers",
]


class AppError(Exception):
    """Base class for application specific errors."""

    failure_reason = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class AuthError(AppError):
    """Raised when the credential is invalid, expired or cannot be refreshed."""

    failure_reason = "auth_error"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotAuthenticatedError(AuthError):
    """Raised when no refresh token has been configured yet."""

    failure_reason = "not_authenticated"


class UpstreamError(AppError):
    """Raised for non-success or malformed device API responses."""

    failure_reason = "upstream_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class MissingUrlError(UpstreamError):
    """Raised when a stream grant response carries no feed URL."""

    failure_reason = "missing_feed_url"


class ProcessSpawnError(AppError):
    """Raised when the relay program cannot be launched."""

    failure_reason = "relay_spawn_failed"


class GrantExpiredError(AppError):
    """Raised when a grant is used or extended after it expired."""

    failure_reason = "grant_expired"
    status_code = status.HTTP_410_GONE


class NotFoundError(AppError):
    """Raised when an operation references an unknown slot."""

    failure_reason = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


async def _app_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, AppError)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "failure_reason": exc.failure_reason,
            "details": str(exc),
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    """Render every :class:`AppError` as a structured error payload."""

    app.add_exception_handler(AppError, _app_error_handler)
