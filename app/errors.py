"""
Error Taxonomy

Every expected error in the deployment core derives from AppError and
carries its own HTTP status, machine-readable code and safe message.
register_exception_handlers() renders them as:

    {"status": "error", "code": "<CODE>", "message": "<message>"}

Messages must never contain secrets (webhook secrets, encryption keys,
access tokens).
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import get_settings

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


class AppError(Exception):
    """Base class for errors with a caller-visible HTTP mapping."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = INTERNAL_ERROR_MESSAGE

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input (bad repo string, missing ref, unparsable payload)."""
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request data"


class SignatureInvalid(AppError):
    """Webhook signature did not verify. Carries no detail."""
    status_code = 401
    code = "WEBHOOK_SIGNATURE_INVALID"
    default_message = "Invalid webhook signature"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Unauthorized access"


class CredentialUnavailable(AppError):
    """The owner's GitHub credential is missing or could not be decrypted."""
    status_code = 401
    code = "GITHUB_NOT_CONNECTED"
    default_message = "GitHub account not connected"


class PermissionDenied(AppError):
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"
    default_message = "You do not have permission to access this project"


class NotFound(AppError):
    """Unknown project or untracked repository; the two are indistinguishable."""
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class Conflict(AppError):
    status_code = 409
    code = "PROJECT_NAME_EXISTS"
    default_message = "Project name already exists"


class RateLimited(AppError):
    status_code = 429
    code = "TOO_MANY_REQUESTS"
    default_message = "Too many requests, please try again later"


class ConfigurationError(AppError):
    """Server-side configuration is missing (provider tokens, keys)."""
    status_code = 500
    code = "CONFIGURATION_ERROR"
    default_message = "Server is not configured for this operation"


class ProviderError(AppError):
    """
    A deployment provider call failed.

    Raised for any non-2xx provider response, timeouts, transport errors and
    credential encryption failures. `upstream_status` is the provider's HTTP
    status (None when no response was received).
    """
    status_code = 502
    code = "DEPLOYMENT_FAILED"
    default_message = "Deployment failed"

    def __init__(
        self,
        message: Optional[str] = None,
        provider: str = "",
        upstream_status: Optional[int] = None,
    ):
        self.provider = provider
        self.upstream_status = upstream_status
        self.detail = message or "request failed"
        super().__init__(f"Deployment failed: {self.detail}")


def _render(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "code": code, "message": message},
    )


def public_message(exc: AppError) -> str:
    """Client-facing message. In production, 5xx detail is withheld except for provider failures."""
    if exc.status_code >= 500 and exc.status_code != 502 and get_settings().is_production:
        return INTERNAL_ERROR_MESSAGE
    return exc.message


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    message = public_message(exc)

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    return _render(exc.status_code, exc.code, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _render(500, "INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the AppError and catch-all handlers to the application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
