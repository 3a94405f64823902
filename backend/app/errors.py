"""
backend/app/errors.py

Purpose:
    Domain error taxonomy raised by services and mapped to HTTP responses by
    the exception handler registered in app.main.
"""

from fastapi import status


class AppError(Exception):
    """Base for errors that are safe to show to the client."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input."


class AuthRequiredError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required."


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied."


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found."


class AlreadyResolvedError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "This request has already been processed."


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Duplicate entry."


class CooldownError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Please try again later."


class UpstreamError(AppError):
    """External provider failure. Providers catch this and degrade."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "External provider unavailable."
