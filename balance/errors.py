"""
Domain exceptions for the Balance backend.

Services raise these; ``balance.api.app`` maps them onto HTTP responses
with a single exception handler, so service code never imports FastAPI.
"""

from __future__ import annotations


class BalanceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(BalanceError):
    status_code = 400
    default_message = "Bad request."


class InvalidTokenError(BadRequestError):
    """Unknown, expired and already-used magic tokens all look the same."""

    default_message = "Invalid or expired token."


class UnauthorizedError(BalanceError):
    status_code = 401
    default_message = "Invalid or expired access token."


class ForbiddenError(BalanceError):
    status_code = 403
    default_message = "Access to this session is not allowed."


class NotFoundError(BalanceError):
    status_code = 404
    default_message = "Not found."


class StorageError(BalanceError):
    """Object storage failure, carrying a caller-safe classified reason."""

    status_code = 502
    default_message = "Failed to upload file to storage."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class SessionIdAllocationError(BalanceError):
    default_message = "Unable to create a unique session ID."


class TokenIssueError(BalanceError):
    default_message = "Unable to issue a sign-in token."


class ConfigurationError(RuntimeError):
    """Terminal misconfiguration detected at startup."""


class EmailDeliveryError(BalanceError):
    """Magic-link email could not be handed to the provider."""

    status_code = 502
    default_message = "Failed to send magic link email."
