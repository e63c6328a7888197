"""Error taxonomy shared by every endpoint.

Each error knows its envelope `type`, machine `code` and HTTP status so the
exception handler in `app.main` can serialise it without inspecting it.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for all relay errors."""

    type = "Error"
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.type,
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


class ValidationError(RelayError):
    """Raised when the request is missing input or carries invalid input."""

    type = "ValidationError"
    code = "MISSING_INPUT"
    status_code = 400


class AuthenticationError(RelayError):
    """Raised when a session token or nonce is missing, invalid or expired."""

    type = "AuthenticationError"
    code = "INVALID_TOKEN"
    status_code = 401


class TranscriptionError(RelayError):
    """Raised when the upstream call fails or returns no usable result."""

    type = "TranscriptionError"
    code = "TRANSCRIPTION_FAILED"
    status_code = 500


class ConfigurationError(RelayError):
    """Raised when server-side configuration is missing or unreadable."""

    type = "ConfigurationError"
    code = "MISSING_API_KEY"
    status_code = 500


class NotFoundError(RelayError):
    type = "NotFoundError"
    code = "HISTORY_NOT_FOUND"
    status_code = 404
