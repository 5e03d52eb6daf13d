"""
Error types raised by the sheet core.

Configuration-class failures (NotFound, AccessDenied, Malformed) are surfaced
immediately and never retried. TransientError is the only retryable kind.
"""

from typing import Optional


class SheetsError(Exception):
    """Base class for every error raised by the sheet core."""

    status_code: Optional[int] = None

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(SheetsError):
    """A required secret or setting is missing."""


class NotFound(SheetsError):
    """Spreadsheet or tab does not exist (HTTP 404)."""

    status_code = 404


class AccessDenied(SheetsError):
    """Sharing or API enablement is misconfigured (HTTP 403)."""

    status_code = 403


class BadRequest(SheetsError):
    """Upstream rejected the request shape, e.g. an unknown range (HTTP 400)."""

    status_code = 400


class Malformed(SheetsError):
    """Tab content does not have the expected header layout."""


class TransientError(SheetsError):
    """Network failure, 5xx or 429. Retried with backoff by the transport."""


class AuthFailed(SheetsError):
    """Delegated authentication did not yield a token."""


class BatchWriteFailed(SheetsError):
    """A batch update was rejected or its outcome is unknown.

    The whole batch must be treated as failed; reload and re-verify.
    """


class AppendConflict(SheetsError):
    """Target append row was taken by another writer before commit."""


class StaleRecord(SheetsError):
    """A selected record no longer sits at its recorded row."""


class OperationCancelled(SheetsError):
    """The caller cancelled the operation at an await boundary."""
