"""
Error taxonomy for the asset-backed record subsystem.

Every error a commit, delete or reorder can surface derives from
CommitError and carries the HTTP status the routes report it with.
CompensationFailure is internal: it is logged by the compensation
manager and never reaches a caller.
"""

from fastapi import status


class CommitError(Exception):
    """Base class for failures surfaced to the caller as a structured result"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CommitError):
    """Size, type, count or required-field violation. Raised before any I/O."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(CommitError):
    """Missing principal, or a principal that does not own the record"""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, authenticated: bool = True):
        super().__init__(message)
        if not authenticated:
            self.status_code = status.HTTP_401_UNAUTHORIZED


class RecordNotFound(CommitError):
    status_code = status.HTTP_404_NOT_FOUND


class UploadError(CommitError):
    """One or more uploads in a batch failed; the batch is void."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, reasons: list[str] | None = None):
        super().__init__(message)
        self.reasons = reasons or []


class PersistError(CommitError):
    """The record write failed after uploads had completed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class CompensationFailure(Exception):
    """A cleanup deletion failed. Logged only."""

    def __init__(self, reference: str, reason: str):
        super().__init__(f"Failed to delete asset {reference}: {reason}")
        self.reference = reference
        self.reason = reason
