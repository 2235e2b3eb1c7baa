"""
Custom error classes for the application.

Every failure that crosses a component boundary is one of these. Only
the code and a safe message ever reach the client.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error taxonomy shared by the upload, OAuth and import paths."""
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    INVALID_GRANT = "INVALID_GRANT"
    STATE_MISMATCH = "STATE_MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_REQUEST = "INVALID_REQUEST"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    EXTERNAL_AUTH = "EXTERNAL_AUTH"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status for each kind when it reaches the client
STATUS_BY_KIND = {
    ErrorKind.INVALID_FILE_TYPE: 400,
    ErrorKind.FILE_TOO_LARGE: 413,
    ErrorKind.TOO_MANY_FILES: 400,
    ErrorKind.INVALID_GRANT: 400,
    ErrorKind.STATE_MISMATCH: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.EXTERNAL_AUTH: 401,
    ErrorKind.INTERNAL_ERROR: 500,
}


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        code: ErrorKind = ErrorKind.INTERNAL_ERROR,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code or STATUS_BY_KIND[code]
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for response."""
        return {
            "error": True,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


# Upload validation (user-correctable)

class InvalidFileTypeError(AppError):
    """Upload is not a CSV or Excel file."""

    def __init__(self, declared_type: str, filename: str = ""):
        super().__init__(
            f"Invalid file type. Only CSV and Excel files are allowed. Got: {declared_type or 'unknown'}",
            ErrorKind.INVALID_FILE_TYPE,
            details={"declaredType": declared_type, "filename": filename},
        )


class FileTooLargeError(AppError):
    """Upload exceeds the size ceiling."""

    def __init__(self, limit_bytes: int):
        super().__init__(
            f"The uploaded file exceeds the {limit_bytes // (1024 * 1024)}MB size limit.",
            ErrorKind.FILE_TOO_LARGE,
            details={"limitBytes": limit_bytes},
        )


class TooManyFilesError(AppError):
    """More than one file in a single upload request."""

    def __init__(self, count: int):
        super().__init__(
            "Please upload only one file at a time.",
            ErrorKind.TOO_MANY_FILES,
            details={"received": count},
        )


# OAuth handshake integrity (restart the flow)

class InvalidGrantError(AppError):
    """Authorization code is invalid, expired or already used."""

    def __init__(self, message: str = "Authorization code is invalid or was already used. Please sign in again."):
        super().__init__(message, ErrorKind.INVALID_GRANT)


class StateMismatchError(AppError):
    """OAuth state could not be correlated with an issued authorization URL."""

    def __init__(self, message: str = "Authorization state did not match. Please restart the Google sign-in."):
        super().__init__(message, ErrorKind.STATE_MISMATCH)


# Remote and lookup failures

class ExternalAuthError(AppError):
    """Google rejected the access token at call time (expired or revoked)."""

    def __init__(self, message: str = "Google access token was rejected."):
        super().__init__(message, ErrorKind.EXTERNAL_AUTH)


class PermissionRevokedError(ExternalAuthError):
    """Refresh token was revoked by the user or expired."""

    def __init__(self):
        super().__init__("Google access was revoked. Please sign in and grant permissions again.")


class NotFoundError(AppError):
    """Referenced file, spreadsheet or tab does not exist."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, ErrorKind.NOT_FOUND)


class AccessDeniedError(AppError):
    """Google account lacks access to the spreadsheet."""

    def __init__(self, message: str = "You don't have access to this spreadsheet."):
        super().__init__(message, ErrorKind.ACCESS_DENIED)


class QuotaExceededError(AppError):
    """Google API quota or rate limit exceeded."""

    def __init__(self):
        super().__init__(
            "Google Sheets quota exceeded. Please wait a moment and try again.",
            ErrorKind.QUOTA_EXCEEDED,
        )


class InvalidRequestError(AppError):
    """Invalid request format."""

    def __init__(self, message: str = "Invalid request format."):
        super().__init__(message, ErrorKind.INVALID_REQUEST)


class UpstreamUnavailableError(AppError):
    """Google timed out or is unreachable; retryable."""

    def __init__(self, message: str = "Couldn't reach Google. Please try again."):
        super().__init__(message, ErrorKind.UPSTREAM_UNAVAILABLE)
