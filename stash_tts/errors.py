"""
Error taxonomy shared by the job queue, the worker and the HTTP layer.
"""
import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    """Stable error codes callers can branch on."""
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    NOT_FOUND = 'NOT_FOUND'
    NO_CONTENT = 'NO_CONTENT'
    TTS_PROVIDER_UNAVAILABLE = 'TTS_PROVIDER_UNAVAILABLE'
    INTERNAL_ERROR = 'INTERNAL_ERROR'
    TIMEOUT = 'TIMEOUT'
    WORKER_RESTARTED = 'WORKER_RESTARTED'


HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NO_CONTENT: 400,
    ErrorCode.TTS_PROVIDER_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.WORKER_RESTARTED: 500,
}


class StashError(Exception):
    """
    Application error with a stable code.

    Attributes:
        message: Human-readable description
        code: One of ErrorCode
        http_status: Status used when the error reaches the HTTP layer
    """

    def __init__(self, message: str, code: ErrorCode, http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.http_status = http_status or HTTP_STATUS_BY_CODE[self.code]

    def __repr__(self):
        return f'<StashError {self.code.value}: {self.message}>'


def http_status_for_code(code: Optional[str]) -> int:
    """Map a persisted job error code to an HTTP status (unknown codes -> 500)."""
    try:
        return HTTP_STATUS_BY_CODE[ErrorCode(code)]
    except ValueError:
        return 500


def as_stash_error(error: BaseException) -> StashError:
    """Return error unchanged if it is a StashError, otherwise wrap it as INTERNAL_ERROR."""
    if isinstance(error, StashError):
        return error
    message = str(error) or error.__class__.__name__
    return StashError(message, ErrorCode.INTERNAL_ERROR)
