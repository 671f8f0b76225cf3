# Core module - error taxonomy and export orchestration
# The orchestrator lives in core.exporter; it depends on the api package,
# which in turn raises the errors defined here.

from .errors import (
    ErrorCategory, ErrorHandler, ExportError, FailureRecord,
    AuthError, RateLimitExceeded, HttpError, NetworkError,
)

__all__ = [
    "ErrorCategory", "ErrorHandler", "ExportError", "FailureRecord",
    "AuthError", "RateLimitExceeded", "HttpError", "NetworkError",
]
