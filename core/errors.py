"""
Error Handling Module
---------------------
Typed export failures and operator-facing error reporting.

Every failure raised by the API layer carries the resource name, the
offending path and the terminal status so operators can tell a removed
endpoint from throttling from stale credentials.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional
import logging


class ErrorCategory(Enum):
    """Categories of export failures for handling decisions."""
    AUTH_ERROR = auto()         # Credentials refused or refresh failed
    RATE_LIMITED = auto()       # Retry budget exhausted under 429s
    HTTP_ERROR = auto()         # Non-retryable 4xx/5xx
    NETWORK_ERROR = auto()      # Timeout, connection or body decode failure


class ExportError(Exception):
    """Base class for every failure surfaced by the API layer."""

    category: ErrorCategory = ErrorCategory.HTTP_ERROR

    def __init__(
        self,
        message: str,
        resource: str = "",
        path: str = "",
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.resource = resource
        self.path = path
        self.status_code = status_code
        super().__init__(self._format())

    def _format(self) -> str:
        parts = []
        if self.resource:
            parts.append(f"[{self.resource}]")
        if self.path:
            parts.append(self.path)
        if self.status_code is not None:
            parts.append(f"-> {self.status_code}")
        parts.append(self.message)
        return " ".join(parts)

    def details(self) -> Dict[str, Any]:
        """Structured fields for logging."""
        return {
            "category": self.category.name,
            "resource": self.resource,
            "path": self.path,
            "status_code": self.status_code,
        }


class AuthError(ExportError):
    """Token refresh failed or a token was rejected twice in a row."""
    category = ErrorCategory.AUTH_ERROR


class RateLimitExceeded(ExportError):
    """Retry budget exhausted under sustained rate limiting."""
    category = ErrorCategory.RATE_LIMITED

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        self.attempts = attempts
        super().__init__(message, **kwargs)


class HttpError(ExportError):
    """Non-retryable HTTP status."""
    category = ErrorCategory.HTTP_ERROR


class NetworkError(ExportError):
    """Timeout, connection failure or malformed response body."""
    category = ErrorCategory.NETWORK_ERROR


@dataclass
class FailureRecord:
    """A handled failure kept in the handler's history."""
    category: ErrorCategory
    message: str
    resource: str = ""
    path: str = ""
    status_code: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_error(cls, error: ExportError) -> "FailureRecord":
        return cls(
            category=error.category,
            message=error.message,
            resource=error.resource,
            path=error.path,
            status_code=error.status_code,
        )

    def __repr__(self) -> str:
        return f"FailureRecord({self.category.name}: {self.resource} {self.message})"


class ErrorHandler:
    """
    Central error handler for per-resource failures.

    Logs each failure at a level matching its category and turns it into
    a message an operator can act on.
    """

    LEVELS: Dict[ErrorCategory, int] = {
        ErrorCategory.AUTH_ERROR: logging.ERROR,
        ErrorCategory.RATE_LIMITED: logging.WARNING,
        ErrorCategory.HTTP_ERROR: logging.ERROR,
        ErrorCategory.NETWORK_ERROR: logging.ERROR,
    }

    def __init__(self, max_history: int = 100):
        self._logger = logging.getLogger("ghl_export.errors")
        self._history: List[FailureRecord] = []
        self._max_history = max_history

    def handle(self, error: ExportError) -> str:
        """Log an error, remember it and return an operator message."""
        record = FailureRecord.from_error(error)

        level = self.LEVELS.get(record.category, logging.ERROR)
        self._logger.log(level, f"{record.category.name}: {error}", extra=error.details())

        self._history.append(record)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        return self._get_user_message(record)

    def _get_user_message(self, record: FailureRecord) -> str:
        if record.category == ErrorCategory.AUTH_ERROR:
            return "Credentials were rejected or could not be refreshed."
        if record.category == ErrorCategory.RATE_LIMITED:
            return "The API kept throttling requests; try again later."
        if record.category == ErrorCategory.NETWORK_ERROR:
            return f"Network problem talking to the API: {record.message}"
        if record.status_code == 404:
            return f"Endpoint {record.path} no longer exists."
        if record.status_code is not None and record.status_code >= 500:
            return f"The API failed with {record.status_code} on {record.path}."
        return f"Request to {record.path} was refused ({record.status_code})."

    def get_error_stats(self) -> Dict[str, int]:
        """Count handled failures per category."""
        stats: Dict[str, int] = {}
        for record in self._history:
            key = record.category.name
            stats[key] = stats.get(key, 0) + 1
        return stats

    @property
    def history(self) -> List[FailureRecord]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
