"""
Retry Policy
------------
Decides whether a failed attempt is retried and how long to wait.

Only rate limiting is retried. Server and client errors are surfaced
immediately; authentication failures are resolved by the executor's
single forced refresh, never by backoff.
"""

from dataclasses import dataclass

from api.client import RequestDescriptor, RequestResult, StatusCategory
from core.errors import AuthError, ExportError, HttpError, RateLimitExceeded


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of one retry decision."""
    should_retry: bool
    delay: float = 0.0


NO_RETRY = RetryDecision(should_retry=False)


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff for rate-limited responses.

    `max_attempts` counts retries after the first call, so a request is
    issued at most `max_attempts + 1` times.
    """
    max_attempts: int = 5
    backoff_base: float = 1.0   # Seconds
    backoff_cap: float = 30.0   # Seconds

    def backoff(self, attempt_index: int) -> float:
        """Delay before retry number `attempt_index` (0-based)."""
        return min(self.backoff_base * (2 ** attempt_index), self.backoff_cap)

    def decide(self, category: StatusCategory, attempt_index: int) -> RetryDecision:
        if category == StatusCategory.RATE_LIMITED and attempt_index < self.max_attempts:
            return RetryDecision(should_retry=True, delay=self.backoff(attempt_index))
        return NO_RETRY

    def terminal_error(
        self,
        result: RequestResult,
        descriptor: RequestDescriptor,
        attempts: int,
    ) -> ExportError:
        """Map a failure that will not be retried to its typed error."""
        context = {
            "resource": descriptor.name,
            "path": descriptor.path,
            "status_code": result.status_code,
        }
        if result.category == StatusCategory.RATE_LIMITED:
            return RateLimitExceeded(
                f"Still rate limited after {attempts} attempts",
                attempts=attempts,
                **context,
            )
        if result.category == StatusCategory.AUTH_FAILURE:
            return AuthError("Access token rejected", **context)
        return HttpError(f"{result.category.value} response", **context)
