"""Retry policy for reasoning-service calls."""

import logging
from dataclasses import dataclass
from typing import Optional

import openai

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
SERVER_ERROR_STATUSES = (500, 503)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Which failures are worth waiting for, and for how long.

    429 waits for the service-advised retry-after (or the default);
    500/503 wait a fixed delay; everything else is treated as permanent.
    """

    max_attempts: int = 3
    rate_limit_wait: float = 60.0
    server_error_wait: float = 10.0

    def backoff_for_status(self, status: Optional[int], retry_after: Optional[float] = None) -> Optional[float]:
        """
        Seconds to wait before retrying a failed call.

        Args:
            status: HTTP status code of the failure (None if there was none)
            retry_after: Service-advised wait in seconds, if any

        Returns:
            Delay in seconds, or None when the failure should not be retried
        """
        if status == RATE_LIMIT_STATUS:
            return retry_after if retry_after is not None else self.rate_limit_wait
        if status in SERVER_ERROR_STATUSES:
            return self.server_error_wait
        return None

    def backoff_for_error(self, error: Exception) -> Optional[float]:
        """Delay for an exception raised by the OpenAI client, or None."""
        if not isinstance(error, openai.APIStatusError):
            return None
        return self.backoff_for_status(error.status_code, _retry_after_seconds(error))


def _retry_after_seconds(error: openai.APIStatusError) -> Optional[float]:
    headers = getattr(error.response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric retry-after header: {value!r}")
        return None
    return max(0.0, seconds)
