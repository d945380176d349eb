"""Rate/Failure Guard - maps provider failures onto run-level errors.

Nothing here retries. A rate limit ends the run with a retry-after hint
for the caller; any other provider failure ends it as a provider error.
"""

import logging
from typing import Any, Optional

import openai

from conduit.orchestration.exceptions import (
    ConduitError,
    ProviderError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def parse_retry_after(value: Any) -> Optional[int]:
    """Seconds from a Retry-After style header value, or None."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return max(int(round(seconds)), 1)


def retry_after_from(exc: BaseException, default: int) -> int:
    """Retry-after hint from a provider exception's response headers."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        for header in ("retry-after", "x-ratelimit-reset-requests", "x-ratelimit-reset-tokens"):
            seconds = parse_retry_after(headers.get(header))
            if seconds is not None:
                return seconds
    seconds = parse_retry_after(getattr(exc, "retry_after", None))
    return seconds if seconds is not None else default


def is_rate_limit(exc: BaseException) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return _status_code(exc) == 429


def translate_provider_error(
    exc: BaseException, default_retry_after_seconds: int = 30
) -> ConduitError:
    """Translate an exception raised by the model client.

    Args:
        exc: Whatever the provider call raised.
        default_retry_after_seconds: Hint used when the provider gives none.

    Returns:
        RateLimitedError for rate limits, the exception itself if it is
        already a ConduitError, otherwise a ProviderError.
    """
    if isinstance(exc, ConduitError):
        return exc
    if is_rate_limit(exc):
        retry_after = retry_after_from(exc, default_retry_after_seconds)
        logger.warning(f"Model provider rate limited, retry after {retry_after}s")
        return RateLimitedError(
            f"The model provider is rate limiting requests. Try again in {retry_after} seconds.",
            retry_after_seconds=retry_after,
        )
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError("The model provider timed out.")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError("Could not reach the model provider.")
    status = _status_code(exc)
    detail = str(exc) or type(exc).__name__
    if status is not None:
        return ProviderError(f"Model provider error ({status}): {detail}")
    return ProviderError(f"Model provider error: {detail}")
