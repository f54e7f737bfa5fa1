"""Rate-limit detection and retry policy for LLM calls.

Only provider throttling is retried. Anything else (bad requests, auth
failures, server errors) is raised to the caller on the first attempt.
"""

import logging
import re
import time
from typing import Any, Callable, Optional, TypeVar

import anthropic

T = TypeVar("T")

logger = logging.getLogger(__name__)

_RETRY_AFTER_PATTERN = re.compile(r"try again in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE)


def is_rate_limit_error(exc: BaseException) -> bool:
    """Check whether an exception is a provider rate-limit rejection."""
    if isinstance(exc, anthropic.RateLimitError):
        return True
    message = str(exc).lower()
    return "429" in message or "rate_limit" in message or "rate limit" in message


def parse_retry_after(message: str) -> Optional[float]:
    """Extract the "try again in Ns" hint from a provider error message."""
    match = _RETRY_AFTER_PATTERN.search(message or "")
    if not match:
        return None
    return float(match.group(1))


class RetryPolicy:
    """Bounded retry on rate limits with hint-aware waits."""

    def __init__(
        self,
        max_retries: int = 5,
        default_wait: float = 15.0,
        hint_padding: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            max_retries: Retries allowed after the first attempt
            default_wait: Seconds to wait when the provider gives no hint
            hint_padding: Seconds added on top of a provider hint
            sleep: Delay function, injectable for tests
        """
        self.max_retries = max_retries
        self.default_wait = default_wait
        self.hint_padding = hint_padding
        self.sleep = sleep

    def delay_for(self, attempt: int, hint: Optional[float] = None) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        if hint is not None:
            return hint + self.hint_padding
        return self.default_wait

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke ``func``, retrying on rate-limit errors up to the bound."""
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(
                        f"Rate limited after {attempt + 1} attempts, giving up: {e}"
                    )
                    raise

                attempt += 1
                wait = self.delay_for(attempt, parse_retry_after(str(e)))
                logger.info(
                    f"⏳ Rate limited - waiting {wait:.1f}s "
                    f"(attempt {attempt}/{self.max_retries})..."
                )
                self.sleep(wait)
