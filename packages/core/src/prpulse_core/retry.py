"""Retry with exponential backoff and jitter for GitHub requests.

Every upstream call goes through RetryPolicy.call(). The callable performs a
single attempt; the policy decides whether the failure is transient, sleeps,
and tries again. PyGithub's built-in retry is disabled when the client is
built (see prpulse_core.gh.repository) so backoff happens in exactly one place.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

import requests
from github import GithubException, RateLimitExceededException

from prpulse_core.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def is_retryable(exc: BaseException) -> bool:
    """Return True for failures worth another attempt: rate limits, 5xx, network."""
    if isinstance(exc, RateLimitExceededException):
        return True
    if isinstance(exc, GithubException):
        return exc.status in _RETRYABLE_STATUS
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config: dict) -> RetryPolicy:
        settings = config.get("retry") or {}
        return cls(
            max_attempts=settings.get("max_attempts", cls.max_attempts),
            base_delay=settings.get("base_delay", cls.base_delay),
            max_delay=settings.get("max_delay", cls.max_delay),
            jitter=settings.get("jitter", cls.jitter),
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is 0-based)."""
        delay = min(self.max_delay, self.base_delay * 2**attempt)
        return delay + random.uniform(0, self.jitter * delay)

    def call(self, fn: Callable[..., T], *args, description: str = "GitHub request", **kwargs) -> T:
        """Run ``fn`` until it succeeds, fails permanently, or attempts run out.

        Non-retryable exceptions propagate unchanged on the first failure.
        Exhausting the attempts on a transient failure raises UpstreamError.
        """
        for attempt in range(self.max_attempts):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt == self.max_attempts - 1:
                    logger.error("%s failed after %d attempts: %s", description, self.max_attempts, e)
                    raise UpstreamError(f"{description} failed after {self.max_attempts} attempts: {e}") from e
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                    description,
                    attempt + 1,
                    self.max_attempts,
                    e,
                    delay,
                )
                self.sleep(delay)
        raise UpstreamError(f"{description} was not attempted (max_attempts={self.max_attempts})")
