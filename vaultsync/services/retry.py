"""Retry with capped exponential backoff for remote provider calls."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from vaultsync.exceptions import NetworkError, RateLimitedError, RemoteServerError

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, RateLimitedError, RemoteServerError)


def is_transient(exc: BaseException) -> bool:
    """Transient provider failures are retried; everything else propagates."""
    return isinstance(exc, TRANSIENT_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.3
    max_delay: float = 6.0
    jitter_ratio: float = 0.2
    should_retry: Callable[[BaseException], bool] = field(default=is_transient)
    random_source: Callable[[], float] = field(default=random.random)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter_ratio=settings.retry_jitter_ratio,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based), never negative."""
        capped = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        jitter = capped * self.jitter_ratio * (self.random_source() * 2 - 1)
        return max(0.0, capped + jitter)


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "remote call",
) -> T:
    """Run ``operation``, retrying failures the policy accepts.

    The last error is re-raised once ``max_attempts`` is exhausted.
    """
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
                delay = max(delay, min(exc.retry_after, policy.max_delay))
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
