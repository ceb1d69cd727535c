"""Retry policy for provider calls: bounded attempts, exponential back-off."""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from errors import ProviderError, ProviderExhausted, RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a provider call.

    ``max_retries`` is the total number of attempts (at least one is always
    made). ``jitter`` is the largest random fraction added to each delay.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1

    @property
    def attempts(self) -> int:
        return max(1, self.max_retries)

    def compute_delay(
        self,
        attempt: int,
        retry_after: float | None = None,
        random_fn: Callable[[], float] = random.random,
    ) -> float:
        """Delay before the attempt following *attempt* (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        delay += delay * self.jitter * random_fn()
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)


def is_retryable(exc: BaseException) -> bool:
    """Transient provider failures are retryable; everything else is terminal."""
    return isinstance(exc, ProviderError) and exc.retryable


def run_with_retry(
    policy: RetryPolicy,
    operation: Callable[[], T],
    *,
    label: str = "provider call",
    sleep_fn: Callable[[float], None] | None = None,
    random_fn: Callable[[], float] = random.random,
    cancelled: threading.Event | None = None,
) -> T:
    """Call *operation* until it succeeds or the policy gives up.

    Terminal provider errors (``Unauthorized``, ``MalformedResponse``) are
    re-raised immediately. Non-provider exceptions are not caught.

    *cancelled* is checked before every attempt and before every back-off;
    once it is set no further call is made. Without a *sleep_fn* the back-off
    waits on *cancelled*, so a cancel also cuts the wait short.

    Raises:
        ProviderExhausted: every attempt failed with a retryable error.
        RunCancelled: *cancelled* was set before the call could finish.
    """
    if sleep_fn is None:
        sleep_fn = cancelled.wait if cancelled is not None else time.sleep

    attempts = policy.attempts
    for attempt in range(1, attempts + 1):
        if cancelled is not None and cancelled.is_set():
            raise RunCancelled(f"{label}: run cancelled before attempt {attempt}")
        try:
            return operation()
        except ProviderError as exc:
            if not is_retryable(exc):
                raise
            if attempt == attempts:
                raise ProviderExhausted(attempt, exc) from exc
            if cancelled is not None and cancelled.is_set():
                raise RunCancelled(f"{label}: run cancelled after attempt {attempt}") from exc
            delay = policy.compute_delay(
                attempt,
                retry_after=getattr(exc, "retry_after", None),
                random_fn=random_fn,
            )
            logger.warning(
                "Attempt %d/%d for %s failed: %s. Retrying in %.1fs…",
                attempt,
                attempts,
                label,
                exc,
                delay,
            )
            sleep_fn(delay)

    raise AssertionError("unreachable")  # pragma: no cover
