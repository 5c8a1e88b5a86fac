"""Resilience utilities for registry clients.

This module provides the retry policy used when a registry client first
connects to its store, and the exponential backoff that paces the
registration loop after failed registry calls.
"""

import logging

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from fm_discovery.errors import RegistryError

logger = logging.getLogger(__name__)


# Standard retry policy for the initial registry connection
# - Wait 2^x * 1 seconds between retries (2s, 4s, 8s, 16s, 32s)
# - Stop after 5 attempts (total ~62s wait time)
# - Only registry failures are retried, programming errors surface at once
# - Re-raise the last RegistryError if all retries fail
service_startup_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=2, max=32),
    retry=retry_if_exception_type(RegistryError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class ExponentialBackoff:
    """Retry delay that doubles on every failure up to a ceiling.

    Delays come from tenacity's ``wait_exponential`` evaluated for the
    current failure streak; ``reset()`` starts a new streak at ``start_ms``.

    Example:
        >>> backoff = ExponentialBackoff(start_ms=500, max_ms=1500)
        >>> [backoff.next_delay() for _ in range(4)]
        [0.5, 1.0, 1.5, 1.5]
    """

    def __init__(self, start_ms: int = 500, max_ms: int = 900000):
        if start_ms <= 0:
            raise ValueError(f"start_ms must be positive, got {start_ms}")
        self.start_ms = start_ms
        self.max_ms = max(max_ms, start_ms)
        self._wait = wait_exponential(multiplier=start_ms / 1000, max=self.max_ms / 1000)
        self._streak = self._new_streak()

    @staticmethod
    def _new_streak() -> RetryCallState:
        return RetryCallState(retry_object=None, fn=None, args=(), kwargs={})

    @property
    def failures(self) -> int:
        """Failures counted in the current streak."""
        return self._streak.attempt_number - 1

    @property
    def current_ms(self) -> int:
        """Delay the next failure will wait, in milliseconds."""
        return round(self._wait(self._streak) * 1000)

    def next_delay(self) -> float:
        """Return the delay in seconds for this failure and advance the streak."""
        delay = self._wait(self._streak)
        # once capped the delay no longer grows
        if delay * 1000 < self.max_ms:
            self._streak.prepare_for_next_attempt()
        return delay

    def reset(self) -> None:
        self._streak = self._new_streak()

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoff(start_ms={self.start_ms}, max_ms={self.max_ms}, "
            f"current_ms={self.current_ms})"
        )
