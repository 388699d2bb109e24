"""Resilience utilities for the helpdesk core.

This module provides the retry policy wrapped around every backend call made
by the thread view (bounded exponential backoff with jitter) and the startup
retry used when verifying infrastructure connections.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from helpdesk_core.errors import TransientBackendError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Standard retry policy for infrastructure connections at startup
# - Wait 2^x * 1 seconds between retries (2s, 4s, 8s, 16s)
# - Stop after 5 attempts
# - Re-raise the exception if all retries fail
service_startup_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=2, max=32),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class wait_backoff_jitter(wait_base):
    """Wait ``initial * 2^(attempt-1) + jitter`` seconds, capped at a ceiling
    and at whatever is left of the total sleep budget."""

    def __init__(self, policy: "RetryPolicy"):
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.policy.compute_delay(retry_state.attempt_number)
        remaining = self.policy.total_budget - retry_state.idle_for
        return max(0.0, min(delay, remaining))


class stop_when_budget_spent(stop_base):
    """Stop once the next un-jittered delay no longer fits in the budget."""

    def __init__(self, policy: "RetryPolicy"):
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> bool:
        upcoming = self.policy.compute_base_delay(retry_state.attempt_number)
        return retry_state.idle_for + upcoming > self.policy.total_budget


class RetryPolicy:
    """Bounded exponential backoff with jitter for async operations.

    Attempt ``n`` (1-indexed) that fails waits
    ``initial_delay * 2^(n-1) + U[0, max_jitter)`` seconds, never more than
    ``max_delay``, before attempt ``n + 1``. After ``max_attempts`` the last
    error propagates unchanged. Non-retryable errors (validation, access
    denied, 4xx) propagate immediately.

    Usage:
        policy = RetryPolicy(max_attempts=3, initial_delay=0.3)
        replies = await policy.call(client.fetch_replies, case_id)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.3,
        max_jitter: float = 0.3,
        max_delay: float = 30.0,
        total_budget: float = 5.0,
        attempt_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Total attempts including the first; <= 0 means one attempt
            initial_delay: Delay after the first failure (seconds)
            max_jitter: Upper bound of the random jitter added to each delay (seconds)
            max_delay: Ceiling for a single delay (seconds)
            total_budget: Ceiling for the sum of all delays (seconds)
            attempt_timeout: Optional timeout applied to each attempt (seconds)
            sleep: Awaitable sleep function (injectable for tests)
            rng: Source of uniform floats in [0, 1) (injectable for tests)
        """
        self.max_attempts = max(1, max_attempts)
        self.initial_delay = initial_delay
        self.max_jitter = max_jitter
        self.max_delay = max_delay
        self.total_budget = total_budget
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> "RetryPolicy":
        """Build a policy from ``HelpdeskSettings``."""
        params = dict(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_jitter=settings.retry_max_jitter,
            max_delay=settings.retry_max_delay,
            total_budget=settings.retry_total_budget,
            attempt_timeout=settings.request_timeout,
        )
        params.update(kwargs)
        return cls(**params)

    def compute_base_delay(self, attempt: int) -> float:
        """Delay before the next try after failed attempt ``attempt``, without jitter."""
        return self.initial_delay * (2 ** (max(1, attempt) - 1))

    def compute_delay(self, attempt: int) -> float:
        """Jittered delay, in ``[base, base + max_jitter)`` below the ceiling."""
        jitter = self._rng() * self.max_jitter
        return min(self.compute_base_delay(attempt) + jitter, self.max_delay)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        sleep_for = getattr(retry_state.next_action, "sleep", 0.0) or 0.0
        logger.warning(
            f"[Resilience] Attempt {retry_state.attempt_number}/{self.max_attempts} failed, "
            f"retrying in {sleep_for:.2f}s. Exception: {exc!r}"
        )

    async def _attempt(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if self.attempt_timeout is None:
            return await fn(*args, **kwargs)
        try:
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=self.attempt_timeout)
        except asyncio.TimeoutError as e:
            raise TransientBackendError(
                f"Attempt timed out after {self.attempt_timeout}s",
                details={"timeout": self.attempt_timeout},
            ) from e

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` under this policy.

        Returns:
            Result of the first successful attempt

        Raises:
            The exception of the last attempt once retries are exhausted
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts) | stop_when_budget_spent(self),
            wait=wait_backoff_jitter(self),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(fn, *args, **kwargs)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover
