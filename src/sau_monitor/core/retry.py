# src/sau_monitor/core/retry.py

"""
Bounded retries with exponential backoff for fallible external operations
(tab creation, notification creation, script injection).

Attempts are strictly sequential: the next attempt starts only after the previous one
failed and the backoff delay elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    timeout_seconds: float | None = None
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> RetryPolicy:
        policy = cls(
            max_retries=int(getattr(settings, "max_retries", 3)),
            base_delay_ms=int(getattr(settings, "base_retry_delay_ms", 1000)),
            max_delay_ms=int(getattr(settings, "max_retry_delay_ms", 10000)),
            timeout_seconds=getattr(settings, "operation_timeout_seconds", None) or None,
        )
        return replace(policy, **overrides) if overrides else policy

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        raw_ms = self.base_delay_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        if self.jitter:
            raw_ms += random.uniform(0, raw_ms * 0.1)
        delay_ms = min(raw_ms, self.max_delay_ms)
        return max(0.0, delay_ms / 1000.0)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    label: str = "operation",
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Run `operation` up to policy.max_retries times.

    Returns the first successful result; re-raises the last error when every attempt
    failed. Cancellation is never retried.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_retries))
    last_exc: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            if policy.timeout_seconds:
                return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_exc = exc
            if attempt >= attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %r; retrying in %.2fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)

    logger.error("%s failed after %d attempt(s): %r", label, attempts, last_exc)
    assert last_exc is not None
    raise last_exc


class RetryExecutor:
    """Holds a default policy; `run()` accepts per-call overrides."""

    def __init__(self, policy: RetryPolicy | None = None, *, sleep: SleepFn = asyncio.sleep) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        **overrides: Any,
    ) -> T:
        policy = replace(self.policy, **overrides) if overrides else self.policy
        return await run_with_retry(operation, policy, label=label, sleep=self._sleep)
