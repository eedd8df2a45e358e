# resumefind/core/retry.py
"""Bounded timeout + exponential backoff for calls to external services."""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type, TypeVar

from resumefind.core.errors import ResumeFindError

logger = logging.getLogger("core.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_backoff_sec: float = 0.5
    jitter_sec: float = 0.25
    timeout_sec: Optional[float] = None

    def backoff_for(self, attempt: int) -> float:
        return self.base_backoff_sec * (2 ** (attempt - 1)) + random.uniform(0, self.jitter_sec)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    error_cls: Type[ResumeFindError],
    what: str,
    stage: Optional[str] = None,
) -> T:
    """
    Await `fn()` with a per-attempt timeout, retrying retryable ResumeFindErrors and timeouts.

    Non-retryable errors (validation, not-found, programming errors) propagate on the first
    attempt. Once attempts are exhausted the last error is re-raised wrapped with `what`/`stage`.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if policy.timeout_sec:
                return await asyncio.wait_for(fn(), timeout=policy.timeout_sec)
            return await fn()
        except asyncio.TimeoutError:
            last: ResumeFindError = error_cls(f"{what} timed out after {policy.timeout_sec:.1f}s", stage=stage)
        except ResumeFindError as e:
            if not e.retryable:
                raise
            last = e

        if attempt >= policy.max_attempts:
            logger.error("%s failed after %d attempt(s): %s", what, attempt, last.message)
            wrapped_cls = type(last) if isinstance(last, ResumeFindError) else error_cls
            raise wrapped_cls(
                f"{what} failed after {attempt} attempt(s): {last.message}",
                stage=stage or last.stage,
            ) from last

        sleep_for = policy.backoff_for(attempt)
        logger.warning(
            "%s transient error: %s; retrying in %.2fs (attempt %d/%d)",
            what, last.message, sleep_for, attempt, policy.max_attempts,
        )
        await asyncio.sleep(sleep_for)
