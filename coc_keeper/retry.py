"""Retry policy for reasoning-collaborator calls.

One policy object replaces the per-call-site retry loops: capped exponential
backoff with optional jitter, a retryable-error predicate, and a helper that
retries a call *together with* the parse of its output, so a structurally
broken payload is retried exactly like a dropped connection.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from coc_keeper.llm import LLM, LLMError
from coc_keeper.pipeline.extractors import MalformedResponse

if TYPE_CHECKING:
    from coc_keeper.config import KeeperConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_retryable(error: BaseException) -> bool:
    return isinstance(error, (LLMError, MalformedResponse))


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts, including the first one.
        initial_delay: Delay in seconds before the second attempt.
        max_delay: Cap on any single delay.
        exponential_base: Growth factor between attempts.
        jitter: Add up to 25% random jitter to each delay.
        retry_on: Predicate deciding whether an error is worth retrying.
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on: Callable[[BaseException], bool] = field(default=_default_retryable)

    @classmethod
    def from_config(cls, config: KeeperConfig) -> RetryPolicy:
        r = config.retry
        return cls(
            max_attempts=r.max_attempts,
            initial_delay=r.initial_delay,
            max_delay=r.max_delay,
            exponential_base=r.exponential_base,
            jitter=r.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (0-indexed)."""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * 0.25)
        return delay

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run an async callable under this policy.

        Non-retryable errors propagate immediately. After the last attempt
        the last retryable error is re-raised.
        """
        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.retry_on(e) or attempt == self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt + 1, self.max_attempts, e, delay,
                )
                await asyncio.sleep(delay)
        raise RuntimeError("RetryPolicy.max_attempts must be at least 1")


async def call_structured(
    llm: LLM,
    stage: str,
    prompt: str,
    parse: Callable[[str], T],
    policy: RetryPolicy,
) -> T:
    """Call the collaborator and parse its output, retrying both as one unit."""

    async def _attempt() -> T:
        raw = await llm(stage, prompt)
        return parse(raw)

    return await policy.call(_attempt)
