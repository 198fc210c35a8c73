from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode, is_transient
from invoice_intake.core.logging import get_logger, log_event

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CallPolicy:
    """Hard timeout per attempt plus a sequential exponential-backoff retry budget."""

    timeout_seconds: float
    retries: int
    base_delay_seconds: float

    @classmethod
    def from_settings(cls) -> CallPolicy:
        return cls(
            timeout_seconds=settings.ai_timeout_seconds,
            retries=settings.ai_retry_limit,
            base_delay_seconds=settings.ai_retry_base_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (2**attempt)

    async def run(self, fn: Callable[[], Awaitable[T]], *, operation: str) -> T:
        return await with_retry(
            lambda: with_timeout(fn, self.timeout_seconds),
            retries=self.retries,
            delay_for=self.delay_for,
            operation=operation,
        )


async def with_timeout(fn: Callable[[], Awaitable[T]], timeout_seconds: float) -> T:
    # wait_for cancels the in-flight call when the bound elapses.
    try:
        return await asyncio.wait_for(fn(), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise AppError(ErrorCode.AI_TIMEOUT, "AI request timed out.", 504) from e


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay_for: Callable[[int], float],
    operation: str = "ai_call",
) -> T:
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= retries or not is_transient(e):
                raise
            delay = delay_for(attempt)
            log_event(
                logger,
                "extraction.retry",
                operation=operation,
                attempt=attempt + 1,
                delay_s=delay,
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)
            attempt += 1
