"""
Per-provider request pacing with one bounded retry on throttling.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from .errors import RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BACKOFF_SECONDS = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """How a throttled request is retried: at most max_retries times, fixed backoff."""
    max_retries: int = 1
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS


class RateLimiter:
    """Spaces out requests per provider and owns the throttle retry policy.

    Slots are reserved under a thread lock, so callers from any event loop or
    worker thread are dispatched in arrival order with at least the configured
    delay between two requests to the same provider.
    """

    def __init__(self, delays: Optional[Dict[str, float]] = None, default_delay: float = 0.0,
                 retry_policy: Optional[RetryPolicy] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.delays: Dict[str, float] = dict(delays or {})
        self.default_delay = default_delay
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._next_slot: Dict[str, float] = {}
        self._lock = threading.Lock()

    def set_delay(self, provider_id: str, seconds: float) -> None:
        self.delays[provider_id] = max(0.0, seconds)

    def delay_for(self, provider_id: str) -> float:
        return self.delays.get(provider_id, self.default_delay)

    def _reserve(self, provider_id: str) -> float:
        """Claim the next dispatch slot; returns how long the caller must wait."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot.get(provider_id, now))
            self._next_slot[provider_id] = slot + self.delay_for(provider_id)
            return slot - now

    async def wait_turn(self, provider_id: str) -> None:
        wait = self._reserve(provider_id)
        if wait > 0:
            logger.debug("Rate limiting %s: waiting %dms", provider_id, int(wait * 1000))
            await self._sleep(wait)

    async def run(self, provider_id: str, request: Callable[[], Awaitable[T]]) -> T:
        """Dispatch request in turn; retry per policy when the provider throttles."""
        attempt = 0
        while True:
            await self.wait_turn(provider_id)
            try:
                return await request()
            except RateLimited:
                if attempt >= self.retry_policy.max_retries:
                    logger.warning("%s still throttling after %d retr%s, giving up on this request",
                                   provider_id, attempt, "y" if attempt == 1 else "ies")
                    raise
                attempt += 1
                logger.warning("%s rate limited - backing off %.1fs before retry",
                               provider_id, self.retry_policy.backoff_seconds)
                await self._sleep(self.retry_policy.backoff_seconds)
