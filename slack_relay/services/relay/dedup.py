"""In-memory concurrency guard for Slack event deliveries.

Slack retries a delivery when it does not see a fast 200, so the same event
can be in flight more than once. Single-process only.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .event_classifier import InboundEvent

logger = logging.getLogger(__name__)


def delivery_key(event: InboundEvent) -> str:
    return f"{event.channel}:{event.event_ts}"


class DeliveryDeduplicator:
    def __init__(self) -> None:
        self._inflight: set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._inflight)

    async def try_acquire(self, key: str) -> bool:
        """Insert ``key`` unless it is already held. Returns False for duplicates."""
        async with self._lock:
            if key in self._inflight:
                return False
            self._inflight.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._inflight.discard(key)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """Yield whether ``key`` was acquired; release it on every exit path."""
        acquired = await self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)

    def clear(self) -> None:
        if self._inflight:
            logger.debug("Dropping %d in-flight delivery keys", len(self._inflight))
        self._inflight.clear()
