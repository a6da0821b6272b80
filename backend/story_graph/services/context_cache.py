"""Bounded TTL cache for derived narrative context, with an explicit lifecycle."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
import logging
import threading
import time
from typing import Callable, Generic, TypeVar

from story_graph import config

logger = logging.getLogger(__name__)

ValueType = TypeVar("ValueType")


class ContextCache(Generic[ValueType]):
    """LRU map with per-entry expiry.

    ``start()`` launches a background sweep on the running event loop and
    ``stop()`` cancels it; reads also drop expired entries, so the cache is
    correct without the sweeper.

    Writers computed from a snapshot pass the ``generation()`` they read before
    computing; ``put`` drops the value when the key was invalidated since.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = config.CONTEXT_CACHE_TTL_SECONDS,
        max_entries: int = config.CONTEXT_CACHE_MAX_ENTRIES,
        sweep_interval: float = config.CONTEXT_CACHE_SWEEP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("context cache ttl must be > 0")
        if max_entries <= 0:
            raise ValueError("context cache max_entries must be > 0")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, ValueType]] = OrderedDict()
        self._generation = 0
        self._invalidated: OrderedDict[str, int] = OrderedDict()
        self._invalidated_floor = 0
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def get(self, key: str) -> ValueType | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def _is_stale(self, key: str, generation: int) -> bool:
        if generation < self._invalidated_floor:
            return True
        return self._invalidated.get(key, -1) > generation

    def put(self, key: str, value: ValueType, *, generation: int | None = None) -> bool:
        with self._lock:
            if generation is not None and self._is_stale(key, generation):
                logger.debug("context cache dropped stale value for %s", key)
                return False
            self._entries[key] = (self._clock() + self._ttl, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("context cache evicted %s", evicted)
            return True

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            self._generation += 1
            if key is None:
                self._entries.clear()
                self._invalidated.clear()
                self._invalidated_floor = self._generation
                return
            self._entries.pop(key, None)
            self._invalidated[key] = self._generation
            self._invalidated.move_to_end(key)
            # Forgetting a stamp raises the floor, so older writers stay rejected.
            while len(self._invalidated) > self._max_entries:
                _, stamp = self._invalidated.popitem(last=False)
                self._invalidated_floor = max(self._invalidated_floor, stamp)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("context cache swept %d expired entries", len(expired))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        if self.running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        self.invalidate()
