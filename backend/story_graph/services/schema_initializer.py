"""Idempotent creation of uniqueness constraints and lookup indexes."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from story_graph import config, errors
from story_graph.storage.ports import GraphStorePort
from story_graph.storage.schema import INDEX_DEFINITIONS, UNIQUE_CONSTRAINTS

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, *, base: float, maximum: float) -> float:
    return min(maximum, base * 2 ** (attempt - 1))


class SchemaInitializer:
    def __init__(
        self,
        store: GraphStorePort,
        *,
        attempts: int = config.SCHEMA_RETRY_ATTEMPTS,
        base_delay: float = config.SCHEMA_RETRY_BASE_SECONDS,
        max_delay: float = config.SCHEMA_RETRY_MAX_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if attempts <= 0:
            raise ValueError("schema retry attempts must be > 0")
        self._store = store
        self._attempts = attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    def _apply(self) -> int:
        for constraint in UNIQUE_CONSTRAINTS:
            self._store.ensure_unique_constraint(
                label=constraint["label"], properties=constraint["properties"]
            )
        for index in INDEX_DEFINITIONS:
            self._store.ensure_index(label=index["label"], property=index["property"])
        return len(UNIQUE_CONSTRAINTS) + len(INDEX_DEFINITIONS)

    async def ensure_schema(self) -> int:
        """Create every constraint and index, retrying while the store is unreachable.

        Safe to call any number of times. Returns the number of schema elements
        ensured; raises ConnectivityError once the retry budget is spent.
        """
        for attempt in range(1, self._attempts + 1):
            try:
                ensured = await asyncio.to_thread(self._apply)
            except errors.ConnectivityError as exc:
                if attempt == self._attempts:
                    logger.error(
                        "schema initialization failed after %d attempts: %s", attempt, exc
                    )
                    raise
                delay = backoff_delay(attempt, base=self._base_delay, maximum=self._max_delay)
                logger.warning(
                    "graph store unreachable (attempt %d/%d), retrying in %.2fs: %s",
                    attempt,
                    self._attempts,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                continue
            logger.info("graph schema ready (%d constraints and indexes)", ensured)
            return ensured
        raise errors.ConnectivityError("schema initialization did not run")
