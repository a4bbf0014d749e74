"""
Persisted queue of remote writes that failed and await redelivery.

One entry per storage key: repeated failures for a key update the entry in
place and bump its retry count. Entries that reach the retry limit are
dropped and handed to an `on_drop` callback for reporting.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from polyglot.application.utils.clock import epoch_ms
from polyglot.domain.constants import (
    BACKOFF_BASE_MS,
    BACKOFF_MAX_MS,
    MAX_RETRY_COUNT,
    RETRY_QUEUE_KEY,
)
from polyglot.domain.interfaces import KeyValueStore
from polyglot.domain.models import RetryItem

logger = logging.getLogger(__name__)

SyncOperation = Callable[[str, Any], Awaitable[None]]


@dataclass(frozen=True)
class RetryResult:
    success: int
    failed: int


def calculate_backoff(retry_count: int) -> int:
    """Exponential backoff in milliseconds, capped at 30 s."""
    return min(BACKOFF_BASE_MS * 2**retry_count, BACKOFF_MAX_MS)


def should_retry(item: RetryItem, max_retries: int = MAX_RETRY_COUNT) -> bool:
    return item.retry_count < max_retries


class RetryQueue:
    def __init__(
        self,
        store: KeyValueStore,
        key: str = RETRY_QUEUE_KEY,
        max_retries: int = MAX_RETRY_COUNT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.key = key
        self.max_retries = max_retries
        self._sleep = sleep

    async def get_queue(self) -> list[RetryItem]:
        raw = await self.store.get(self.key)
        return [RetryItem.model_validate(item) for item in raw or []]

    async def _save(self, queue: list[RetryItem]) -> None:
        await self.store.set(self.key, [item.to_wire() for item in queue])

    async def add(self, key: str, value: Any, error: str | None = None) -> RetryItem:
        """Upsert by key; an existing entry has its retry count incremented."""
        queue = await self.get_queue()
        index = next((i for i, item in enumerate(queue) if item.key == key), None)

        item = RetryItem(
            key=key,
            value=value,
            timestamp=epoch_ms(),
            retry_count=queue[index].retry_count + 1 if index is not None else 0,
            last_error=error,
        )
        if index is not None:
            queue[index] = item
        else:
            queue.append(item)

        await self._save(queue)
        logger.debug(f"[retry] queued '{key}' (attempt {item.retry_count})")
        return item

    async def remove(self, key: str) -> None:
        queue = await self.get_queue()
        await self._save([item for item in queue if item.key != key])

    async def clear(self) -> None:
        await self._save([])

    async def _settle(self, item: RetryItem, error: str | None = None) -> bool:
        """
        Remove `item`, or re-queue it with `error`, only while the stored entry
        for its key is still the one the pass started from. Returns False when
        a newer write replaced it; that entry is left for the next pass.
        """
        current = next((q for q in await self.get_queue() if q.key == item.key), None)
        if current != item:
            logger.debug(f"[retry] '{item.key}' changed during the pass, keeping newer entry")
            return False
        if error is None:
            await self.remove(item.key)
        else:
            await self.add(item.key, item.value, error)
        return True

    async def process(
        self,
        sync_operation: SyncOperation,
        on_progress: Callable[[int, int], None] | None = None,
        on_drop: Callable[[RetryItem], None] | None = None,
    ) -> RetryResult:
        """
        Replay a snapshot of the queue through `sync_operation`.

        Each retryable item waits its backoff, then is delivered; success
        removes it, failure re-queues it with an incremented retry count.
        Items past the retry limit count as failed and are dropped. Entries
        added or replaced while the pass runs are left for the next pass.
        """
        queue = await self.get_queue()
        if not queue:
            return RetryResult(success=0, failed=0)

        success = 0
        failed = 0

        for i, item in enumerate(queue):
            if not should_retry(item, self.max_retries):
                failed += 1
                if not await self._settle(item):
                    continue
                logger.warning(
                    f"[retry] dropping '{item.key}' after {item.retry_count} attempts: "
                    f"{item.last_error}"
                )
                if on_drop:
                    on_drop(item)
                continue

            await self._sleep(calculate_backoff(item.retry_count) / 1000)

            try:
                await sync_operation(item.key, item.value)
                await self._settle(item)
                success += 1
            except Exception as e:
                await self._settle(item, str(e) or type(e).__name__)
                failed += 1
                logger.info(f"[retry] '{item.key}' failed again: {e}")

            if on_progress:
                on_progress(i + 1, len(queue))

        return RetryResult(success=success, failed=failed)
