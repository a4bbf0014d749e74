"""Replays the retry queue on startup and whenever connectivity returns."""

import asyncio
import logging
from collections.abc import Callable

from polyglot.application.retry_queue import RetryQueue, RetryResult
from polyglot.application.storage_service import StorageService
from polyglot.application.sync_errors import SyncErrorService
from polyglot.domain.errors import SyncErrorType
from polyglot.domain.models import RetryItem

logger = logging.getLogger(__name__)


class OnlineSignal:
    """Source of "network is back" events."""

    def __init__(self):
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify_online(self) -> None:
        logger.info("Connectivity restored")
        for listener in list(self._listeners):
            listener()


class SyncRetryRunner:
    """
    Runs retry passes one at a time.

    A trigger that arrives while a pass is running is a no-op; entries
    queued during the pass wait for the next trigger.
    """

    def __init__(
        self,
        storage: StorageService,
        queue: RetryQueue | None = None,
        errors: SyncErrorService | None = None,
        signal: OnlineSignal | None = None,
    ):
        self.storage = storage
        self.queue = queue or storage.retry_queue
        self.errors = errors or storage.errors
        self.signal = signal
        self._running = False
        self._remove_listener: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    async def process(self) -> RetryResult | None:
        """
        Run one pass over the queue.

        Returns:
            The pass result, or None if skipped (local-only mode or a pass
            already in progress).
        """
        if not self.storage.cloud_enabled:
            logger.debug("Local-only mode, skipping retry pass")
            return None
        if self._running:
            logger.debug("Retry pass already in progress")
            return None

        self._running = True
        try:
            result = await self.queue.process(self.storage.remote_write, on_drop=self._report_drop)
        finally:
            self._running = False

        if result.success or result.failed:
            logger.info(f"Retry pass finished: {result.success} delivered, {result.failed} failed")
        return result

    def _report_drop(self, item: RetryItem) -> None:
        self.errors.emit(
            SyncErrorType.CLOUD_SAVE,
            item.key,
            item.last_error or "retry limit reached",
        )

    def trigger(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.process())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start(self) -> asyncio.Task:
        """Listen for online events and kick off the startup pass."""
        if self.signal is not None and self._remove_listener is None:
            self._remove_listener = self.signal.add_listener(self.trigger)
        return self.trigger()

    async def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
