"""Typed sync error events and a throttled reporter that surfaces them."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from polyglot.application.utils.clock import epoch_ms
from polyglot.domain.constants import ERROR_THROTTLE_SECONDS
from polyglot.domain.errors import SyncErrorType

logger = logging.getLogger(__name__)

ERROR_MESSAGES: dict[SyncErrorType, str] = {
    SyncErrorType.CLOUD_SAVE: "Could not save your changes to the cloud. They will be retried.",
    SyncErrorType.CLOUD_LOAD: "Could not load your data from the cloud.",
    SyncErrorType.LOCAL_SAVE: "Could not save your changes on this device.",
    SyncErrorType.LOCAL_LOAD: "Could not load your data from this device.",
    SyncErrorType.MIGRATION: "Updating your saved data failed. Your data is safe; please retry.",
}


@dataclass(frozen=True)
class SyncErrorEvent:
    type: SyncErrorType
    key: str
    message: str
    timestamp: int  # epoch ms


SyncErrorListener = Callable[[SyncErrorEvent], None]


class SyncErrorService:
    """
    Fan-out of sync error events to subscribers.

    Construct one per process and pass it to the services that report errors.
    """

    def __init__(self):
        self._listeners: list[SyncErrorListener] = []

    def subscribe(self, listener: SyncErrorListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, error_type: SyncErrorType | str, key: str, error: BaseException | str) -> None:
        event = SyncErrorEvent(
            type=SyncErrorType(error_type),
            key=key,
            message=str(error),
            timestamp=epoch_ms(),
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Sync error listener failed: {e}")


class ThrottledErrorReporter:
    """
    Turns sync error events into user-facing notifications.

    Repeats of the same (type, key) pair within `throttle_seconds` are dropped.
    """

    def __init__(
        self,
        notify: Callable[[str, SyncErrorEvent], None] | None = None,
        throttle_seconds: float = ERROR_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._notify = notify or self._log
        self.throttle_seconds = throttle_seconds
        self._clock = clock
        self._last_seen: dict[tuple[SyncErrorType, str], float] = {}

    def attach(self, errors: SyncErrorService) -> Callable[[], None]:
        return errors.subscribe(self.handle)

    def handle(self, event: SyncErrorEvent) -> None:
        pair = (event.type, event.key)
        now = self._clock()
        last = self._last_seen.get(pair)
        if last is not None and now - last < self.throttle_seconds:
            return
        self._last_seen[pair] = now
        self._notify(ERROR_MESSAGES.get(event.type, "Sync failed."), event)

    @staticmethod
    def _log(message: str, event: SyncErrorEvent) -> None:
        logger.warning(f"{message} [{event.type.value}:{event.key}] {event.message}")
