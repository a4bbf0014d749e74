"""
A single storage key kept in sync between memory, the local store and the
remote store.

Local changes are persisted immediately and pushed to the remote store
after a debounce window; at most one remote write per key is in flight.
Remote notifications pass through the merge strategy before they replace
the in-memory value, and a merged value equal to what the remote store
just sent is not written back.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from polyglot.application.storage_service import StorageService
from polyglot.domain.constants import DEBOUNCE_SECONDS, SCHEMA_VERSION_CURRENT
from polyglot.domain.errors import (
    LocalReadError,
    LocalWriteError,
    RemoteReadError,
    RemoteWriteError,
)
from polyglot.domain.interfaces import Unsubscribe

logger = logging.getLogger(__name__)

T = TypeVar("T")


def canonical_json(value: Any) -> str:
    """Stable serialization used for value-equality checks."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _identity(value: Any) -> Any:
    return value


class SyncedValue(Generic[T]):
    """
    Usage:
        phrases = SyncedValue(
            storage, PHRASE_LIST_KEY, [],
            decode=parse_phrase_list, encode=dump_phrase_list,
            merge_strategy=merge_phrase_lists,
        )
        await phrases.load()
        phrases.attach()
        await phrases.set(new_list)
        ...
        await phrases.close()
    """

    def __init__(
        self,
        storage: StorageService,
        key: str,
        initial: T,
        *,
        decode: Callable[[Any], T] = _identity,
        encode: Callable[[T], Any] = _identity,
        transform: Callable[[T], T] | None = None,
        merge_strategy: Callable[[T, T], T] | None = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        schema_version: int = SCHEMA_VERSION_CURRENT,
    ):
        self.storage = storage
        self.key = key
        self.decode = decode
        self.encode = encode
        self.transform = transform or _identity
        self.merge_strategy = merge_strategy
        self.debounce_seconds = debounce_seconds
        self.schema_version = schema_version

        self._value: T = initial
        self._lock = asyncio.Lock()
        self._last_remote: str | None = None
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Callable[[T], None]] = []
        self._unsubscribe: Unsubscribe | None = None

    @property
    def value(self) -> T:
        return self._value

    @property
    def has_pending_push(self) -> bool:
        return self._timer is not None

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._value)

    async def load(self) -> T:
        """Replace the in-memory value with the locally stored one, if any."""
        try:
            raw = await self.storage.read_local(self.key)
        except LocalReadError:
            return self._value

        if raw is not None:
            self._value = self.transform(self.decode(raw))
            self._notify()
        return self._value

    def attach(self) -> None:
        """Start listening for remote changes. Must be called from a running loop."""
        if self._unsubscribe is None:
            self._unsubscribe = self.storage.subscribe_to_cloud(self.key, self._on_remote)

    async def set(self, value: T) -> None:
        self._value = self.transform(value)
        self._notify()
        try:
            await self.storage.write_local(self.key, self.encode(self._value))
        except LocalWriteError:
            pass  # reported by StorageService
        self._schedule_push()

    async def update(self, fn: Callable[[T], T]) -> None:
        await self.set(fn(self._value))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_push(self) -> None:
        if not self.storage.cloud_enabled:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._spawn(self._debounced_push())

    async def _debounced_push(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._timer = None
        await self._push()

    async def _push(self) -> None:
        async with self._lock:
            payload = self.encode(self._value)
            snapshot = canonical_json(payload)
            if snapshot == self._last_remote:
                logger.debug(f"'{self.key}' unchanged from remote, skipping push")
                return
            try:
                await self.storage.write_to_cloud(self.key, payload, self.schema_version)
            except RemoteWriteError:
                return
            self._last_remote = snapshot

    async def flush(self) -> None:
        """Push a pending change now instead of waiting for the debounce window."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            await self._push()

    async def pull(self) -> bool:
        """
        Fetch the remote value once and merge it in, for callers that do not
        hold a subscription. Returns False when the remote store could not be
        read.
        """
        try:
            raw = await self.storage.read_from_cloud(self.key)
        except RemoteReadError:
            return False
        if raw is not None:
            encoded = self._apply_remote(raw)
            if encoded is not None:
                await self._persist_local(encoded)
        return True

    def _on_remote(self, raw: Any) -> None:
        encoded = self._apply_remote(raw)
        if encoded is not None:
            self._spawn(self._persist_local(encoded))

    def _apply_remote(self, raw: Any) -> Any | None:
        """Merge a remote value into memory. Returns the encoded value when it changed."""
        self._last_remote = canonical_json(raw)
        incoming = self.decode(raw)
        if self.merge_strategy is not None:
            incoming = self.merge_strategy(self._value, incoming)
        merged = self.transform(incoming)

        encoded = self.encode(merged)
        merged_snapshot = canonical_json(encoded)
        changed = merged_snapshot != canonical_json(self.encode(self._value))
        if changed:
            self._value = merged
            self._notify()

        if merged_snapshot != self._last_remote:
            self._schedule_push()
        return encoded if changed else None

    async def _persist_local(self, encoded: Any) -> None:
        try:
            await self.storage.write_local(self.key, encoded)
        except LocalWriteError:
            pass

    async def close(self) -> None:
        """Stop remote notifications and drop any pending push."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
