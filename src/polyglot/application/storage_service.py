"""
Storage Service: the I/O edge of the sync core.

Reads and writes the local store, pushes values to the remote document
store and subscribes to remote changes. Every failure is logged, reported
to the SyncErrorService and raised as a typed SyncError; failed remote
writes are also queued for redelivery.

Without a remote store or a user id the service runs in local-only mode:
remote writes and subscriptions become no-ops.
"""

import logging
from collections.abc import Callable
from typing import Any

from polyglot.application.retry_queue import RetryQueue
from polyglot.application.sync_errors import SyncErrorService
from polyglot.domain.constants import SCHEMA_VERSION_CURRENT
from polyglot.domain.errors import (
    LocalReadError,
    LocalWriteError,
    RemoteReadError,
    RemoteWriteError,
    SyncErrorType,
)
from polyglot.domain.interfaces import KeyValueStore, RemoteDocumentStore, Unsubscribe

logger = logging.getLogger(__name__)


def _noop() -> None:
    pass


class StorageService:
    def __init__(
        self,
        local: KeyValueStore,
        remote: RemoteDocumentStore | None = None,
        user_id: str | None = None,
        retry_queue: RetryQueue | None = None,
        errors: SyncErrorService | None = None,
    ):
        self.local = local
        self.remote = remote
        self.user_id = user_id
        self.retry_queue = retry_queue or RetryQueue(local)
        self.errors = errors or SyncErrorService()

    @property
    def cloud_enabled(self) -> bool:
        return self.remote is not None and bool(self.user_id)

    def remote_path(self, key: str) -> str:
        return f"users/{self.user_id}/data/{key}"

    async def read_local(self, key: str) -> Any | None:
        try:
            return await self.local.get(key)
        except Exception as e:
            logger.error(f"Failed to read '{key}' from local store: {e}")
            self.errors.emit(SyncErrorType.LOCAL_LOAD, key, e)
            raise LocalReadError(key, str(e)) from e

    async def write_local(self, key: str, value: Any) -> None:
        try:
            await self.local.set(key, value)
        except Exception as e:
            logger.error(f"Failed to write '{key}' to local store: {e}")
            self.errors.emit(SyncErrorType.LOCAL_SAVE, key, e)
            raise LocalWriteError(key, str(e)) from e

    async def remote_write(
        self, key: str, value: Any, schema_version: int = SCHEMA_VERSION_CURRENT
    ) -> None:
        """
        Deliver one value to the remote store without any failure handling.

        This is the operation the retry queue replays; it must not enqueue.
        """
        if not self.cloud_enabled:
            raise RemoteWriteError(key, "no remote store configured")
        await self.remote.write(
            self.remote_path(key), value, {"schemaVersion": schema_version}
        )

    async def write_to_cloud(
        self, key: str, value: Any, schema_version: int = SCHEMA_VERSION_CURRENT
    ) -> bool:
        """
        Push a value to the remote store.

        Returns:
            True if written, False in local-only mode.

        Raises:
            RemoteWriteError: The write failed; it has been queued for retry.
        """
        if not self.cloud_enabled:
            logger.debug(f"Local-only mode, skipping remote write of '{key}'")
            return False

        try:
            await self.remote_write(key, value, schema_version)
        except Exception as e:
            logger.warning(f"Remote write of '{key}' failed, queueing for retry: {e}")
            await self.retry_queue.add(key, value, str(e) or type(e).__name__)
            self.errors.emit(SyncErrorType.CLOUD_SAVE, key, e)
            raise RemoteWriteError(key, str(e)) from e

        logger.debug(f"Wrote '{key}' to remote store")
        return True

    async def save(self, key: str, value: Any) -> None:
        """Write locally, then to the remote store; remote failures are queued, not raised."""
        await self.write_local(key, value)
        try:
            await self.write_to_cloud(key, value)
        except RemoteWriteError:
            pass

    def _readable(self, key: str, metadata: dict[str, Any]) -> bool:
        version = metadata.get("schemaVersion") or SCHEMA_VERSION_CURRENT
        if version > SCHEMA_VERSION_CURRENT:
            logger.warning(
                f"Ignoring remote '{key}' with schema version {version} "
                f"(this client understands {SCHEMA_VERSION_CURRENT})"
            )
            return False
        return True

    async def read_from_cloud(self, key: str) -> Any | None:
        """
        Fetch the current remote value of `key` once.

        Returns None in local-only mode, when the document is absent, or when
        it carries a newer schema version.

        Raises:
            RemoteReadError: The remote store could not be read.
        """
        if not self.cloud_enabled:
            return None
        try:
            doc = await self.remote.fetch(self.remote_path(key))
        except Exception as e:
            logger.error(f"Failed to read '{key}' from remote store: {e}")
            self.errors.emit(SyncErrorType.CLOUD_LOAD, key, e)
            raise RemoteReadError(key, str(e)) from e
        if doc is None:
            return None
        value, metadata = doc
        return value if self._readable(key, metadata) else None

    def subscribe_to_cloud(
        self,
        key: str,
        on_data: Callable[[Any], None],
        on_error: Callable[[RemoteReadError], None] | None = None,
    ) -> Unsubscribe:
        """
        Listen for remote changes to `key`.

        Payloads stamped with a schema version newer than this client
        understands are ignored. Returns the unsubscribe callable.
        """
        if not self.cloud_enabled:
            logger.debug(f"Local-only mode, not subscribing to '{key}'")
            return _noop

        def handle_change(value: Any, metadata: dict[str, Any]) -> None:
            if self._readable(key, metadata):
                on_data(value)

        def handle_error(error: Exception) -> None:
            logger.error(f"Remote subscription for '{key}' failed: {error}")
            self.errors.emit(SyncErrorType.CLOUD_LOAD, key, error)
            if on_error:
                on_error(RemoteReadError(key, str(error)))

        return self.remote.subscribe(self.remote_path(key), handle_change, handle_error)
