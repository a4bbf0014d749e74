"""
Remote document store adapters.

Documents are stored as an envelope ``{"value": ..., "updatedAt": ...,
"schemaVersion": ...}``; writes merge into the existing document so fields
written by other clients survive.
"""

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

import httpx

from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import REMOTE_POLL_INTERVAL, REQUEST_TIMEOUT
from polyglot.domain.interfaces import RemoteChangeHandler, RemoteDocumentStore, Unsubscribe

logger = logging.getLogger(__name__)


def _metadata_of(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if k != "value"}


class MemoryDocumentStore(RemoteDocumentStore):
    """
    In-process document store with immediate change fan-out.

    `online = False` makes every write fail with ConnectionError, which is
    how tests and local demos exercise the retry path.
    """

    def __init__(self):
        self.documents: dict[str, dict[str, Any]] = {}
        self.online = True
        self._listeners: dict[str, list[RemoteChangeHandler]] = {}

    async def write(self, path: str, value: Any, metadata: dict[str, Any]) -> None:
        if not self.online:
            raise ConnectionError("remote store unreachable")

        doc = self.documents.setdefault(path, {})
        doc.update(metadata)
        doc["value"] = copy.deepcopy(value)
        doc["updatedAt"] = utc_now().isoformat()
        self._notify(path)

    async def fetch(self, path: str) -> tuple[Any, dict[str, Any]] | None:
        if not self.online:
            raise ConnectionError("remote store unreachable")
        doc = self.documents.get(path)
        if doc is None or "value" not in doc:
            return None
        return copy.deepcopy(doc["value"]), _metadata_of(doc)

    def subscribe(
        self,
        path: str,
        on_change: RemoteChangeHandler,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        self._listeners.setdefault(path, []).append(on_change)
        if path in self.documents:
            self._deliver(path, on_change)

        def unsubscribe() -> None:
            listeners = self._listeners.get(path, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return unsubscribe

    def _notify(self, path: str) -> None:
        for listener in list(self._listeners.get(path, [])):
            self._deliver(path, listener)

    def _deliver(self, path: str, listener: RemoteChangeHandler) -> None:
        doc = self.documents[path]
        if "value" in doc:
            listener(copy.deepcopy(doc["value"]), _metadata_of(doc))


class HttpDocumentStore(RemoteDocumentStore):
    """
    Remote store reached over JSON/HTTP.

    - ``PATCH {base_url}/{path}`` merges the envelope into the document.
    - ``GET {base_url}/{path}`` returns the envelope (404 when absent).

    Change subscriptions poll the document and fire when its ETag (or body,
    when the server sends no ETag) changes.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        poll_interval: float = REMOTE_POLL_INTERVAL,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None
        self._pollers: set[asyncio.Task] = set()
        logger.debug(f"HttpDocumentStore initialized with base_url={self.base_url}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def write(self, path: str, value: Any, metadata: dict[str, Any]) -> None:
        payload = {**metadata, "value": value, "updatedAt": utc_now().isoformat()}
        try:
            resp = await self._get_client().patch(self._url(path), json=payload)
            resp.raise_for_status()
        except Exception as e:
            logger.error(f"Remote write to {path} failed: {e}")
            raise

    async def read(self, path: str) -> tuple[dict[str, Any] | None, str | None]:
        """Fetch the envelope at `path`. Returns (document, etag)."""
        resp = await self._get_client().get(self._url(path))
        if resp.status_code == 404:
            return None, None
        resp.raise_for_status()
        return resp.json(), resp.headers.get("etag")

    async def fetch(self, path: str) -> tuple[Any, dict[str, Any]] | None:
        try:
            doc, _ = await self.read(path)
        except Exception as e:
            logger.error(f"Remote read of {path} failed: {e}")
            raise
        if doc is None or "value" not in doc:
            return None
        return doc["value"], _metadata_of(doc)

    def subscribe(
        self,
        path: str,
        on_change: RemoteChangeHandler,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._poll(path, on_change, on_error))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(
        self,
        path: str,
        on_change: RemoteChangeHandler,
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        last_marker: Any = None
        while True:
            try:
                doc, etag = await self.read(path)
                marker = etag or doc
                if doc is not None and "value" in doc and marker != last_marker:
                    last_marker = marker
                    on_change(doc["value"], _metadata_of(doc))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Polling {path} failed: {e}")
                if on_error:
                    on_error(e)
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        if self._client:
            await self._client.aclose()
            self._client = None
