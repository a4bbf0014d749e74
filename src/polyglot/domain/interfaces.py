"""
Ports (interfaces) for the stores and collaborators around the sync core.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

RemoteChangeHandler = Callable[[Any, dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class KeyValueStore(ABC):
    """
    Port for the local persistent blob store.

    Implementations:
        - MemoryKeyValueStore: In-process dict, used in tests and local-only runs.
        - JsonFileKeyValueStore: One JSON document per key on disk.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if the key was never set."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class RemoteDocumentStore(ABC):
    """
    Port for the remote document store.

    Implementations:
        - MemoryDocumentStore: In-process store with immediate change fan-out.
        - HttpDocumentStore: JSON-over-HTTP store reached through httpx.
    """

    @abstractmethod
    async def write(self, path: str, value: Any, metadata: dict[str, Any]) -> None:
        """
        Write a document with merge semantics.

        Fields not present in the written payload must survive at `path`.

        Args:
            path: Document path, e.g. ``users/<uid>/data/phraseList``.
            value: JSON-compatible payload.
            metadata: At least ``{"schemaVersion": int}``.
        """
        pass

    @abstractmethod
    async def fetch(self, path: str) -> tuple[Any, dict[str, Any]] | None:
        """Read the document at `path` once. Returns (value, metadata), or None when absent."""
        pass

    @abstractmethod
    def subscribe(
        self,
        path: str,
        on_change: RemoteChangeHandler,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        """
        Register for change notifications on `path`.

        `on_change` receives ``(value, metadata)``; the current document, if
        any, is delivered as the first notification.

        Returns:
            A callable that stops further notifications.
        """
        pass


class ContentGenerator(ABC):
    """Port for the AI text/JSON generator used by record-creation flows."""

    @abstractmethod
    async def generate(self, prompt: str, schema: dict[str, Any]) -> Any:
        """
        Run the prompt and return JSON matching `schema`.

        Raises:
            Exception: Any generator failure; callers wrap it.
        """
        pass
