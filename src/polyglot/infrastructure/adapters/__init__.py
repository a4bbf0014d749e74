# Infrastructure Adapters Package
from .local_store import JsonFileKeyValueStore, MemoryKeyValueStore
from .remote_store import HttpDocumentStore, MemoryDocumentStore

__all__ = [
    "JsonFileKeyValueStore",
    "MemoryKeyValueStore",
    "HttpDocumentStore",
    "MemoryDocumentStore",
]
