"""Vector backends for Dev Memory."""

from devmemory.store.factory import create_store
from devmemory.store.memory_backend import InMemoryStore
from devmemory.store.protocol import BaseVectorStore, MemoryStore, VectorStore, matches_filter

__all__ = [
    "BaseVectorStore",
    "InMemoryStore",
    "MemoryStore",
    "VectorStore",
    "create_store",
    "matches_filter",
]
