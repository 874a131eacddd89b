"""Shared pytest fixtures for Dev Memory tests."""

from __future__ import annotations

import os
import tempfile
import zlib
from typing import Any

import numpy as np
import pytest
import pytest_asyncio

# Keep test logs out of the user's home directory
os.environ.setdefault("DEV_MEMORY_LOG_DIR", os.path.join(tempfile.gettempdir(), "devmemory-test-logs"))

from devmemory.config import EMBEDDING_DIM  # noqa: E402
from devmemory.errors import ErrorKind  # noqa: E402
from devmemory.models import (  # noqa: E402
    ContextEntry,
    ContextMetadata,
    OperationResult,
    RelationshipRef,
)

BASE_TIMESTAMP = 1704067200000  # 2024-01-01T00:00:00Z in ms


def vector_for(text: str, dimension: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector derived from text."""
    rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
    arr = rng.standard_normal(dimension)
    return (arr / np.linalg.norm(arr)).tolist()


class FakeEmbeddings:
    """Deterministic embedding generator that records every call.

    Texts listed in fail_on (or every text when fail_all is set) produce a
    backend failure, the way a provider outage would.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM):
        self.dimension = dimension
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.fail_all = False

    async def embed(self, text: str) -> OperationResult:
        self.calls.append(text)
        if self.fail_all or text in self.fail_on:
            return OperationResult.fail(ErrorKind.BACKEND, "Failed to generate embedding: provider down")
        return OperationResult.ok(embedding=vector_for(text, self.dimension))

    async def embed_batch(self, texts: list[str]) -> OperationResult:
        embeddings = []
        for text in texts:
            result = await self.embed(text)
            if not result.success:
                return OperationResult.fail(ErrorKind.BACKEND, "Failed to generate batch embeddings: provider down")
            embeddings.append(result.get("embedding"))
        return OperationResult.ok(embeddings=embeddings)


@pytest.fixture
def fake_embeddings() -> FakeEmbeddings:
    """Deterministic embedder: same text, same unit vector."""
    return FakeEmbeddings()


@pytest.fixture
def make_vector():
    """Factory for deterministic 1536-dim unit vectors keyed by a seed string."""
    return vector_for


@pytest_asyncio.fixture
async def memory_store(fake_embeddings):
    """Initialized in-memory backend wired to the fake embedder."""
    from devmemory.store.memory_backend import InMemoryStore

    store = InMemoryStore(embeddings=fake_embeddings)
    result = await store.initialize()
    assert result.success
    yield store
    await store.dispose()


@pytest.fixture
def manager(memory_store):
    """Context manager over the in-memory backend."""
    from devmemory.context import ContextManager

    return ContextManager(memory_store)


@pytest.fixture
def transformer(fake_embeddings):
    """Entry transformer using the fake embedder."""
    from devmemory.migration.transformer import EntryTransformer

    return EntryTransformer(fake_embeddings)


@pytest.fixture
def make_entry():
    """Factory for context entries with sensible defaults."""

    def _make(
        entry_id: str,
        content: str | None = None,
        type: str = "note",
        timestamp: Any = BASE_TIMESTAMP,
        tags: list[str] | None = None,
        source: str | None = None,
        relationships: list[RelationshipRef] | None = None,
        attributes: dict[str, Any] | None = None,
        vector: list[float] | None = None,
    ) -> ContextEntry:
        return ContextEntry(
            id=entry_id,
            content=content if content is not None else f"content of {entry_id}",
            metadata=ContextMetadata(
                type=type,
                timestamp=timestamp,
                tags=list(tags or []),
                source=source,
                relationships=list(relationships or []),
                attributes=dict(attributes or {}),
            ),
            vector=vector,
        )

    return _make


@pytest.fixture
def sample_entries(make_entry) -> list[ContextEntry]:
    """Five well-formed entries of mixed types, one minute apart."""
    return [
        make_entry("ctx-001", "Use connection pooling for Postgres", type="code", tags=["db"],
                   timestamp=BASE_TIMESTAMP),
        make_entry("ctx-002", "Refactor auth middleware", type="task", tags=["auth"],
                   timestamp=BASE_TIMESTAMP + 60_000),
        make_entry("ctx-003", "RFC 7519 describes JWT", type="reference", source="web",
                   timestamp=BASE_TIMESTAMP + 120_000),
        make_entry("ctx-004", "Retry flaky integration tests once", type="note",
                   attributes={"importance": 0.4}, timestamp=BASE_TIMESTAMP + 180_000),
        make_entry("ctx-005", "Cache embeddings per content hash", type="note", tags=["perf", "cache"],
                   timestamp=BASE_TIMESTAMP + 240_000),
    ]
