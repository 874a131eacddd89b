"""In-memory vector backend.

Dict-backed implementation of the vector backend contract with cosine
similarity computed by numpy. Used for ephemeral sessions and as the test
double for the context manager and migration engine.
"""

import copy
from typing import Any

import numpy as np

from devmemory.config import EMBEDDING_DIM
from devmemory.embeddings import EmbeddingGenerator
from devmemory.log_config import get_logger
from devmemory.models import QueryMatch, VectorRecord
from devmemory.store.protocol import BaseVectorStore, matches_filter

log = get_logger("store")


class InMemoryStore(BaseVectorStore):
    """Vector backend holding every record in a dict.

    Example:
        >>> store = InMemoryStore(embeddings=fake_embedder)
        >>> await store.initialize()
        >>> await store.upsert_vectors([VectorRecord("a", vector, {"type": "note"})])
        >>> await store.vector_count()
        1
    """

    backend_name = "memory"

    def __init__(
        self,
        embeddings: EmbeddingGenerator | None = None,
        dimension: int = EMBEDDING_DIM,
        health_check_interval: float = 0,
    ):
        super().__init__(embeddings, dimension, health_check_interval)
        self._records: dict[str, VectorRecord] = {}
        self._fail_connection = False
        self._status_before_failure: tuple[bool, str | None] | None = None

    def simulate_connection_failure(self, failing: bool = True) -> None:
        """Make every subsequent call behave as if the backend were unreachable.

        Passing False restores the status the store had before the failure
        began, so a store that was never initialized stays disconnected.
        """
        if failing and not self._fail_connection:
            self._status_before_failure = (self._is_connected, self._last_error)
        self._fail_connection = failing
        if failing:
            self._mark_disconnected("Simulated connection failure")
        elif self._status_before_failure is not None:
            self._is_connected, self._last_error = self._status_before_failure
            self._status_before_failure = None
        log.debug(f"memory: simulated connection failure={failing}")

    async def _connect(self) -> None:
        if self._fail_connection:
            raise ConnectionError("Simulated connection failure")

    async def _ping(self) -> None:
        if self._fail_connection:
            raise ConnectionError("Simulated connection failure")

    async def _upsert(self, records: list[VectorRecord]) -> None:
        for record in records:
            self._records[record.id] = copy.deepcopy(record)

    async def _query(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None
    ) -> list[QueryMatch]:
        candidates = [
            r for r in self._records.values()
            if matches_filter(r.id, r.metadata or {}, filter)
        ]
        if not candidates:
            return []

        query = np.asarray(vector, dtype=np.float64)
        matrix = np.asarray([r.values for r in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            QueryMatch(
                id=candidates[i].id,
                score=float(scores[i]),
                metadata=copy.deepcopy(candidates[i].metadata or {}),
                values=list(candidates[i].values),
            )
            for i in order
        ]

    async def _fetch(self, ids: list[str]) -> list[VectorRecord]:
        return [copy.deepcopy(self._records[i]) for i in ids if i in self._records]

    async def _delete(self, ids: list[str]) -> None:
        for record_id in ids:
            self._records.pop(record_id, None)

    async def vector_count(self) -> int:
        return len(self._records)

    async def _close(self) -> None:
        self._records.clear()
