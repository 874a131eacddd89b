"""Vector backend protocol for Dev Memory.

Defines the two contracts the context manager and migration engine consume
(VectorStore for raw vector records, MemoryStore for memory-level calls) and
a base class that implements both on top of a handful of storage primitives.
Concrete backends (LanceDB, in-memory) only provide the primitives.

Every public method returns an OperationResult; backend exceptions never
escape.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from devmemory.config import EMBEDDING_DIM
from devmemory.embeddings import EmbeddingGenerator, validate_vector
from devmemory.errors import BackendError, ErrorKind, ValidationError
from devmemory.log_config import get_logger
from devmemory.models import OperationResult, QueryMatch, VectorRecord

log = get_logger("store")

NOT_CONNECTED = "Not connected"

# Operators understood by matches_filter (Pinecone-style)
FILTER_OPERATORS = ("$eq", "$ne", "$in", "$nin")


@runtime_checkable
class VectorStore(Protocol):
    """Protocol for raw vector record storage."""

    async def initialize(self) -> OperationResult:
        """Connect to the backend. Idempotent."""
        ...

    async def upsert_vectors(self, records: list[VectorRecord]) -> OperationResult:
        """Insert or replace records by id. Payload: count."""
        ...

    async def query_vectors(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Similarity query. Payload: matches (list[QueryMatch]), best first."""
        ...

    async def delete_vectors(self, ids: list[str]) -> OperationResult:
        """Delete records by id. Unknown ids are not an error."""
        ...

    def get_connection_status(self) -> dict[str, Any]:
        """Return {"is_connected": bool, "last_error": str | None}."""
        ...

    async def dispose(self) -> None:
        """Stop monitoring and release resources."""
        ...


@runtime_checkable
class MemoryStore(Protocol):
    """Protocol for memory-level calls made by the context manager."""

    async def store_memory(
        self,
        entry_id: str,
        content: str,
        metadata: dict[str, Any],
        vector: list[float] | None = None,
    ) -> OperationResult:
        """Persist one memory, embedding content when no vector is given."""
        ...

    async def retrieve_memories(
        self,
        query: str | list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Similarity search by text or vector. Payload: matches."""
        ...

    async def delete_memories(self, ids: list[str]) -> OperationResult:
        """Delete memories by id."""
        ...

    async def track_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        strength: float = 1.0,
    ) -> OperationResult:
        """Record a typed relationship on the source memory."""
        ...

    async def get_related_memories(
        self, entry_id: str, relationship_type: str | None = None
    ) -> OperationResult:
        """Payload: related (list of {"id", "relationship", "strength"})."""
        ...


def matches_filter(record_id: str, metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """Check a record against an equality filter.

    Keys address metadata fields, except "id" which addresses the record id.
    Values are either literals (equality, or membership for list fields such
    as tags) or operator dicts using $eq, $ne, $in and $nin.
    """
    if not filter:
        return True
    for key, expected in filter.items():
        actual = record_id if key == "id" else metadata.get(key)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op == "$eq" and actual != operand:
                    return False
                if op == "$ne" and actual == operand:
                    return False
                if op == "$in" and actual not in operand:
                    return False
                if op == "$nin" and actual in operand:
                    return False
                if op not in FILTER_OPERATORS:
                    raise ValidationError(f"Unsupported filter operator: {op}")
        elif isinstance(actual, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class BaseVectorStore(ABC):
    """Abstract base class for vector backends with common functionality.

    Subclasses implement the storage primitives (_connect, _ping, _upsert,
    _query, _fetch, _delete, vector_count). This class adds connection
    tracking, validation, error conversion, write stamping, memory-level
    calls and periodic connection monitoring.
    """

    backend_name = "base"

    def __init__(
        self,
        embeddings: EmbeddingGenerator | None = None,
        dimension: int = EMBEDDING_DIM,
        health_check_interval: float = 0,
    ):
        self.embeddings = embeddings
        self.dimension = dimension
        self.health_check_interval = health_check_interval
        self._is_connected = False
        self._last_error: str | None = None
        self._monitor_task: asyncio.Task | None = None

    # ═══════════════════════════════════════════════════════════════════════════
    # STORAGE PRIMITIVES
    # ═══════════════════════════════════════════════════════════════════════════

    @abstractmethod
    async def _connect(self) -> None:
        """Open the underlying storage."""
        pass

    @abstractmethod
    async def _ping(self) -> None:
        """Raise if the underlying storage is unreachable."""
        pass

    @abstractmethod
    async def _upsert(self, records: list[VectorRecord]) -> None:
        """Replace-or-insert records by id."""
        pass

    @abstractmethod
    async def _query(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None
    ) -> list[QueryMatch]:
        """Return up to top_k matches passing filter, best first."""
        pass

    @abstractmethod
    async def _fetch(self, ids: list[str]) -> list[VectorRecord]:
        """Return the stored records for ids (unknown ids are skipped)."""
        pass

    @abstractmethod
    async def _delete(self, ids: list[str]) -> None:
        """Delete records by id."""
        pass

    @abstractmethod
    async def vector_count(self) -> int:
        """Number of stored records."""
        pass

    async def _close(self) -> None:
        """Release storage handles. Optional."""
        pass

    # ═══════════════════════════════════════════════════════════════════════════
    # CONNECTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def initialize(self) -> OperationResult:
        if self._is_connected:
            return OperationResult.ok()
        try:
            await self._connect()
            await self._ping()
        except Exception as e:
            self._mark_disconnected(e)
            log.error(f"{self.backend_name}: initialization failed: {e}")
            return OperationResult.fail(
                ErrorKind.BACKEND, f"Failed to initialize {self.backend_name}: {e}"
            )

        self._is_connected = True
        self._last_error = None
        log.info(f"{self.backend_name}: connected")
        if self.health_check_interval > 0:
            self.start_connection_monitoring()
        return OperationResult.ok()

    async def test_connection(self) -> bool:
        """Check the backend and update the connection status."""
        try:
            await self._ping()
        except Exception as e:
            self._mark_disconnected(e)
            log.warning(f"{self.backend_name}: connection check failed: {e}")
            return False
        if not self._is_connected:
            log.info(f"{self.backend_name}: connection restored")
        self._is_connected = True
        self._last_error = None
        return True

    def get_connection_status(self) -> dict[str, Any]:
        return {"is_connected": self._is_connected, "last_error": self._last_error}

    def _mark_disconnected(self, error: Exception | str) -> None:
        self._is_connected = False
        self._last_error = str(error)

    def start_connection_monitoring(self) -> None:
        """Re-check the backend every health_check_interval seconds."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        log.debug(f"{self.backend_name}: connection monitoring every {self.health_check_interval}s")

    def stop_connection_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            self._monitor_task = None

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            await self.test_connection()

    async def dispose(self) -> None:
        self.stop_connection_monitoring()
        try:
            await self._close()
        except Exception as e:
            log.warning(f"{self.backend_name}: error during dispose: {e}")
        self._is_connected = False
        log.info(f"{self.backend_name}: disposed")

    def _ensure_connected(self) -> None:
        if not self._is_connected:
            raise BackendError("connection", NOT_CONNECTED)

    # ═══════════════════════════════════════════════════════════════════════════
    # VECTOR STORE CONTRACT
    # ═══════════════════════════════════════════════════════════════════════════

    def _stamp(self, record: VectorRecord) -> VectorRecord:
        metadata = copy.deepcopy(record.metadata or {})
        metadata["_updated"] = datetime.now().isoformat()
        return VectorRecord(id=record.id, values=list(record.values), metadata=metadata)

    async def upsert_vectors(self, records: list[VectorRecord]) -> OperationResult:
        try:
            self._ensure_connected()
            if not records:
                raise ValidationError("No vectors provided")
            for record in records:
                if not record.id:
                    raise ValidationError("Vector record has no id")
                validate_vector(record.values, self.dimension)
            stamped = [self._stamp(r) for r in records]
            await self._upsert(stamped)
        except Exception as e:
            log.warning(f"{self.backend_name}: upsert of {len(records)} vectors failed: {e}")
            return OperationResult.from_exception(e, prefix="Failed to upsert vectors")
        log.debug(f"{self.backend_name}: upserted {len(records)} vectors")
        return OperationResult.ok(count=len(records))

    async def query_vectors(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
    ) -> OperationResult:
        try:
            self._ensure_connected()
            validate_vector(vector, self.dimension)
            if top_k < 1:
                raise ValidationError("top_k must be >= 1")
            matches = await self._query(list(vector), top_k, filter)
        except Exception as e:
            log.warning(f"{self.backend_name}: query failed: {e}")
            return OperationResult.from_exception(e, prefix="Failed to query vectors")
        log.trace(f"{self.backend_name}: query returned {len(matches)} matches")
        return OperationResult.ok(matches=matches)

    async def fetch_vectors(self, ids: list[str]) -> OperationResult:
        """Fetch stored records by id. Payload: records."""
        try:
            self._ensure_connected()
            records = await self._fetch(list(ids))
        except Exception as e:
            return OperationResult.from_exception(e, prefix="Failed to fetch vectors")
        return OperationResult.ok(records=records)

    async def delete_vectors(self, ids: list[str]) -> OperationResult:
        try:
            self._ensure_connected()
            if not ids:
                raise ValidationError("No ids provided for deletion")
            await self._delete(list(ids))
        except Exception as e:
            log.warning(f"{self.backend_name}: delete failed: {e}")
            return OperationResult.from_exception(e, prefix="Failed to delete vectors")
        log.debug(f"{self.backend_name}: deleted {len(ids)} ids")
        return OperationResult.ok(count=len(ids))

    # ═══════════════════════════════════════════════════════════════════════════
    # MEMORY STORE CONTRACT
    # ═══════════════════════════════════════════════════════════════════════════

    async def _embed(self, text: str) -> list[float]:
        if self.embeddings is None:
            raise ValidationError("No vector provided and no embedding generator configured")
        result = await self.embeddings.embed(text)
        if not result.success:
            raise BackendError("embedding", result.error)
        return result.get("embedding")

    async def store_memory(
        self,
        entry_id: str,
        content: str,
        metadata: dict[str, Any],
        vector: list[float] | None = None,
    ) -> OperationResult:
        try:
            self._ensure_connected()
            if vector is None:
                vector = await self._embed(content)
        except Exception as e:
            return OperationResult.from_exception(e, prefix="Failed to store memory")

        record = VectorRecord(
            id=entry_id,
            values=list(vector),
            metadata={**copy.deepcopy(metadata), "content": content},
        )
        result = await self.upsert_vectors([record])
        if not result.success:
            return result
        log.debug(f"{self.backend_name}: stored memory {entry_id}")
        return OperationResult.ok(id=entry_id, vector=record.values)

    async def retrieve_memories(
        self,
        query: str | list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
    ) -> OperationResult:
        if isinstance(query, str):
            try:
                self._ensure_connected()
                query = await self._embed(query)
            except Exception as e:
                return OperationResult.from_exception(e, prefix="Failed to retrieve memories")
        return await self.query_vectors(query, top_k=top_k, filter=filter)

    async def delete_memories(self, ids: list[str]) -> OperationResult:
        return await self.delete_vectors(ids)

    async def track_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        strength: float = 1.0,
    ) -> OperationResult:
        try:
            self._ensure_connected()
            records = await self._fetch([source_id])
        except Exception as e:
            return OperationResult.from_exception(e, prefix="Failed to track relationship")
        if not records:
            return OperationResult.fail(ErrorKind.NOT_FOUND, f"Memory not found: {source_id}")

        record = records[0]
        metadata = copy.deepcopy(record.metadata or {})
        relationships = metadata.setdefault("relationships", [])
        for rel in relationships:
            if rel.get("target_id") == target_id and rel.get("type") == relationship_type:
                rel["strength"] = strength
                break
        else:
            relationships.append(
                {"target_id": target_id, "type": relationship_type, "strength": strength}
            )

        if metadata == record.metadata:
            return OperationResult.ok()
        result = await self.upsert_vectors(
            [VectorRecord(id=record.id, values=record.values, metadata=metadata)]
        )
        if result.success:
            log.debug(f"{self.backend_name}: tracked {source_id} -[{relationship_type}]-> {target_id}")
        return result

    async def get_related_memories(
        self, entry_id: str, relationship_type: str | None = None
    ) -> OperationResult:
        try:
            self._ensure_connected()
            records = await self._fetch([entry_id])
        except Exception as e:
            return OperationResult.from_exception(e, prefix="Failed to get related memories")
        if not records:
            return OperationResult.fail(ErrorKind.NOT_FOUND, f"Memory not found: {entry_id}")

        related = [
            {
                "id": rel.get("target_id"),
                "relationship": rel.get("type"),
                "strength": rel.get("strength", 1.0),
            }
            for rel in (records[0].metadata or {}).get("relationships") or []
            if relationship_type is None or rel.get("type") == relationship_type
        ]
        return OperationResult.ok(related=related)
