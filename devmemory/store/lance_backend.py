"""LanceDB vector backend.

Durable implementation of the vector backend contract. One table holds
(id, vector, content, type, timestamp, metadata) rows where metadata is the
JSON-serialized record metadata. Filters on id and type are pushed into the
LanceDB query; any other key is matched in Python against the decoded
metadata, because LanceDB cannot query inside the JSON column.

LanceDB calls are blocking and not safe for concurrent writes, so every call
runs in a worker thread under a shared RLock.
"""

import asyncio
import json
import threading
from typing import Any

import lancedb
import pyarrow as pa

from devmemory.config import Config
from devmemory.embeddings import EmbeddingGenerator
from devmemory.log_config import get_logger, log_timing
from devmemory.models import QueryMatch, VectorRecord
from devmemory.store.protocol import BaseVectorStore, matches_filter

log = get_logger("store")

# Keys with a dedicated column; filters on them run inside LanceDB
PUSHDOWN_KEYS = ("id", "type")

# Initial over-fetch factor when part of the filter is applied in Python;
# the window doubles until top_k rows pass or the table is exhausted
PYTHON_FILTER_OVERFETCH = 3


def _quote(value: str) -> str:
    """Quote a string literal for a LanceDB SQL filter."""
    return "'" + str(value).replace("'", "''") + "'"


def _in_clause(column: str, values: list[str]) -> str:
    return f"{column} IN ({', '.join(_quote(v) for v in values)})"


class LanceDBStore(BaseVectorStore):
    """Vector backend backed by a local LanceDB database.

    Example:
        >>> store = LanceDBStore(Config(), embeddings=LiteLLMEmbeddings())
        >>> await store.initialize()
        >>> result = await store.retrieve_memories("database connection pooling")
        >>> [m.id for m in result.get("matches")]
    """

    backend_name = "lancedb"
    TABLE_NAME = "context_entries"

    def __init__(self, config: Config | None = None, embeddings: EmbeddingGenerator | None = None):
        self.config = config or Config()
        interval = self.config.health_check_interval if self.config.monitor_connection else 0
        super().__init__(embeddings, self.config.embedding_dim, interval)
        self._write_lock = threading.RLock()
        self.db = None
        self.table = None

    def _schema(self) -> pa.Schema:
        return pa.schema([
            pa.field("id", pa.string()),
            pa.field("vector", pa.list_(pa.float32(), self.dimension)),
            pa.field("content", pa.string()),
            pa.field("type", pa.string()),
            pa.field("timestamp", pa.int64()),
            pa.field("metadata", pa.string()),  # JSON-serialized metadata
        ])

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNC PRIMITIVES (run in worker threads)
    # ═══════════════════════════════════════════════════════════════════════════

    def _connect_sync(self) -> None:
        path = self.config.vectors_dir
        path.mkdir(parents=True, exist_ok=True)
        log.debug(f"Connecting to LanceDB at {path}")
        with self._write_lock:
            self.db = lancedb.connect(str(path))
            # exist_ok opens the table when it is already there
            self.table = self.db.create_table(self.TABLE_NAME, schema=self._schema(), exist_ok=True)
            log.info(f"LanceDB table '{self.TABLE_NAME}' ready (dim={self.dimension}, rows={self.table.count_rows()})")

    def _ping_sync(self) -> int:
        if self.table is None:
            raise ConnectionError("LanceDB table is not open")
        with self._write_lock:
            return self.table.count_rows()

    def _to_row(self, record: VectorRecord) -> dict[str, Any]:
        metadata = record.metadata or {}
        return {
            "id": record.id,
            "vector": [float(v) for v in record.values],
            "content": metadata.get("content") or "",
            "type": metadata.get("type") or "",
            "timestamp": int(metadata.get("timestamp") or 0),
            "metadata": json.dumps(metadata),
        }

    @staticmethod
    def _decode_metadata(row: dict[str, Any]) -> dict[str, Any]:
        try:
            return json.loads(row.get("metadata") or "{}")
        except json.JSONDecodeError:
            log.warning(f"Corrupt metadata for id={row.get('id')}")
            return {}

    def _upsert_sync(self, records: list[VectorRecord]) -> None:
        # Last record wins when a batch repeats an id
        latest = {r.id: r for r in records}
        ids = list(latest)
        rows = [self._to_row(r) for r in latest.values()]
        with self._write_lock:
            self.table.delete(_in_clause("id", ids))
            self.table.add(rows)

    def _query_sync(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None
    ) -> list[QueryMatch]:
        filter = dict(filter or {})
        clauses = []
        for key in PUSHDOWN_KEYS:
            value = filter.get(key)
            if isinstance(value, str):
                clauses.append(f"{key} = {_quote(value)}")
                filter.pop(key)
            elif isinstance(value, dict) and set(value) == {"$eq"}:
                clauses.append(f"{key} = {_quote(value['$eq'])}")
                filter.pop(key)
            elif isinstance(value, dict) and set(value) == {"$in"} and value["$in"]:
                clauses.append(_in_clause(key, list(value["$in"])))
                filter.pop(key)

        with self._write_lock:
            total = self.table.count_rows()
            # Searching an empty table raises inside LanceDB
            if total == 0:
                return []
            fetch_limit = min(top_k * PYTHON_FILTER_OVERFETCH, total) if filter else top_k
            while True:
                search = self.table.search(
                    vector, vector_column_name="vector"
                ).distance_type("cosine").limit(fetch_limit)
                if clauses:
                    search = search.where(" AND ".join(clauses), prefilter=True)
                rows = search.to_list()
                matches = self._filter_rows(rows, filter, top_k)
                exhausted = len(rows) < fetch_limit or fetch_limit >= total
                if not filter or len(matches) >= top_k or exhausted:
                    return matches
                log.trace(f"Widening filtered query: {len(matches)}/{top_k} matches in {fetch_limit} rows")
                fetch_limit = min(fetch_limit * 2, total)

    def _filter_rows(
        self, rows: list[dict[str, Any]], filter: dict[str, Any], top_k: int
    ) -> list[QueryMatch]:
        matches = []
        for row in rows:
            metadata = self._decode_metadata(row)
            if not matches_filter(row["id"], metadata, filter):
                continue
            matches.append(QueryMatch(
                id=row["id"],
                score=1.0 - float(row.get("_distance", 1.0)),
                metadata=metadata,
                values=[float(v) for v in row["vector"]],
            ))
            if len(matches) >= top_k:
                break
        return matches

    def _fetch_sync(self, ids: list[str]) -> list[VectorRecord]:
        if not ids:
            return []
        with self._write_lock:
            rows = self.table.search().where(_in_clause("id", ids)).limit(len(ids)).to_list()
        by_id = {
            row["id"]: VectorRecord(
                id=row["id"],
                values=[float(v) for v in row["vector"]],
                metadata=self._decode_metadata(row),
            )
            for row in rows
        }
        return [by_id[i] for i in ids if i in by_id]

    def _delete_sync(self, ids: list[str]) -> None:
        with self._write_lock:
            self.table.delete(_in_clause("id", ids))

    def _count_sync(self) -> int:
        with self._write_lock:
            return self.table.count_rows()

    # ═══════════════════════════════════════════════════════════════════════════
    # ASYNC PRIMITIVES
    # ═══════════════════════════════════════════════════════════════════════════

    async def _connect(self) -> None:
        await asyncio.to_thread(self._connect_sync)

    async def _ping(self) -> None:
        await asyncio.to_thread(self._ping_sync)

    async def _upsert(self, records: list[VectorRecord]) -> None:
        with log_timing(f"LanceDB upsert of {len(records)} records", log):
            await asyncio.to_thread(self._upsert_sync, records)

    async def _query(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None
    ) -> list[QueryMatch]:
        return await asyncio.to_thread(self._query_sync, vector, top_k, filter)

    async def _fetch(self, ids: list[str]) -> list[VectorRecord]:
        return await asyncio.to_thread(self._fetch_sync, ids)

    async def _delete(self, ids: list[str]) -> None:
        await asyncio.to_thread(self._delete_sync, ids)

    async def vector_count(self) -> int:
        if self.table is None:
            return 0
        return await asyncio.to_thread(self._count_sync)

    async def _close(self) -> None:
        self.table = None
        self.db = None
