"""Entry <-> vector record transformation.

The transformer is the single place that knows how a ContextEntry is laid
out inside a vector record's metadata. Both the context manager and the
migration engine go through it, so a record written by either can be read
back by the other.
"""

import copy
from typing import Any

from devmemory.config import EMBEDDING_DIM
from devmemory.embeddings import EmbeddingGenerator
from devmemory.errors import EmbeddingError, MissingMetadataError
from devmemory.log_config import get_logger
from devmemory.models import (
    ContextEntry,
    ContextMetadata,
    RelationshipRef,
    VectorRecord,
    is_valid_timestamp,
)

log = get_logger("migration.transformer")


# Bookkeeping keys a backend may stamp on stored metadata
TRANSIENT_KEYS = ("_updated",)


def strip_transient(attributes: dict[str, Any]) -> dict[str, Any]:
    """Drop backend bookkeeping keys; other underscore keys are user data."""
    return {k: v for k, v in attributes.items() if k not in TRANSIENT_KEYS}


def record_metadata(entry: ContextEntry) -> dict[str, Any]:
    """Metadata dict stored alongside the entry's vector."""
    meta = entry.metadata
    return {
        "content": entry.content,
        "type": meta.type,
        "timestamp": meta.timestamp,
        "tags": list(meta.tags or []),
        "source": meta.source,
        "relationships": [r.to_dict() for r in meta.relationships or []],
        "attributes": copy.deepcopy(meta.attributes or {}),
    }


class EntryTransformer:
    """Bidirectional mapping between ContextEntry and VectorRecord.

    Args:
        embeddings: Generator used when an entry carries no vector
        dimension: Expected vector length for validate()
    """

    def __init__(self, embeddings: EmbeddingGenerator | None = None, dimension: int = EMBEDDING_DIM):
        self.embeddings = embeddings
        self.dimension = dimension

    async def to_vector(self, entry: ContextEntry) -> VectorRecord:
        """Build the vector record for an entry, embedding its content if needed.

        Raises:
            EmbeddingError: If the entry has no vector and embedding fails
        """
        vector = entry.vector
        if vector is None:
            if self.embeddings is None:
                raise EmbeddingError(f"No vector for {entry.id} and no embedding generator configured")
            result = await self.embeddings.embed(entry.content)
            if not result.success:
                raise EmbeddingError(result.error)
            vector = result.get("embedding")
            log.trace(f"Embedded content for {entry.id}")

        return VectorRecord(id=entry.id, values=list(vector), metadata=record_metadata(entry))

    def to_entry(self, record: VectorRecord) -> ContextEntry:
        """Rebuild an entry from a vector record.

        Raises:
            MissingMetadataError: If the record has no metadata
        """
        meta = record.metadata
        if not meta:
            raise MissingMetadataError(f"Vector record has no metadata: {record.id}")

        return ContextEntry(
            id=record.id,
            content=meta.get("content", ""),
            metadata=ContextMetadata(
                type=meta.get("type"),
                timestamp=meta.get("timestamp"),
                tags=list(meta.get("tags") or []),
                source=meta.get("source"),
                relationships=[
                    RelationshipRef.from_dict(r) for r in meta.get("relationships") or []
                ],
                attributes=strip_transient(copy.deepcopy(meta.get("attributes") or {})),
            ),
            vector=list(record.values) if record.values is not None else None,
        )

    def validate(self, entry: ContextEntry, record: VectorRecord) -> bool:
        """Check that record faithfully represents entry.

        True only if id, content, type and timestamp match exactly, the
        timestamp is a non-negative integer, the vector has the expected
        dimension, and tags, source, relationships and attributes survive a
        round trip through to_entry.
        """
        try:
            meta = record.metadata or {}
            timestamp = entry.metadata.timestamp
            if record.id != entry.id:
                return False
            if meta.get("content") != entry.content:
                return False
            if meta.get("type") != entry.metadata.type:
                return False
            if not is_valid_timestamp(timestamp) or timestamp < 0:
                return False
            if not is_valid_timestamp(meta.get("timestamp")) or meta["timestamp"] != timestamp:
                return False
            if record.values is None or len(record.values) != self.dimension:
                return False

            rebuilt = self.to_entry(record)
            original = entry.metadata
            return (
                rebuilt.metadata.tags == list(original.tags or [])
                and rebuilt.metadata.source == original.source
                and rebuilt.metadata.relationships == list(original.relationships or [])
                and rebuilt.metadata.attributes == dict(original.attributes or {})
            )
        except Exception as e:
            log.debug(f"Validation of {entry.id} raised: {e}")
            return False
