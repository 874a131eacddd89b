"""Context manager: the read/write surface over the vector backend and graph.

Every write goes to the backend first; the in-process graph is only mutated
after the backend accepted the write. Every public operation returns an
OperationResult. Failures carry the phase that failed as a prefix
("storage write: ...", "vector upsert: ...", "relationship tracking: ...",
"vector query: ...", "delete: ..."). There are no internal retries.
"""

from dataclasses import replace
from typing import Any

from devmemory.config import EMBEDDING_DIM
from devmemory.embeddings import validate_vector
from devmemory.errors import DevMemoryError, ErrorKind, MissingMetadataError, NotFoundError, ValidationError
from devmemory.graph import ContextGraph
from devmemory.log_config import get_logger
from devmemory.migration.transformer import EntryTransformer, record_metadata
from devmemory.models import (
    ContextEntry,
    ContextMetadata,
    ContextQueryOptions,
    ContextSearchResult,
    OperationResult,
    RelationshipRef,
    VectorRecord,
    is_valid_timestamp,
)

log = get_logger("context")

DEFAULT_TOP_K = 10

# Fields update_context_metadata accepts in a partial update
UPDATABLE_FIELDS = ("type", "timestamp", "tags", "source", "attributes", "relationships")


def _phase_failure(phase: str, result: OperationResult) -> OperationResult:
    return OperationResult.fail(result.error_kind or ErrorKind.BACKEND, f"{phase}: {result.error}")


def _check_metadata_types(tags: Any, source: Any, attributes: Any) -> None:
    """Raises ValidationError unless tags is a list of str, source a str or None and attributes a dict."""
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError("Invalid tags: must be a list of strings")
    if source is not None and not isinstance(source, str):
        raise ValidationError("Invalid source: must be a string")
    if not isinstance(attributes, dict):
        raise ValidationError("Invalid attributes: must be an object")


def _as_ref(value: RelationshipRef | dict[str, Any]) -> RelationshipRef:
    return value if isinstance(value, RelationshipRef) else RelationshipRef.from_dict(value)


class ContextManager:
    """Adds, retrieves, updates and deletes context entries.

    Args:
        store: Vector backend implementing both VectorStore and MemoryStore
        graph: Context graph (a fresh one by default)
        transformer: Entry transformer (one without an embedder by default;
            the manager only transforms entries that already carry a vector)
        default_top_k: Hits requested when query options give no top_k

    Example:
        >>> manager = ContextManager(store)
        >>> await manager.add_context(entry)
        >>> result = await manager.retrieve_context("connection pooling")
        >>> [c.entry.id for c in result.get("contexts")]
    """

    def __init__(
        self,
        store,
        graph: ContextGraph | None = None,
        transformer: EntryTransformer | None = None,
        default_top_k: int = DEFAULT_TOP_K,
    ):
        self.store = store
        self.graph = graph if graph is not None else ContextGraph()
        self.dimension = getattr(store, "dimension", EMBEDDING_DIM)
        self.transformer = transformer or EntryTransformer(dimension=self.dimension)
        self.default_top_k = default_top_k

    # ═══════════════════════════════════════════════════════════════════════════
    # VALIDATION & PERSISTENCE
    # ═══════════════════════════════════════════════════════════════════════════

    def _validate_entry(self, entry: ContextEntry) -> None:
        """Reject malformed entries before any backend call.

        Raises:
            ValidationError: On a missing id, non-integer timestamp, mistyped
                tags, source or attributes, bad relationship or wrong vector
                dimension
        """
        if not isinstance(entry.id, str) or not entry.id:
            raise ValidationError("Context entry id is required")
        if not isinstance(entry.content, str):
            raise ValidationError(f"Content must be a string: {entry.id}")
        if not isinstance(entry.metadata.type, str) or not entry.metadata.type:
            raise ValidationError(f"Metadata type is required: {entry.id}")
        if not is_valid_timestamp(entry.metadata.timestamp):
            raise ValidationError("Invalid timestamp: must be an integer")
        _check_metadata_types(entry.metadata.tags, entry.metadata.source, entry.metadata.attributes)
        for ref in entry.metadata.relationships:
            if not ref.target_id or not ref.type:
                raise ValidationError("Relationship requires target_id and type")
            strength = ref.strength
            if isinstance(strength, bool) or not isinstance(strength, (int, float)) or not 0 <= strength <= 1:
                raise ValidationError(
                    f"Invalid relationship strength {strength!r}: must be between 0 and 1"
                )
        if entry.vector is not None:
            validate_vector(entry.vector, self.dimension)

    async def _persist(self, entry: ContextEntry) -> OperationResult:
        """Storage write, then vector upsert when the entry carries a vector.

        Payload: vector (the vector the backend stored)
        """
        result = await self.store.store_memory(
            entry.id, entry.content, record_metadata(entry), entry.vector
        )
        if not result.success:
            return _phase_failure("storage write", result)

        if entry.vector is not None:
            try:
                record = await self.transformer.to_vector(entry)
            except DevMemoryError as e:
                return OperationResult.from_exception(e, prefix="vector upsert")
            upserted = await self.store.upsert_vectors([record])
            if not upserted.success:
                return _phase_failure("vector upsert", upserted)

        return OperationResult.ok(vector=result.get("vector", entry.vector))

    async def _track(self, source_id: str, refs: list[RelationshipRef]) -> OperationResult:
        for ref in refs:
            result = await self.store.track_relationship(source_id, ref.target_id, ref.type, ref.strength)
            if not result.success:
                return _phase_failure("relationship tracking", result)
        return OperationResult.ok()

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def add_context(self, entry: ContextEntry) -> OperationResult:
        """Persist an entry, index it in the graph and track its relationships.

        Payload: entry (as stored, with the backend's vector attached)
        """
        log.trace(f"add_context: {entry.id}")
        try:
            self._validate_entry(entry)
        except ValidationError as e:
            log.debug(f"add_context rejected {entry.id}: {e}")
            return OperationResult.from_exception(e)

        persisted = await self._persist(entry)
        if not persisted.success:
            log.warning(f"add_context failed for {entry.id}: {persisted.error}")
            return persisted

        stored = replace(entry, vector=persisted.get("vector"))
        self.graph.upsert_node(stored)
        self.graph.add_relationships(entry.id, entry.metadata.relationships)

        tracked = await self._track(entry.id, entry.metadata.relationships)
        if not tracked.success:
            log.warning(f"add_context: {entry.id} stored but {tracked.error}")
            return tracked

        log.info(f"Added context {entry.id} ({len(entry.metadata.relationships)} relationships)")
        return OperationResult.ok(entry=stored)

    async def retrieve_context(
        self,
        query: str | list[float],
        options: ContextQueryOptions | None = None,
    ) -> OperationResult:
        """Similarity search with optional related-entry expansion and post-filters.

        Time range and context type filters are applied to the hits the
        backend returned; they never change what is requested from it.

        Payload: contexts (list[ContextSearchResult])
        """
        options = options or ContextQueryOptions()
        top_k = options.top_k or self.default_top_k

        result = await self.store.retrieve_memories(
            query if isinstance(query, str) else list(query),
            top_k=top_k,
            filter=options.filter,
        )
        if not result.success:
            log.warning(f"retrieve_context failed: {result.error}")
            return _phase_failure("vector query", result)

        contexts: list[ContextSearchResult] = []
        for match in result.get("matches", []):
            try:
                entry = self.transformer.to_entry(
                    VectorRecord(id=match.id, values=match.values, metadata=match.metadata)
                )
            except MissingMetadataError as e:
                log.warning(f"Skipping match without metadata: {e}")
                continue

            related: list[ContextEntry] = []
            if options.include_related:
                lookup = await self.store.get_related_memories(match.id)
                if not lookup.success:
                    return _phase_failure("relationship lookup", lookup)
                seen = set()
                for rel in lookup.get("related", []):
                    if options.relationship_types and rel["relationship"] not in options.relationship_types:
                        continue
                    node = self.graph.get_node(rel["id"])
                    if node is not None and node.id not in seen:
                        seen.add(node.id)
                        related.append(node)

            contexts.append(ContextSearchResult(entry=entry, score=match.score, related_entries=related))

        if options.time_range is not None:
            contexts = [c for c in contexts if options.time_range.contains(c.entry.metadata.timestamp)]
        if options.context_types:
            contexts = [c for c in contexts if c.entry.metadata.type in options.context_types]

        log.debug(f"retrieve_context: {len(result.get('matches', []))} matches, {len(contexts)} after filters")
        return OperationResult.ok(contexts=contexts)

    async def update_context_metadata(self, entry_id: str, partial: dict[str, Any]) -> OperationResult:
        """Merge partial metadata over a known entry and re-persist it.

        Attributes are merged key-wise; other fields are replaced.
        Relationships in the partial are ignored (see update_relationships).

        Payload: entry
        """
        node = self.graph.get_node(entry_id)
        if node is None:
            return OperationResult.from_exception(NotFoundError(entry_id))
        if not isinstance(partial, dict):
            return OperationResult.from_exception(ValidationError("Metadata update must be an object"))

        unknown = set(partial) - set(UPDATABLE_FIELDS)
        if unknown:
            return OperationResult.from_exception(
                ValidationError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")
            )
        if "relationships" in partial:
            log.debug(f"update_context_metadata: ignoring relationships for {entry_id}")

        meta = node.metadata
        try:
            _check_metadata_types(
                partial.get("tags", meta.tags),
                partial.get("source", meta.source),
                partial.get("attributes", {}),
            )
            merged = ContextMetadata(
                type=partial.get("type", meta.type),
                timestamp=partial.get("timestamp", meta.timestamp),
                tags=list(partial.get("tags", meta.tags)),
                source=partial.get("source", meta.source),
                relationships=list(meta.relationships),
                attributes={**meta.attributes, **partial.get("attributes", {})},
            )
            updated = replace(node, metadata=merged)
            self._validate_entry(updated)
        except ValidationError as e:
            return OperationResult.from_exception(e)

        persisted = await self._persist(updated)
        if not persisted.success:
            log.warning(f"update_context_metadata failed for {entry_id}: {persisted.error}")
            return persisted

        self.graph.upsert_node(updated)
        log.info(f"Updated metadata of {entry_id}: {sorted(partial)}")
        return OperationResult.ok(entry=updated)

    async def update_relationships(
        self,
        entry_id: str,
        relationships: list[RelationshipRef | dict[str, Any]],
    ) -> OperationResult:
        """Replace an entry's outgoing relationships wholesale.

        Payload: entry
        """
        node = self.graph.get_node(entry_id)
        if node is None:
            return OperationResult.from_exception(NotFoundError(entry_id))

        try:
            refs = [_as_ref(r) for r in relationships]
            updated = replace(node, metadata=replace(node.metadata, relationships=refs))
            self._validate_entry(updated)
        except (ValidationError, TypeError, AttributeError) as e:
            return OperationResult.fail(ErrorKind.VALIDATION, f"Invalid relationships: {e}")

        persisted = await self._persist(updated)
        if not persisted.success:
            return persisted

        self.graph.upsert_node(updated)
        self.graph.replace_edges(entry_id, refs)

        tracked = await self._track(entry_id, refs)
        if not tracked.success:
            return tracked

        log.info(f"Replaced relationships of {entry_id}: {len(refs)} edges")
        return OperationResult.ok(entry=updated)

    async def delete_context(self, entry_id: str) -> OperationResult:
        """Delete from the backend, then drop the node and its edges.

        Deleting an id the backend does not hold succeeds.

        Payload: id, removed_edges
        """
        result = await self.store.delete_memories([entry_id])
        if not result.success:
            log.warning(f"delete_context failed for {entry_id}: {result.error}")
            return _phase_failure("delete", result)

        removed = self.graph.remove_node(entry_id)
        log.info(f"Deleted context {entry_id} ({removed} edges removed)")
        return OperationResult.ok(id=entry_id, removed_edges=removed)

    def get_related_memories(
        self, entry_id: str, relationship_type: str | None = None
    ) -> list[dict[str, str]]:
        """Outgoing relationships of entry_id to known entries (graph only)."""
        return self.graph.get_related(entry_id, relationship_type)

    async def get_stats(self) -> OperationResult:
        """Graph counts plus backend connection status and vector count."""
        stats: dict[str, Any] = self.graph.stats()
        stats["backend"] = self.store.get_connection_status()
        try:
            stats["vectors"] = await self.store.vector_count()
        except Exception as e:
            log.debug(f"vector_count unavailable: {e}")
            stats["vectors"] = None
        return OperationResult.ok(**stats)
