"""Data model for Dev Memory.

Context entries, vector records, query/result types and migration
bookkeeping. Every type serializes to plain JSON-compatible dicts so it can
cross the MCP boundary and be stored in the LanceDB metadata column.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from devmemory.errors import DevMemoryError, ErrorKind


def is_valid_timestamp(value: Any) -> bool:
    """Timestamps are integer milliseconds; bool is not accepted as an int."""
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class RelationshipRef:
    """Directed, typed, weighted link from the owning entry to target_id."""

    target_id: str
    type: str
    strength: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {"target_id": self.target_id, "type": self.type, "strength": self.strength}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipRef":
        # Legacy payloads use camelCase targetId
        target_id = data.get("target_id", data.get("targetId"))
        return cls(
            target_id=target_id,
            type=data.get("type", "relates"),
            strength=data.get("strength", 1.0),
        )


@dataclass
class ContextMetadata:
    """Metadata attached to every context entry.

    Attributes:
        type: Entry type (note, code, task, reference, ...)
        timestamp: Creation time in integer milliseconds since epoch
        tags: Free-form labels
        source: Optional origin of the entry
        relationships: Outgoing relationships to other entries
        attributes: Arbitrary extra key/value data
    """

    type: str
    timestamp: int
    tags: list[str] = field(default_factory=list)
    source: str | None = None
    relationships: list[RelationshipRef] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "tags": list(self.tags),
            "source": self.source,
            "relationships": [r.to_dict() for r in self.relationships],
            "attributes": copy.deepcopy(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextMetadata":
        return cls(
            type=data.get("type"),
            timestamp=data.get("timestamp"),
            tags=list(data.get("tags") or []),
            source=data.get("source"),
            relationships=[
                r if isinstance(r, RelationshipRef) else RelationshipRef.from_dict(r)
                for r in data.get("relationships") or []
            ],
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass
class ContextEntry:
    """The canonical unit of memory: text, metadata and an optional embedding."""

    id: str
    content: str
    metadata: ContextMetadata
    vector: list[float] | None = None

    def to_dict(self, include_vector: bool = False) -> dict[str, Any]:
        d = {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
        }
        if include_vector and self.vector is not None:
            d["vector"] = list(self.vector)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextEntry":
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, ContextMetadata):
            metadata = ContextMetadata.from_dict(metadata)
        vector = data.get("vector")
        return cls(
            id=data["id"],
            content=data.get("content", ""),
            metadata=metadata,
            vector=list(vector) if vector is not None else None,
        )


@dataclass
class VectorRecord:
    """The vector backend's native shape.

    metadata["content"] always mirrors the entry content so a record is
    self-describing.
    """

    id: str
    values: list[float]
    metadata: dict[str, Any] | None = None


@dataclass
class QueryMatch:
    """One hit of a similarity query."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    values: list[float] | None = None


@dataclass
class TimeRange:
    """Inclusive timestamp range: start <= timestamp <= end."""

    start: int
    end: int

    def contains(self, timestamp: Any) -> bool:
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return False
        return self.start <= timestamp <= self.end

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeRange":
        return cls(start=data["start"], end=data["end"])


@dataclass
class ContextQueryOptions:
    """Options for ContextManager.retrieve_context.

    Attributes:
        top_k: Hits requested from the backend (None = configured default)
        filter: Equality filter passed through to the backend
        include_related: Attach related entries found in the local graph
        relationship_types: Restrict related-entry expansion to these types
        time_range: Post-filter on metadata.timestamp (inclusive)
        context_types: Post-filter on metadata.type membership
    """

    top_k: int | None = None
    filter: dict[str, Any] | None = None
    include_related: bool = False
    relationship_types: list[str] | None = None
    time_range: TimeRange | None = None
    context_types: list[str] | None = None


@dataclass
class ContextSearchResult:
    """A retrieved entry with its similarity score."""

    entry: ContextEntry
    score: float
    related_entries: list[ContextEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry": self.entry.to_dict(),
            "score": self.score,
            "related_entries": [e.to_dict() for e in self.related_entries],
        }


def _jsonable(value: Any) -> Any:
    """Convert model objects nested in result payloads into plain data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class OperationResult:
    """Result of every public operation and every backend call.

    Expected failures are values, not exceptions: success is False, error holds
    a message and error_kind classifies it. Payload lives in data.

    Example:
        >>> result = OperationResult.ok(entry=entry)
        >>> result.get("entry")
        >>> OperationResult.fail(ErrorKind.NOT_FOUND, "Context not found: x").success
        False
    """

    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **data: Any) -> "OperationResult":
        return cls(success=False, error=message, error_kind=kind, data=data)

    @classmethod
    def from_exception(cls, exc: Exception, prefix: str | None = None) -> "OperationResult":
        """Convert a caught exception into a failure, keeping its kind when known."""
        kind = exc.kind if isinstance(exc, DevMemoryError) else ErrorKind.INTERNAL
        message = str(exc) or exc.__class__.__name__
        if prefix:
            message = f"{prefix}: {message}"
        return cls.fail(kind, message)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            d["error"] = self.error
            d["error_kind"] = self.error_kind.value if self.error_kind else None
        d.update(_jsonable(self.data))
        return d


# ═══════════════════════════════════════════════════════════════════════════════
# MIGRATION TYPES
# ═══════════════════════════════════════════════════════════════════════════════


class MigrationState(str, Enum):
    """Migration state machine states."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass
class MigrationError:
    """One failed entry: its id, the reason and the entry data."""

    id: str
    error: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "error": self.error, "data": _jsonable(self.data)}


@dataclass
class MigrationProgress:
    """Counters for a single migrate() call."""

    total: int
    processed: int = 0
    failed: int = 0
    errors: list[MigrationError] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None

    def copy(self) -> "MigrationProgress":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass(frozen=True)
class MigrationSnapshot:
    """Immutable, timestamped copy of migration progress (observability only)."""

    timestamp: datetime
    progress: MigrationProgress
    state: MigrationState

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "progress": self.progress.to_dict(),
            "state": self.state.value,
        }


@dataclass
class MigrationOptions:
    """Options for MigrationService.migrate."""

    batch_size: int = 50
    validate_only: bool = False
    rollback_on_error: bool = False

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")


@dataclass
class MigrationResult:
    """Outcome of a migrate() call."""

    success: bool
    progress: MigrationProgress
    rollback_required: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "progress": self.progress.to_dict(),
            "rollback_required": self.rollback_required,
        }
