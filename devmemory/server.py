"""MCP Server for Dev Memory.

Exposes the context manager and the migration engine as MCP tools over
stdio. Every tool returns a standard envelope::

    {"success": true, "data": {...}}
    {"success": false, "error": {"code": -32602, "message": "..."}}

Validation and not-found failures use the JSON-RPC invalid-params code,
everything else the internal-error code.
"""

import sys
import time
import uuid
from dataclasses import dataclass
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS

from devmemory.config import Config
from devmemory.context import ContextManager
from devmemory.embeddings import LiteLLMEmbeddings
from devmemory.errors import BackendError, ErrorKind
from devmemory.log_config import get_logger
from devmemory.migration import EntryTransformer, MigrationService
from devmemory.models import (
    ContextEntry,
    ContextMetadata,
    ContextQueryOptions,
    MigrationOptions,
    OperationResult,
    RelationshipRef,
    TimeRange,
)
from devmemory.store import create_store

log = get_logger("server")

# Suggested entry types; any non-empty string is accepted
CONTEXT_TYPES = ("note", "code", "task", "reference", "conversation")

_PARAM_ERROR_KINDS = (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND)


@dataclass
class Services:
    """Everything the tools need, created once per process."""

    config: Config
    store: Any
    manager: ContextManager
    migration: MigrationService


_services: Services | None = None


async def build_services(config: Config | None = None) -> Services:
    """Create and connect the backend, manager and migration engine.

    Raises:
        BackendError: If the vector backend cannot be initialized
    """
    config = config or Config()
    embeddings = LiteLLMEmbeddings(config)
    store = create_store(config, embeddings)
    init = await store.initialize()
    if not init.success:
        raise BackendError("initialize", init.error)

    manager = ContextManager(store, default_top_k=config.default_top_k)
    migration = MigrationService(store, EntryTransformer(embeddings, config.embedding_dim))
    log.info(f"Services ready: backend={config.backend}")
    return Services(config=config, store=store, manager=manager, migration=migration)


async def get_services() -> Services:
    global _services
    if _services is None:
        _services = await build_services()
    return _services


def set_services(services: Services | None) -> None:
    """Install (or clear) the services used by the tools."""
    global _services
    _services = services


def _error(code: int, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


def _respond(result: OperationResult, **data: Any) -> dict:
    """Convert an OperationResult into the tool envelope."""
    if not result.success:
        code = INVALID_PARAMS if result.error_kind in _PARAM_ERROR_KINDS else INTERNAL_ERROR
        return _error(code, result.error)
    payload = {k: v for k, v in result.to_dict().items() if k != "success"}
    payload.update(data)
    return {"success": True, "data": payload}


mcp = FastMCP(
    "dev-memory",
    instructions="""Dev Memory: persistent development context with relationships.

- `add_memory` stores a note, code snippet, task or reference, optionally
  linked to other memories (relationships: [{target_id, type, strength}]).
- `search_memories` finds memories by meaning; filter by type or time range
  and optionally include related memories.
- `get_related_memories` lists what a memory links to.
- `migrate_legacy` imports the old .dev-memory JSON files.
""",
)


@mcp.tool()
async def add_memory(
    content: str,
    type: str = "note",
    tags: list[str] | None = None,
    source: str | None = None,
    relationships: list[dict] | None = None,
    attributes: dict | None = None,
    id: str | None = None,
    timestamp: int | None = None,
) -> dict:
    """Store a memory with optional relationships.

    Args:
        content: The text to remember
        type: Memory type (note, code, task, reference, ...)
        tags: Free-form labels
        source: Where the memory came from
        relationships: List of {target_id, type, strength} links
        attributes: Extra key/value data
        id: Explicit id (generated when omitted)
        timestamp: Creation time in ms since epoch (now when omitted)

    Returns:
        Envelope with data.entry
    """
    log.info(f"Tool: add_memory called (type={type}, {len(content)} chars)")
    try:
        services = await get_services()
        entry = ContextEntry(
            id=id or str(uuid.uuid4()),
            content=content,
            metadata=ContextMetadata(
                type=type,
                timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
                tags=list(tags or []),
                source=source,
                relationships=[RelationshipRef.from_dict(r) for r in relationships or []],
                attributes=dict(attributes or {}),
            ),
        )
        result = await services.manager.add_context(entry)
    except (TypeError, AttributeError) as e:
        return _error(INVALID_PARAMS, f"Invalid arguments: {e}")
    except Exception as e:
        log.error(f"Tool: add_memory failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    log.info(f"Tool: add_memory complete: success={result.success}")
    return _respond(result)


@mcp.tool()
async def search_memories(
    query: str,
    top_k: int | None = None,
    types: list[str] | None = None,
    start: int | None = None,
    end: int | None = None,
    include_related: bool = False,
    relationship_types: list[str] | None = None,
    filter: dict | None = None,
) -> dict:
    """Semantic search over stored memories.

    Args:
        query: Search text
        top_k: Hits requested from the backend (default from config)
        types: Keep only these memory types
        start: Keep only memories created at or after this time (ms)
        end: Keep only memories created at or before this time (ms)
        include_related: Attach memories each hit links to
        relationship_types: Restrict include_related to these relationship types
        filter: Equality filter applied by the backend (e.g. {"source": "cli"})

    Returns:
        Envelope with data.contexts (entry, score, related_entries)
    """
    log.info(f"Tool: search_memories called (query='{query[:50]}', top_k={top_k})")
    if top_k is not None and top_k < 1:
        return _error(INVALID_PARAMS, "top_k must be >= 1")
    time_range = None
    if start is not None or end is not None:
        time_range = TimeRange(start=start if start is not None else 0, end=end if end is not None else sys.maxsize)
    options = ContextQueryOptions(
        top_k=top_k,
        filter=filter,
        include_related=include_related,
        relationship_types=relationship_types,
        time_range=time_range,
        context_types=types,
    )
    try:
        services = await get_services()
        result = await services.manager.retrieve_context(query, options)
    except Exception as e:
        log.error(f"Tool: search_memories failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    log.info(f"Tool: search_memories complete: {len(result.get('contexts') or [])} results")
    return _respond(result)


@mcp.tool()
async def update_memory_metadata(id: str, metadata: dict) -> dict:
    """Merge new metadata into a memory stored during this session.

    Args:
        id: Memory id
        metadata: Partial metadata (type, timestamp, tags, source, attributes)

    Returns:
        Envelope with data.entry
    """
    log.info(f"Tool: update_memory_metadata called (id={id}, fields={sorted(metadata)})")
    try:
        services = await get_services()
        result = await services.manager.update_context_metadata(id, metadata)
    except Exception as e:
        log.error(f"Tool: update_memory_metadata failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    return _respond(result)


@mcp.tool()
async def delete_memory(id: str) -> dict:
    """Delete a memory and its relationships.

    Args:
        id: Memory id

    Returns:
        Envelope with data.id and data.removed_edges
    """
    log.info(f"Tool: delete_memory called (id={id})")
    try:
        services = await get_services()
        result = await services.manager.delete_context(id)
    except Exception as e:
        log.error(f"Tool: delete_memory failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    return _respond(result)


@mcp.tool()
async def get_related_memories(id: str, relationship_type: str | None = None) -> dict:
    """List memories the given memory links to.

    Args:
        id: Memory id
        relationship_type: Only this relationship type

    Returns:
        Envelope with data.related: [{id, relationship}]
    """
    log.info(f"Tool: get_related_memories called (id={id}, type={relationship_type})")
    try:
        services = await get_services()
        related = services.manager.get_related_memories(id, relationship_type)
    except Exception as e:
        log.error(f"Tool: get_related_memories failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    return {"success": True, "data": {"related": related}}


@mcp.tool()
async def migrate_legacy(
    directory: str | None = None,
    batch_size: int | None = None,
    validate_only: bool = False,
    rollback_on_error: bool = False,
) -> dict:
    """Import memories from the legacy .dev-memory JSON layout.

    Args:
        directory: Legacy store directory (default from config)
        batch_size: Entries per backend write
        validate_only: Transform and validate without writing
        rollback_on_error: Stop on the first failure and undo written vectors

    Returns:
        Envelope with data.loaded, data.result and data.state (final snapshot state)
    """
    log.info(f"Tool: migrate_legacy called (directory={directory}, validate_only={validate_only})")
    try:
        services = await get_services()
        options = MigrationOptions(
            batch_size=batch_size or services.config.migration_batch_size,
            validate_only=validate_only,
            rollback_on_error=rollback_on_error,
        )
    except ValueError as e:
        return _error(INVALID_PARAMS, str(e))
    except Exception as e:
        log.error(f"Tool: migrate_legacy failed: {e}")
        return _error(INTERNAL_ERROR, str(e))

    try:
        loaded, result = await services.migration.migrate_legacy(
            directory or services.config.legacy_dir, options
        )
    except Exception as e:
        log.error(f"Tool: migrate_legacy failed: {e}")
        return _error(INTERNAL_ERROR, str(e))

    latest = services.migration.get_latest_snapshot()
    log.info(
        f"Tool: migrate_legacy complete: processed={result.progress.processed}, "
        f"failed={result.progress.failed}"
    )
    return {
        "success": True,
        "data": {
            "loaded": loaded.to_dict(),
            "result": result.to_dict(),
            "state": latest.state.value if latest else None,
        },
    }


@mcp.tool()
async def get_status() -> dict:
    """Backend connection status and graph statistics."""
    log.info("Tool: get_status called")
    try:
        services = await get_services()
        result = await services.manager.get_stats()
    except Exception as e:
        log.error(f"Tool: get_status failed: {e}")
        return _error(INTERNAL_ERROR, str(e))
    return _respond(result, backend_name=services.config.backend)


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════


def main():
    """Run the MCP server."""
    log.info("Starting MCP server run loop")
    mcp.run()
    log.info("MCP server stopped")


if __name__ == "__main__":
    main()
