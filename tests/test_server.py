"""Tests for the MCP server tools.

Tools run against an in-memory backend installed with set_services.
"""

import json

import pytest
import pytest_asyncio

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS


@pytest_asyncio.fixture
async def services(tmp_path, memory_store, transformer):
    """Install in-memory services for the duration of a test."""
    import devmemory.server as server_module
    from devmemory.config import Config
    from devmemory.context import ContextManager
    from devmemory.migration import MigrationService

    config = Config(data_dir=tmp_path / "data", backend="memory", legacy_dir=tmp_path / "legacy")
    services = server_module.Services(
        config=config,
        store=memory_store,
        manager=ContextManager(memory_store),
        migration=MigrationService(memory_store, transformer),
    )
    server_module.set_services(services)
    yield services
    server_module.set_services(None)


class TestMemoryTools:
    """Tests for memory tools."""

    @pytest.mark.asyncio
    async def test_add_memory_generates_id_and_timestamp(self, services):
        """add_memory fills in id and timestamp when omitted."""
        from devmemory.server import add_memory

        result = await add_memory(content="Use pgbouncer in front of Postgres", type="code", tags=["db"])

        assert result["success"] is True
        entry = result["data"]["entry"]
        assert entry["id"]
        assert isinstance(entry["metadata"]["timestamp"], int)
        assert entry["metadata"]["tags"] == ["db"]
        assert services.manager.graph.has_node(entry["id"])

    @pytest.mark.asyncio
    async def test_add_memory_validation_error_code(self, services):
        """Validation failures use the invalid params code."""
        from devmemory.server import add_memory

        result = await add_memory(
            content="x", relationships=[{"target_id": "b", "type": "references", "strength": 2}]
        )

        assert result["success"] is False
        assert result["error"]["code"] == INVALID_PARAMS
        assert "strength" in result["error"]["message"]

    @pytest.mark.asyncio
    async def test_search_memories_with_filters(self, services):
        """Type and time filters narrow search results."""
        from devmemory.server import add_memory, search_memories

        await add_memory(content="alpha", id="a", type="note", timestamp=1000)
        await add_memory(content="beta", id="b", type="task", timestamp=2000)

        by_type = await search_memories(query="alpha", types=["task"])
        by_time = await search_memories(query="alpha", start=0, end=1500)

        assert [c["entry"]["id"] for c in by_type["data"]["contexts"]] == ["b"]
        assert [c["entry"]["id"] for c in by_time["data"]["contexts"]] == ["a"]
        json.dumps(by_type)

    @pytest.mark.asyncio
    async def test_search_rejects_bad_top_k(self, services):
        """top_k below one is invalid params."""
        from devmemory.server import search_memories

        result = await search_memories(query="x", top_k=0)

        assert result["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_update_unknown_memory_is_invalid_params(self, services):
        """Updating an unknown memory is invalid params."""
        from devmemory.server import update_memory_metadata

        result = await update_memory_metadata(id="missing", metadata={"type": "task"})

        assert result["error"] == {"code": INVALID_PARAMS, "message": "Context not found: missing"}

    @pytest.mark.asyncio
    async def test_update_with_mistyped_tags_is_invalid_params(self, services):
        """Bad partial values map to invalid params, not an internal error."""
        from devmemory.server import add_memory, update_memory_metadata

        await add_memory(content="alpha", id="a")

        result = await update_memory_metadata(id="a", metadata={"tags": None})

        assert result["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_related_and_delete(self, services):
        """Related memories disappear once the source is deleted."""
        from devmemory.server import add_memory, delete_memory, get_related_memories

        await add_memory(content="target", id="b")
        await add_memory(content="source", id="a",
                         relationships=[{"target_id": "b", "type": "references", "strength": 0.8}])

        related = await get_related_memories(id="a")
        deleted = await delete_memory(id="a")
        after = await get_related_memories(id="a")

        assert related["data"]["related"] == [{"id": "b", "relationship": "references"}]
        assert deleted["success"] is True
        assert after["data"]["related"] == []

    @pytest.mark.asyncio
    async def test_backend_failure_is_internal_error(self, services, memory_store):
        """Backend outages use the internal error code."""
        from devmemory.server import add_memory

        memory_store.simulate_connection_failure()

        result = await add_memory(content="x")

        assert result["error"]["code"] == INTERNAL_ERROR
        assert result["error"]["message"].startswith("storage write:")


class TestMigrationAndStatusTools:
    """Tests for migrate_legacy and get_status."""

    @pytest.mark.asyncio
    async def test_migrate_legacy_default_directory(self, services, memory_store):
        """migrate_legacy reads the configured legacy directory."""
        from devmemory.server import migrate_legacy

        legacy_dir = services.config.legacy_dir
        legacy_dir.mkdir(parents=True)
        (legacy_dir / "memory-1.json").write_text(json.dumps({
            "id": "legacy-1",
            "content": "old memory",
            "metadata": {"timestamp": "2024-01-15T10:30:00Z", "type": "conversation"},
        }))

        result = await migrate_legacy()

        assert result["success"] is True
        assert result["data"]["result"]["progress"]["processed"] == 1
        assert result["data"]["state"] == "completed"
        assert await memory_store.vector_count() == 1

    @pytest.mark.asyncio
    async def test_migrate_legacy_invalid_batch_size(self, services):
        """A negative batch size is invalid params."""
        from devmemory.server import migrate_legacy

        result = await migrate_legacy(batch_size=-1)

        assert result["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_get_status(self, services):
        """get_status reports backend and graph state."""
        from devmemory.server import get_status

        result = await get_status()

        assert result["success"] is True
        assert result["data"]["backend"]["is_connected"] is True
        assert result["data"]["backend_name"] == "memory"
        assert result["data"]["nodes"] == 0
