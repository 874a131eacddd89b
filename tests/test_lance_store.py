"""Tests for the LanceDB vector backend.

Uses a real LanceDB database under tmp_path.
"""

import warnings

import pytest
import pytest_asyncio

from devmemory.models import VectorRecord


@pytest.fixture
def lance_config(tmp_path):
    from devmemory.config import Config

    return Config(data_dir=tmp_path / "data", backend="lancedb", monitor_connection=False)


@pytest_asyncio.fixture
async def lance_store(lance_config, fake_embeddings):
    from devmemory.store.lance_backend import LanceDBStore

    store = LanceDBStore(lance_config, embeddings=fake_embeddings)
    result = await store.initialize()
    assert result.success, result.error
    yield store
    await store.dispose()


def _record(name, make_vector, **metadata):
    return VectorRecord(
        id=name,
        values=make_vector(name),
        metadata={"content": f"content {name}", "type": "note", "timestamp": 1, **metadata},
    )


class TestLanceDBStore:
    """Test LanceDB-backed storage."""

    @pytest.mark.asyncio
    async def test_not_connected_before_initialize(self, lance_config, make_vector):
        """Calls fail with Not connected until initialize succeeds."""
        from devmemory.store.lance_backend import LanceDBStore

        store = LanceDBStore(lance_config)

        result = await store.query_vectors(make_vector("q"))

        assert not result.success
        assert "Not connected" in result.error

    @pytest.mark.asyncio
    async def test_connect_uses_no_deprecated_table_listing(self, lance_config):
        """Opening the table twice raises no table_names deprecation warning."""
        from devmemory.store.lance_backend import LanceDBStore

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            for _ in range(2):
                store = LanceDBStore(lance_config)
                assert (await store.initialize()).success
                await store.dispose()

        assert not [w for w in caught if "table_names" in str(w.message)]

    @pytest.mark.asyncio
    async def test_query_empty_table(self, lance_store, make_vector):
        """Querying an empty table returns no matches."""
        result = await lance_store.query_vectors(make_vector("q"))

        assert result.success
        assert result.get("matches") == []

    @pytest.mark.asyncio
    async def test_upsert_and_query(self, lance_store, make_vector):
        """Upserted rows come back ranked by cosine similarity."""
        await lance_store.upsert_vectors([_record(n, make_vector) for n in ("a", "b", "c")])

        result = await lance_store.query_vectors(make_vector("b"), top_k=2)

        matches = result.get("matches")
        assert len(matches) == 2
        assert matches[0].id == "b"
        assert matches[0].score == pytest.approx(1.0, abs=1e-4)
        assert matches[0].metadata["content"] == "content b"
        assert "_updated" in matches[0].metadata

    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_id(self, lance_store, make_vector):
        """Upserting an existing id replaces the row."""
        await lance_store.upsert_vectors([_record("a", make_vector, type="note")])
        await lance_store.upsert_vectors([_record("a", make_vector, type="task")])

        records = (await lance_store.fetch_vectors(["a"])).get("records")

        assert await lance_store.vector_count() == 1
        assert records[0].metadata["type"] == "task"

    @pytest.mark.asyncio
    async def test_pushdown_and_python_filters(self, lance_store, make_vector):
        """Column and metadata filters combine correctly."""
        await lance_store.upsert_vectors([
            _record("a", make_vector, type="note", source="cli"),
            _record("b", make_vector, type="task", source="cli"),
            _record("c", make_vector, type="note", source="web"),
        ])

        async def ids(filter):
            result = await lance_store.query_vectors(make_vector("q"), top_k=10, filter=filter)
            return sorted(m.id for m in result.get("matches"))

        assert await ids({"type": "note"}) == ["a", "c"]
        assert await ids({"id": "b"}) == ["b"]
        assert await ids({"source": "cli"}) == ["a", "b"]
        assert await ids({"type": "note", "source": "web"}) == ["c"]

    @pytest.mark.asyncio
    async def test_repeated_id_in_one_batch_keeps_last(self, lance_store, make_vector):
        """A batch that repeats an id stores one row holding the last record."""
        await lance_store.upsert_vectors([
            _record("dup", make_vector, content="v1"),
            _record("dup", make_vector, content="v2"),
        ])

        result = await lance_store.query_vectors(make_vector("dup"), top_k=10)

        assert await lance_store.vector_count() == 1
        assert [m.id for m in result.get("matches")] == ["dup"]
        assert result.get("matches")[0].metadata["content"] == "v2"

    @pytest.mark.asyncio
    async def test_migrating_duplicate_ids_matches_memory_backend(self, lance_store, transformer, make_entry):
        """Migration of two entries sharing an id leaves a single vector."""
        from devmemory.migration import MigrationService
        from devmemory.models import MigrationOptions

        service = MigrationService(lance_store, transformer)

        result = await service.migrate(
            [make_entry("dup", "v1"), make_entry("dup", "v2")], MigrationOptions(batch_size=10)
        )

        assert result.success
        assert await lance_store.vector_count() == 1

    @pytest.mark.asyncio
    async def test_python_filter_finds_distant_match(self, lance_store, make_vector):
        """A match ranked past the initial over-fetch window is still returned."""
        query = make_vector("q")
        near = [VectorRecord(f"near-{i}", query, {"content": "c", "type": "note", "timestamp": 1, "source": "cli"})
                for i in range(4)]
        far = VectorRecord("far", [-v for v in query], {"content": "c", "type": "note", "timestamp": 1,
                                                          "source": "web"})
        await lance_store.upsert_vectors(near + [far])

        result = await lance_store.query_vectors(query, top_k=1, filter={"source": "web"})

        assert [m.id for m in result.get("matches")] == ["far"]

    @pytest.mark.asyncio
    async def test_python_filter_with_no_match_returns_empty(self, lance_store, make_vector):
        """Widening stops once the table is exhausted."""
        await lance_store.upsert_vectors([_record(n, make_vector, source="cli") for n in ("a", "b")])

        result = await lance_store.query_vectors(make_vector("q"), top_k=1, filter={"source": "web"})

        assert result.success
        assert result.get("matches") == []

    @pytest.mark.asyncio
    async def test_ids_with_quotes_are_escaped(self, lance_store, make_vector):
        """Ids containing quotes survive the SQL filter."""
        await lance_store.upsert_vectors([_record("it's", make_vector)])

        result = await lance_store.fetch_vectors(["it's"])

        assert [r.id for r in result.get("records")] == ["it's"]

    @pytest.mark.asyncio
    async def test_delete(self, lance_store, make_vector):
        """Deleting known and unknown ids removes only the known rows."""
        await lance_store.upsert_vectors([_record(n, make_vector) for n in ("a", "b")])

        result = await lance_store.delete_vectors(["a", "missing"])

        assert result.success
        assert await lance_store.vector_count() == 1

    @pytest.mark.asyncio
    async def test_data_persists_across_instances(self, lance_config, lance_store, make_vector):
        """Rows are visible from a new store on the same directory."""
        from devmemory.store.lance_backend import LanceDBStore

        await lance_store.upsert_vectors([_record("a", make_vector)])

        reopened = LanceDBStore(lance_config)
        await reopened.initialize()

        assert await reopened.vector_count() == 1
        await reopened.dispose()

    @pytest.mark.asyncio
    async def test_memory_level_calls(self, lance_store):
        """Memory-level calls work on top of LanceDB."""
        await lance_store.store_memory("a", "alpha", {"type": "note", "timestamp": 1})
        await lance_store.track_relationship("a", "b", "references", 0.8)

        related = await lance_store.get_related_memories("a")
        found = await lance_store.retrieve_memories("alpha", top_k=1)

        assert related.get("related") == [{"id": "b", "relationship": "references", "strength": 0.8}]
        assert [m.id for m in found.get("matches")] == ["a"]
