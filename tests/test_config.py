"""Config tests for Dev Memory.

Tests critical configuration pathways:
- Defaults are sensible
- Environment variable override mechanism works
- Invalid values are rejected
"""

import os
from unittest.mock import patch

import pytest


class TestConfigDefaults:
    """Test that config has expected default values."""

    def test_backend_default(self, tmp_path):
        """Backend should default to lancedb."""
        from devmemory.config import Config

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("DEV_MEMORY_BACKEND", None)
            config = Config(data_dir=tmp_path)
        assert config.backend == "lancedb"

    def test_embedding_dim(self, tmp_path):
        """Embedding dimension is fixed at 1536."""
        from devmemory.config import Config

        assert Config(data_dir=tmp_path).embedding_dim == 1536

    def test_top_k_and_batch_defaults(self, tmp_path):
        """default_top_k should be 10 and migration batch size 50."""
        from devmemory.config import Config

        config = Config(data_dir=tmp_path)
        assert config.default_top_k == 10
        assert config.migration_batch_size == 50

    def test_vectors_dir_under_data_dir(self, tmp_path):
        """vectors_dir should live under data_dir."""
        from devmemory.config import Config

        assert Config(data_dir=tmp_path).vectors_dir == tmp_path / "vectors"

    def test_data_dir_created(self, tmp_path):
        """data_dir should be created on init."""
        from devmemory.config import Config

        Config(data_dir=str(tmp_path / "nested" / "dir"))
        assert (tmp_path / "nested" / "dir").is_dir()


class TestConfigEnvironmentOverrides:
    """Test environment variable overrides for config."""

    def test_backend_env_override(self, tmp_path):
        """Backend should be overridable via env var (case-insensitive)."""
        from devmemory.config import Config

        with patch.dict(os.environ, {"DEV_MEMORY_BACKEND": "MEMORY"}):
            config = Config(data_dir=tmp_path)
        assert config.backend == "memory"

    def test_top_k_env_override(self, tmp_path):
        """default_top_k should be overridable via env var."""
        from devmemory.config import Config

        with patch.dict(os.environ, {"DEV_MEMORY_DEFAULT_TOP_K": "25"}):
            config = Config(data_dir=tmp_path)
        assert config.default_top_k == 25

    def test_monitor_connection_env_override(self, tmp_path):
        """Connection monitoring can be switched off via env var."""
        from devmemory.config import Config

        with patch.dict(os.environ, {"DEV_MEMORY_MONITOR_CONNECTION": "false"}):
            config = Config(data_dir=tmp_path)
        assert config.monitor_connection is False

    def test_data_dir_env_override(self, tmp_path):
        """data_dir should be overridable via env var."""
        from devmemory.config import Config

        with patch.dict(os.environ, {"DEV_MEMORY_DATA_DIR": str(tmp_path / "env")}):
            config = Config()
        assert config.data_dir == tmp_path / "env"


class TestConfigValidation:
    """Test rejection of invalid values."""

    def test_unknown_backend(self, tmp_path):
        """Unknown backend names are rejected."""
        from devmemory.config import Config

        with pytest.raises(ValueError, match="Unknown backend"):
            Config(data_dir=tmp_path, backend="pinecone")

    @pytest.mark.parametrize("field", ["default_top_k", "migration_batch_size"])
    def test_non_positive_sizes(self, tmp_path, field):
        """Sizes below one are rejected."""
        from devmemory.config import Config

        with pytest.raises(ValueError):
            Config(data_dir=tmp_path, **{field: 0})


class TestStoreFactory:
    """Test backend selection from config."""

    def test_memory_backend(self, tmp_path):
        """memory selects InMemoryStore; monitoring off means no health checks."""
        from devmemory.config import Config
        from devmemory.store import InMemoryStore, create_store

        store = create_store(Config(data_dir=tmp_path, backend="memory", monitor_connection=False))

        assert isinstance(store, InMemoryStore)
        assert store.health_check_interval == 0

    def test_lancedb_backend(self, tmp_path):
        """lancedb selects LanceDBStore with the configured interval."""
        from devmemory.config import Config
        from devmemory.store import create_store
        from devmemory.store.lance_backend import LanceDBStore

        store = create_store(Config(data_dir=tmp_path, backend="lancedb", monitor_connection=True, health_check_interval=5))

        assert isinstance(store, LanceDBStore)
        assert store.health_check_interval == 5

    def test_stores_satisfy_protocols(self, tmp_path):
        """Created stores satisfy both backend protocols."""
        from devmemory.config import Config
        from devmemory.store import MemoryStore, VectorStore, create_store

        store = create_store(Config(data_dir=tmp_path, backend="memory"))

        assert isinstance(store, VectorStore)
        assert isinstance(store, MemoryStore)
