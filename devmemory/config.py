"""Configuration for Dev Memory.

Simple dataclass-based configuration with sensible defaults.
Override via environment variables with DEV_MEMORY_ prefix.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from devmemory.log_config import get_logger

log = get_logger("config")

_pkg_dir = Path(__file__).parent.parent
_env_loaded = load_dotenv(_pkg_dir / ".env") or load_dotenv(Path.cwd() / ".env")
log.debug(f"Loaded .env file: {_env_loaded}")

# OpenAI text-embedding-3-small / ada-002 dimension
EMBEDDING_DIM = 1536

BACKENDS = ("lancedb", "memory")


def _get_env(key: str, default: str) -> str:
    """Get environment variable with DEV_MEMORY_ prefix."""
    return os.getenv(f"DEV_MEMORY_{key}", default)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get boolean environment variable."""
    val = os.getenv(f"DEV_MEMORY_{key}")
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")


@dataclass
class Config:
    """Dev Memory configuration.

    Attributes:
        data_dir: Directory for storing databases (default: ~/.dev_memory)
        backend: Vector backend, "lancedb" (durable) or "memory" (ephemeral)
        embedding_model: LiteLLM model for embeddings (default: text-embedding-3-small)
        embedding_timeout: Seconds before an embedding request is abandoned by LiteLLM
        default_top_k: Number of hits requested from the backend per query
        migration_batch_size: Default batch size for legacy migration
        monitor_connection: Start periodic backend liveness probing on initialize
        health_check_interval: Seconds between backend liveness checks
        legacy_dir: Location of the legacy flat-file memory store
    """

    data_dir: Path = field(
        default_factory=lambda: Path(_get_env("DATA_DIR", str(Path.home() / ".dev_memory")))
    )
    backend: str = field(
        default_factory=lambda: _get_env("BACKEND", "lancedb").lower()
    )
    embedding_model: str = field(
        default_factory=lambda: _get_env("EMBEDDING_MODEL", "text-embedding-3-small")
    )
    embedding_timeout: float = field(
        default_factory=lambda: float(_get_env("EMBEDDING_TIMEOUT", "60"))
    )
    monitor_connection: bool = field(
        default_factory=lambda: _get_env_bool("MONITOR_CONNECTION", True)
    )
    default_top_k: int = field(
        default_factory=lambda: int(_get_env("DEFAULT_TOP_K", "10"))
    )
    migration_batch_size: int = field(
        default_factory=lambda: int(_get_env("MIGRATION_BATCH_SIZE", "50"))
    )
    health_check_interval: float = field(
        default_factory=lambda: float(_get_env("HEALTH_CHECK_INTERVAL", "30"))
    )
    legacy_dir: Path = field(
        default_factory=lambda: Path(_get_env("LEGACY_DIR", str(Path.cwd() / ".dev-memory")))
    )

    @property
    def embedding_dim(self) -> int:
        """Embedding dimension shared by every backend and the transformer."""
        return EMBEDDING_DIM

    def __post_init__(self):
        """Ensure paths are Path objects, validate values, create data directory."""
        log.trace("Initializing Config")

        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if isinstance(self.legacy_dir, str):
            self.legacy_dir = Path(self.legacy_dir)

        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{self.backend}', expected one of {BACKENDS}")
        if self.migration_batch_size < 1:
            raise ValueError("migration_batch_size must be >= 1")
        if self.default_top_k < 1:
            raise ValueError("default_top_k must be >= 1")

        self.data_dir.mkdir(parents=True, exist_ok=True)

        log.debug(f"data_dir={self.data_dir}")
        log.debug(f"backend={self.backend}")
        log.debug(f"embedding_model={self.embedding_model}, timeout={self.embedding_timeout}")
        log.debug(f"default_top_k={self.default_top_k}, migration_batch_size={self.migration_batch_size}")
        log.debug(f"legacy_dir={self.legacy_dir}")
        log.info(f"Config initialized: data_dir={self.data_dir}, backend={self.backend}")

    @property
    def vectors_dir(self) -> Path:
        """Directory for the LanceDB vector database."""
        return self.data_dir / "vectors"
