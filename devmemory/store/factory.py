"""Vector backend factory.

Selects the backend named by Config.backend:
- "lancedb": durable LanceDB table under Config.vectors_dir
- "memory": ephemeral in-process store (lost on exit)

Environment variable override: DEV_MEMORY_BACKEND.
"""

from devmemory.config import BACKENDS, Config
from devmemory.embeddings import EmbeddingGenerator
from devmemory.log_config import get_logger
from devmemory.store.protocol import BaseVectorStore

log = get_logger("store")


def create_store(
    config: Config | None = None,
    embeddings: EmbeddingGenerator | None = None,
) -> BaseVectorStore:
    """Create the configured vector backend (not yet initialized).

    Args:
        config: Configuration (defaults from environment)
        embeddings: Generator used to embed text queries and vector-less memories

    Returns:
        A backend; call ``await store.initialize()`` before use

    Raises:
        ValueError: If the backend name is unknown
    """
    config = config or Config()

    if config.backend == "lancedb":
        from devmemory.store.lance_backend import LanceDBStore

        log.info(f"Using LanceDB backend at {config.vectors_dir}")
        return LanceDBStore(config, embeddings=embeddings)

    if config.backend == "memory":
        from devmemory.store.memory_backend import InMemoryStore

        log.info("Using in-memory backend (data is not persisted)")
        interval = config.health_check_interval if config.monitor_connection else 0
        return InMemoryStore(
            embeddings=embeddings,
            dimension=config.embedding_dim,
            health_check_interval=interval,
        )

    raise ValueError(f"Unknown backend '{config.backend}', expected one of {BACKENDS}")
