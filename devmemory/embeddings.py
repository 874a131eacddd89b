"""Embedding generation for Dev Memory.

Provides async embedding generation via LiteLLM. Every vector returned is
validated against the configured dimension and normalized to unit length, so
stored vectors are directly comparable with cosine similarity.

Failures never raise past this module: callers receive an OperationResult
with success=False and the provider's error message.
"""

import math
from typing import Protocol, runtime_checkable

import numpy as np

from devmemory.config import Config
from devmemory.errors import ErrorKind, ValidationError
from devmemory.log_config import get_logger, log_timing
from devmemory.models import OperationResult

log = get_logger("embeddings")

# Max texts per API call (OpenAI accepts more, other LiteLLM providers do not)
DEFAULT_BATCH_SIZE = 100


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Maps text to a fixed-dimension vector."""

    async def embed(self, text: str) -> OperationResult:
        """Embed one text. Payload: embedding (list[float])."""
        ...

    async def embed_batch(self, texts: list[str]) -> OperationResult:
        """Embed many texts. Payload: embeddings (list[list[float]])."""
        ...


def validate_vector(vector: list[float], dimension: int) -> None:
    """Check vector shape and values.

    Raises:
        ValidationError: If the vector is not a list of finite numbers of the
            expected dimension
    """
    if not isinstance(vector, (list, tuple)):
        raise ValidationError("Invalid vector format: not an array")
    if len(vector) != dimension:
        raise ValidationError(
            f"Invalid vector dimension: expected {dimension}, got {len(vector)}"
        )
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError("Invalid vector values: non-numeric values found")


def normalize_vector(vector: list[float]) -> list[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    arr = np.asarray(vector, dtype=np.float64)
    magnitude = np.linalg.norm(arr)
    if magnitude == 0:
        return [float(v) for v in arr]
    return (arr / magnitude).tolist()


class LiteLLMEmbeddings:
    """Embedding generator backed by LiteLLM.

    Example:
        >>> embeddings = LiteLLMEmbeddings(Config())
        >>> result = await embeddings.embed("Python's GIL prevents true multithreading")
        >>> len(result.get("embedding"))
        1536
    """

    def __init__(self, config: Config | None = None, batch_size: int = DEFAULT_BATCH_SIZE):
        self.config = config or Config()
        self.batch_size = batch_size
        self.model = self.config.embedding_model
        self.dimension = self.config.embedding_dim
        # ada-002 rejects the dimensions parameter; text-embedding-3-* and most
        # other providers accept it
        self._send_dimensions = "ada-002" not in self.model
        log.debug(f"LiteLLMEmbeddings initialized: model={self.model}, dim={self.dimension}")

    async def _request(self, texts: list[str]) -> list[list[float]]:
        """Call the provider for one chunk of texts."""
        from litellm import aembedding

        kwargs = {
            "model": self.model,
            "input": texts,
            "timeout": self.config.embedding_timeout,
        }
        if self._send_dimensions:
            kwargs["dimensions"] = self.dimension
        response = await aembedding(**kwargs)
        return [d["embedding"] for d in response.data]

    def _process(self, vector: list[float]) -> list[float]:
        validate_vector(vector, self.dimension)
        return normalize_vector(vector)

    async def embed(self, text: str) -> OperationResult:
        """Generate and normalize the embedding for one text."""
        log.trace(f"Embedding text: {len(text)} chars, model={self.model}")
        try:
            vectors = await self._request([text])
            embedding = self._process(vectors[0])
        except ValidationError as e:
            log.warning(f"Embedding rejected: {e}")
            return OperationResult.fail(ErrorKind.VALIDATION, str(e))
        except Exception as e:
            log.warning(f"Embedding failed: {e}")
            return OperationResult.fail(ErrorKind.BACKEND, f"Failed to generate embedding: {e}")
        return OperationResult.ok(embedding=embedding)

    async def embed_batch(self, texts: list[str]) -> OperationResult:
        """Generate embeddings for many texts, chunked to respect API limits."""
        if not texts:
            return OperationResult.ok(embeddings=[])

        embeddings: list[list[float]] = []
        try:
            with log_timing(f"Embed batch of {len(texts)} texts", log):
                for i in range(0, len(texts), self.batch_size):
                    chunk = texts[i:i + self.batch_size]
                    log.debug(f"Embedding chunk {i // self.batch_size + 1}: {len(chunk)} texts")
                    for vector in await self._request(chunk):
                        embeddings.append(self._process(vector))
        except ValidationError as e:
            log.warning(f"Batch embedding rejected: {e}")
            return OperationResult.fail(
                ErrorKind.VALIDATION, f"Failed to process vector in batch: {e}"
            )
        except Exception as e:
            log.warning(f"Batch embedding failed: {e}")
            return OperationResult.fail(
                ErrorKind.BACKEND, f"Failed to generate batch embeddings: {e}"
            )
        return OperationResult.ok(embeddings=embeddings)
