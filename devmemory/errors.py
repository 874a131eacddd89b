"""Error taxonomy for Dev Memory.

Exceptions are raised inside components and converted into
OperationResult failures at every public boundary (see models.OperationResult).
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kind of failure reported in an OperationResult."""

    VALIDATION = "validation"
    BACKEND = "backend"
    TRANSFORM = "transform"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class DevMemoryError(Exception):
    """Base class for all Dev Memory errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ValidationError(DevMemoryError):
    """Malformed metadata, wrong vector dimension or missing required field.

    Always detected before any remote call.
    """

    kind = ErrorKind.VALIDATION


class BackendError(DevMemoryError):
    """Failure reported by the vector backend or the embedding provider."""

    kind = ErrorKind.BACKEND

    def __init__(self, phase: str, detail: str):
        self.phase = phase
        self.detail = detail
        super().__init__(f"{phase}: {detail}")


class TransformError(DevMemoryError):
    """Entry could not be transformed into a vector record (or back)."""

    kind = ErrorKind.TRANSFORM


class EmbeddingError(TransformError):
    """Embedding generation failed while transforming an entry."""


class MissingMetadataError(TransformError):
    """Vector record has no metadata to rebuild an entry from."""


class NotFoundError(DevMemoryError):
    """Entry id is not known to the context graph."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Context not found: {entry_id}")


__all__ = [
    "ErrorKind",
    "DevMemoryError",
    "ValidationError",
    "BackendError",
    "TransformError",
    "EmbeddingError",
    "MissingMetadataError",
    "NotFoundError",
]
