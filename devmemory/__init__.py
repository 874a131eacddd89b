"""Dev Memory - persistent development context for MCP clients.

Stores short development notes alongside vector embeddings with:
- LanceDB (or an in-memory store) for vectors and metadata
- An in-process context graph for typed relationships
- Batched migration of the legacy .dev-memory JSON store
- FastMCP for the MCP server
"""

__version__ = "0.1.0"

from devmemory.config import Config
from devmemory.context import ContextManager
from devmemory.graph import ContextGraph
from devmemory.migration import EntryTransformer, MigrationService
from devmemory.models import ContextEntry, ContextMetadata, OperationResult, RelationshipRef

__all__ = [
    "Config",
    "ContextEntry",
    "ContextGraph",
    "ContextManager",
    "ContextMetadata",
    "EntryTransformer",
    "MigrationService",
    "OperationResult",
    "RelationshipRef",
]
