"""Migration of context entries into the vector backend."""

from devmemory.migration.legacy import LegacyLoadResult, load_legacy_entries
from devmemory.migration.service import MigrationService
from devmemory.migration.transformer import EntryTransformer

__all__ = [
    "EntryTransformer",
    "LegacyLoadResult",
    "MigrationService",
    "load_legacy_entries",
]
