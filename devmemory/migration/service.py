"""Migration engine: batched entry -> vector record migration.

Each migrate() call transforms and validates entries one by one, upserts
every batch in a single backend call, and snapshots its progress after each
batch. On abort (an entry failure with rollback_on_error, or any batch-level
failure such as a backend outage) it can delete everything it migrated.

Snapshots are kept per service instance for observability only; they are
never used to resume or recover a run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from devmemory.errors import DevMemoryError
from devmemory.log_config import get_logger, log_timing
from devmemory.migration.legacy import LegacyLoadResult, load_legacy_entries
from devmemory.migration.transformer import EntryTransformer
from devmemory.models import (
    ContextEntry,
    MigrationError,
    MigrationOptions,
    MigrationProgress,
    MigrationResult,
    MigrationSnapshot,
    MigrationState,
    VectorRecord,
)

log = get_logger("migration")

ROLLBACK_ERROR_ID = "rollback"


class BatchFailure(Exception):
    """A whole batch could not be written."""


class EntryAbort(Exception):
    """An entry failed and the run was asked to stop on the first error."""


@dataclass
class _MigrationRun:
    """State owned by a single migrate() call."""

    progress: MigrationProgress
    options: MigrationOptions
    migrated_ids: list[str] = field(default_factory=list)


def _entry_data(entry: ContextEntry):
    return entry.to_dict() if isinstance(entry, ContextEntry) else entry


def _entry_id(entry) -> str:
    return getattr(entry, "id", None) or "unknown"


class MigrationService:
    """Moves context entries into a vector backend in batches.

    Args:
        store: Vector backend (VectorStore contract)
        transformer: Entry transformer (needs an embedder for vector-less entries)

    Example:
        >>> service = MigrationService(store, EntryTransformer(embeddings))
        >>> result = await service.migrate(entries, MigrationOptions(batch_size=2))
        >>> result.progress.processed, result.progress.failed
        (5, 0)
    """

    def __init__(self, store, transformer: EntryTransformer):
        self.store = store
        self.transformer = transformer
        self._snapshots: list[MigrationSnapshot] = []

    # ═══════════════════════════════════════════════════════════════════════════
    # SNAPSHOTS
    # ═══════════════════════════════════════════════════════════════════════════

    def _snapshot(self, progress: MigrationProgress, state: MigrationState) -> None:
        self._snapshots.append(
            MigrationSnapshot(timestamp=datetime.now(), progress=progress.copy(), state=state)
        )
        log.trace(
            f"Snapshot {state.value}: processed={progress.processed}, "
            f"failed={progress.failed}/{progress.total}"
        )

    def get_snapshots(self) -> list[MigrationSnapshot]:
        return list(self._snapshots)

    def get_latest_snapshot(self) -> MigrationSnapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    # ═══════════════════════════════════════════════════════════════════════════
    # MIGRATION
    # ═══════════════════════════════════════════════════════════════════════════

    async def migrate(
        self,
        entries: list[ContextEntry],
        options: MigrationOptions | None = None,
    ) -> MigrationResult:
        """Transform, validate and upsert entries batch by batch.

        Returns:
            MigrationResult; success is True only when the run completed
            with no failed entries
        """
        options = options or MigrationOptions()
        entries = list(entries)
        run = _MigrationRun(progress=MigrationProgress(total=len(entries)), options=options)
        self._snapshot(run.progress, MigrationState.IN_PROGRESS)

        batches = [
            entries[i:i + options.batch_size]
            for i in range(0, len(entries), options.batch_size)
        ]
        log.info(
            f"Starting migration: {len(entries)} entries in {len(batches)} batches "
            f"(validate_only={options.validate_only}, rollback_on_error={options.rollback_on_error})"
        )

        try:
            with log_timing(f"Migration of {len(entries)} entries", log, level="info"):
                for number, batch in enumerate(batches, 1):
                    await self._process_batch(run, batch)
                    self._snapshot(run.progress, MigrationState.IN_PROGRESS)
                    log.debug(
                        f"Batch {number}/{len(batches)} done: "
                        f"processed={run.progress.processed}, failed={run.progress.failed}"
                    )
        except (EntryAbort, BatchFailure) as e:
            log.warning(f"Migration aborted: {e}")
            return await self._abort(run)

        run.progress.end_time = datetime.now()
        self._snapshot(run.progress, MigrationState.COMPLETED)
        log.info(
            f"Migration completed: processed={run.progress.processed}, failed={run.progress.failed}"
        )
        return MigrationResult(
            success=run.progress.failed == 0,
            progress=run.progress,
            rollback_required=False,
        )

    async def _process_batch(self, run: _MigrationRun, batch: list[ContextEntry]) -> None:
        """Transform and validate each entry, then upsert the batch's records.

        Raises:
            EntryAbort: On an entry failure when rollback_on_error is set
            BatchFailure: If the batch upsert fails
        """
        progress = run.progress
        records: list[VectorRecord] = []
        accepted: list[ContextEntry] = []

        for entry in batch:
            error = await self._transform_entry(entry, records)
            if error is None:
                progress.processed += 1
                accepted.append(entry)
                continue

            progress.failed += 1
            progress.errors.append(MigrationError(id=_entry_id(entry), error=error, data=_entry_data(entry)))
            log.debug(f"Entry {_entry_id(entry)} failed: {error}")
            if run.options.rollback_on_error:
                raise EntryAbort(f"{_entry_id(entry)}: {error}")

        if run.options.validate_only or not records:
            return

        try:
            result = await self.store.upsert_vectors(records)
            error = None if result.success else result.error
        except Exception as e:
            error = str(e)

        if error is not None:
            # Entries of this batch counted as processed never reached the backend
            progress.processed -= len(accepted)
            progress.failed += len(accepted)
            for entry in accepted:
                progress.errors.append(
                    MigrationError(id=entry.id, error=f"Batch upsert failed: {error}", data=_entry_data(entry))
                )
            raise BatchFailure(error)

        run.migrated_ids.extend(r.id for r in records)

    async def _transform_entry(self, entry: ContextEntry, records: list[VectorRecord]) -> str | None:
        """Append the entry's record to records, or return why it failed."""
        try:
            record = await self.transformer.to_vector(entry)
        except DevMemoryError as e:
            return str(e)
        except Exception as e:
            return f"Transform failed: {e}"

        if not self.transformer.validate(entry, record):
            return "Validation failed"
        records.append(record)
        return None

    async def _abort(self, run: _MigrationRun) -> MigrationResult:
        progress = run.progress
        progress.end_time = datetime.now()
        self._snapshot(progress, MigrationState.FAILED)

        if run.options.rollback_on_error and run.migrated_ids:
            log.info(f"Rolling back {len(run.migrated_ids)} migrated vectors")
            result = await self.store.delete_vectors(run.migrated_ids)
            if result.success:
                self._snapshot(progress, MigrationState.ROLLED_BACK)
            else:
                log.error(f"Rollback failed: {result.error}")
                progress.errors.append(
                    MigrationError(
                        id=ROLLBACK_ERROR_ID,
                        error=f"Rollback failed: {result.error}",
                        data=list(run.migrated_ids),
                    )
                )

        return MigrationResult(
            success=False,
            progress=progress,
            rollback_required=run.options.rollback_on_error,
        )

    async def migrate_legacy(
        self,
        directory: str | Path,
        options: MigrationOptions | None = None,
    ) -> tuple[LegacyLoadResult, MigrationResult]:
        """Load a legacy store directory and migrate its entries."""
        loaded = load_legacy_entries(directory)
        result = await self.migrate(loaded.entries, options)
        return loaded, result
