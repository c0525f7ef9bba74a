"""Reconciliation of record files against the database projection.

Files are the source of truth. A sync walks the decoded records, creates
rows that are missing, leaves identical rows alone and settles every other
difference with one of the conflict-resolution strategies.
"""
import logging
from enum import Enum
from typing import Dict, Iterable, Optional, Union

from civic_index.exceptions import StorageError
from civic_index.models.schema import (
    ConflictPair,
    ConflictStrategy,
    RecordEntity,
    RecordWriteFailure,
    SyncOutcome,
)
from civic_index.observability import traced
from civic_index.storage.record_repository import RecordRepository

logger = logging.getLogger(__name__)


class Resolution(str, Enum):
    """Which side a conflict was resolved in favor of."""

    FILE = "file"
    DATABASE = "database"
    MANUAL = "manual"


def resolve_conflict(
    strategy: ConflictStrategy,
    file_record: RecordEntity,
    db_record: RecordEntity,
) -> Resolution:
    """Decide the winner of a file/database conflict.

    With ``timestamp`` the file wins only when its ``updated_at`` is strictly
    newer; equal timestamps keep the database row.
    """
    if strategy is ConflictStrategy.FILE_WINS:
        return Resolution.FILE
    if strategy is ConflictStrategy.DATABASE_WINS:
        return Resolution.DATABASE
    if strategy is ConflictStrategy.TIMESTAMP:
        if file_record.updated_at > db_record.updated_at:
            return Resolution.FILE
        return Resolution.DATABASE
    return Resolution.MANUAL


class SyncService:
    """Synchronizes decoded records into the database projection."""

    def __init__(self, repository: Optional[RecordRepository] = None):
        self.repository = repository or RecordRepository()

    @traced("sync")
    def sync(
        self,
        records: Iterable[RecordEntity],
        conflict_resolution: Union[str, ConflictStrategy] = ConflictStrategy.FILE_WINS,
        paths: Optional[Dict[str, str]] = None,
    ) -> SyncOutcome:
        """Reconcile ``records`` against the database.

        Args:
            records: The full set of decoded records.
            conflict_resolution: Strategy name; validated before any read or
                write.
            paths: Optional mapping of record id to its relative file path,
                stored alongside the row.

        Returns:
            The SyncOutcome of the run. Per-record database failures are
            listed in ``errors``; the remaining records are still processed.

        Raises:
            InvalidConflictStrategyError: If the strategy is unknown.
        """
        strategy = ConflictStrategy.parse(conflict_resolution)
        records = list(records)
        paths = paths or {}
        outcome = SyncOutcome(conflict_resolution=strategy, total_records=len(records))

        for record in records:
            try:
                self._sync_one(record, strategy, paths.get(record.id), outcome)
            except StorageError as e:
                logger.error(f"Sync of record {record.id} failed: {e.message}")
                outcome.errors.append(
                    RecordWriteFailure(record_id=record.id, type=record.type, reason=str(e))
                )

        logger.info(
            f"Sync ({strategy.value}) of {outcome.total_records} records: "
            f"{outcome.created} created, {outcome.updated} updated, "
            f"{outcome.conflicts} conflicts, {outcome.unchanged} unchanged, "
            f"{len(outcome.errors)} failed"
        )
        return outcome

    def _sync_one(
        self,
        record: RecordEntity,
        strategy: ConflictStrategy,
        path: Optional[str],
        outcome: SyncOutcome,
    ) -> None:
        existing = self.repository.get(record.id)

        if existing is None:
            self.repository.create(record, path=path)
            outcome.created += 1
            outcome.counts_for(record.type).created += 1
            return

        if existing.comparable() == record.comparable():
            outcome.unchanged += 1
            return

        outcome.conflicts += 1
        resolution = resolve_conflict(strategy, record, existing)
        logger.debug(f"Conflict on {record.id} resolved as {resolution.value} ({strategy.value})")

        if resolution is Resolution.FILE:
            self.repository.update(record, path=path)
            outcome.updated += 1
            outcome.counts_for(record.type).updated += 1
        elif resolution is Resolution.MANUAL:
            outcome.pending.append(
                ConflictPair(
                    record_id=record.id,
                    type=record.type,
                    title=record.title,
                    file_updated_at=record.updated_at,
                    database_updated_at=existing.updated_at,
                )
            )
