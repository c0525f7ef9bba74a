"""Index generation over the record store.

The IndexingService ties the pipeline together: scan the record store, project
records onto index entries, filter, persist the artifact(s) and, on request,
reconcile the full record set against the database.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from civic_index.config import config
from civic_index.exceptions import CorruptIndexError
from civic_index.models.registry import RecordRegistries
from civic_index.models.schema import (
    ConflictStrategy,
    Index,
    IndexEntry,
    format_timestamp,
)
from civic_index.observability import traced
from civic_index.services.sync_service import SyncService
from civic_index.storage.index_store import IndexCache, IndexStore
from civic_index.storage.scanner import RecordScanner, ScanOptions

logger = logging.getLogger(__name__)


class IndexingOptions(BaseModel):
    """Options of one ``generate_indexes`` call.

    Filters are OR-ed within a dimension and AND-ed across dimensions; an
    omitted or empty dimension matches every record.
    """

    types: Optional[List[str]] = None
    statuses: Optional[List[str]] = None
    modules: Optional[List[str]] = None
    sync_database: bool = False
    conflict_resolution: Optional[str] = None
    persist: bool = True


class IndexingStats(BaseModel):
    """Summary of the stored global index."""

    total_records: int = Field(default=0, alias="totalRecords")
    modules: List[str] = Field(default_factory=list)
    types: List[str] = Field(default_factory=list)
    statuses: List[str] = Field(default_factory=list)
    last_generated: Optional[str] = Field(default=None, alias="lastGenerated")
    index_files: List[str] = Field(default_factory=list, alias="indexFiles")

    model_config = {"populate_by_name": True}


class IndexValidationStats(BaseModel):
    total_indexes: int = Field(default=0, alias="totalIndexes")
    total_records: int = Field(default=0, alias="totalRecords")
    orphaned_files: int = Field(default=0, alias="orphanedFiles")
    invalid_entries: int = Field(default=0, alias="invalidEntries")

    model_config = {"populate_by_name": True}


class IndexValidationReport(BaseModel):
    """Result of checking the stored index artifacts against the record store."""

    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    stats: IndexValidationStats = Field(default_factory=IndexValidationStats)


def _matches(value: Optional[str], allowed: Optional[Sequence[str]]) -> bool:
    return not allowed or value in allowed


class IndexingService:
    """Builds, persists and caches the record index."""

    def __init__(
        self,
        records_dir: Optional[Union[str, Path]] = None,
        scanner: Optional[RecordScanner] = None,
        store: Optional[IndexStore] = None,
        sync_service: Optional[SyncService] = None,
        registries: Optional[RecordRegistries] = None,
        cache: Optional[IndexCache] = None,
    ):
        """Initialize the indexing service.

        Args:
            records_dir: Root of the record store. Defaults to the configured one.
            scanner: Record scanner (default: a new RecordScanner).
            store: Index artifact store (default: a new IndexStore).
            sync_service: Needed only for ``sync_database``; created lazily.
            registries: Recognized types/statuses used by ``validate_indexes``.
            cache: The cache this service owns (default: a new IndexCache).
        """
        self.records_dir = Path(records_dir) if records_dir else config.get_records_dir()
        self.scanner = scanner or RecordScanner()
        self.store = store or IndexStore()
        self._sync_service = sync_service
        self.registries = registries or RecordRegistries()
        self.cache = cache or IndexCache()

    @property
    def index_path(self) -> Path:
        return self.records_dir / config.index_filename

    @property
    def sync_service(self) -> SyncService:
        if self._sync_service is None:
            self._sync_service = SyncService()
        return self._sync_service

    @traced("generate_indexes")
    def generate_indexes(self, options: Optional[IndexingOptions] = None) -> Index:
        """Scan the record store and build a fresh Index.

        Filtering only narrows the returned (and persisted) index; a requested
        sync always covers the full scan.

        Raises:
            InvalidConflictStrategyError: If ``conflict_resolution`` is unknown.
                Raised before the store is scanned.
            RecordStoreError: If the records directory cannot be scanned.
        """
        options = options or IndexingOptions()
        strategy = ConflictStrategy.parse(
            options.conflict_resolution or config.default_conflict_resolution
        )

        scan = self.scanner.scan(self.records_dir, ScanOptions())
        all_entries = [
            IndexEntry.from_record(scanned.record, scanned.path) for scanned in scan.records
        ]
        entries = [
            entry
            for entry in all_entries
            if _matches(entry.type, options.types)
            and _matches(entry.status, options.statuses)
            and _matches(entry.module, options.modules)
        ]
        index = Index.build(entries, warnings=scan.warnings)

        if options.persist:
            self.store.save(index, self.index_path)
            if config.write_module_indexes:
                self._write_module_indexes(all_entries)

        if options.sync_database:
            paths = {scanned.record.id: scanned.path for scanned in scan.records}
            index.sync = self.sync_service.sync(
                scan.entities, conflict_resolution=strategy, paths=paths
            )

        self.cache.put(index)
        logger.info(
            f"Generated index: {len(entries)} of {len(all_entries)} records, "
            f"{len(scan.warnings)} warnings"
        )
        return index

    def invalidate(self) -> None:
        """Drop the cached index. Call after any sync or record file change."""
        self.cache.invalidate()

    def get_index(self) -> Index:
        """Return the cached index, else the stored artifact, else a fresh one.

        A corrupt artifact is not fatal here: the index is regenerated.
        """
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            loaded = self.load_index()
        except CorruptIndexError as e:
            logger.warning(f"Stored index unusable, regenerating: {e}")
            loaded = None
        if loaded is not None:
            self.cache.put(loaded)
            return loaded
        return self.generate_indexes(IndexingOptions(persist=True))

    def load_index(self, path: Optional[Union[str, Path]] = None) -> Optional[Index]:
        """Load a stored index (the global one by default); None if absent."""
        return self.store.load(Path(path) if path else self.index_path)

    def get_indexing_stats(self) -> IndexingStats:
        """Summarize the stored global index and list every index file."""
        index = self.load_index()
        if index is None:
            return IndexingStats()
        return IndexingStats(
            total_records=index.metadata.total_records,
            modules=list(index.metadata.modules),
            types=list(index.metadata.types),
            statuses=list(index.metadata.statuses),
            last_generated=format_timestamp(index.metadata.generated_at),
            index_files=self._find_index_files(),
        )

    def validate_indexes(self) -> IndexValidationReport:
        """Check the stored global and module indexes against the record store.

        Entries pointing at missing files are errors. Entries whose type or
        status is not recognized by the registries are warnings. A missing
        global index is a warning; a corrupt one is an error.
        """
        report = IndexValidationReport()
        if not self.records_dir.is_dir():
            report.valid = False
            report.errors.append("Records directory not found")
            return report

        for rel_path in self._find_index_files():
            is_global = rel_path == config.index_filename
            try:
                index = self.store.load(self.records_dir / rel_path)
            except CorruptIndexError as e:
                report.errors.append(f"Corrupt index {rel_path}: {e.message}")
                continue
            if index is None:
                continue

            report.stats.total_indexes += 1
            report.stats.total_records += len(index.entries)
            label = "Index" if is_global else "Module index"
            for entry in index.entries:
                if not (self.records_dir / entry.path).is_file():
                    report.errors.append(
                        f"{label} entry references non-existent file: {entry.path}"
                    )
                    report.stats.orphaned_files += 1
                if not is_global:
                    continue
                problems = []
                if not self.registries.types.is_recognized(entry.type):
                    problems.append(f"unrecognized type '{entry.type}'")
                if not self.registries.statuses.is_recognized(entry.status):
                    problems.append(f"unrecognized status '{entry.status}'")
                if problems:
                    report.warnings.append(f"Index entry {entry.path}: {', '.join(problems)}")
                    report.stats.invalid_entries += 1

        if not self.index_path.is_file():
            report.warnings.append("Global index not found")

        report.valid = not report.errors
        return report

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _write_module_indexes(self, entries: List[IndexEntry]) -> None:
        """Write ``<module>/index.yml`` for modules that have a directory."""
        groups: Dict[str, List[IndexEntry]] = {}
        for entry in entries:
            if entry.module:
                groups.setdefault(entry.module, []).append(entry)

        for module, module_entries in sorted(groups.items()):
            if "/" in module or "\\" in module or module.startswith("."):
                logger.debug(f"Module name '{module}' is not a directory name, no module index")
                continue
            module_dir = self.records_dir / module
            if not module_dir.is_dir():
                continue
            self.store.save(Index.build(module_entries), module_dir / config.index_filename)

    def _find_index_files(self) -> List[str]:
        """Relative paths of every index artifact under the records directory."""
        if not self.records_dir.is_dir():
            return []
        return sorted(
            path.relative_to(self.records_dir).as_posix()
            for path in self.records_dir.rglob(config.index_filename)
            if path.is_file()
        )
