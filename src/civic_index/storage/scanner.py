"""Record store scanning.

Walks a record-store directory, decodes every record file and returns the
complete set of records together with per-file warnings. A malformed or
unreadable file never aborts the scan.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import yaml

from civic_index.config import config
from civic_index.exceptions import ErrorCode, MalformedFrontMatterError, RecordStoreError
from civic_index.models.schema import RecordEntity, ScanWarning
from civic_index.storage.record_codec import RecordCodec

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".md"


@dataclass(frozen=True)
class ScanOptions:
    """Traversal options for a scan.

    Attributes:
        subdirectories: Restrict the walk to these subdirectories of the root
            (relative, ``/``-separated). None scans everything. Purely a
            traversal filter: records are not inspected to apply it.
        max_workers: Decoder thread count. None uses ``config.scan_workers``.
    """

    subdirectories: Optional[Tuple[str, ...]] = None
    max_workers: Optional[int] = None


@dataclass(frozen=True)
class ScannedRecord:
    """A decoded record and where it came from."""

    record: RecordEntity
    path: str  # relative to the scan root, "/"-separated


@dataclass
class ScanResult:
    """Records (ordered by path) plus the files that could not be decoded."""

    records: List[ScannedRecord] = field(default_factory=list)
    warnings: List[ScanWarning] = field(default_factory=list)

    @property
    def entities(self) -> List[RecordEntity]:
        return [scanned.record for scanned in self.records]

    def __len__(self) -> int:
        return len(self.records)


class RecordScanner:
    """Scans a directory tree of record files using a RecordCodec."""

    def __init__(self, codec: Optional[RecordCodec] = None):
        self.codec = codec or RecordCodec()

    def scan(
        self,
        root: Union[str, Path],
        options: Optional[ScanOptions] = None,
    ) -> ScanResult:
        """Scan ``root`` and decode every record file below it.

        Files are decoded in parallel; results are aggregated in path order,
        so the outcome does not depend on thread scheduling.

        Raises:
            RecordStoreError: If ``root`` is missing or cannot be listed. Raised
                before any file is read.
        """
        options = options or ScanOptions()
        root = Path(root)
        if not root.is_dir():
            raise RecordStoreError(
                f"Records directory not found: {root}", root=str(root)
            )

        try:
            # rglob silently skips unreadable directories, so probe the root
            with os.scandir(root):
                pass
            files = self._collect_files(root, options.subdirectories)
        except OSError as e:
            raise RecordStoreError(
                f"Cannot read records directory: {root}",
                root=str(root),
                code=ErrorCode.RECORD_STORE_UNREADABLE,
                original_error=e,
            ) from e

        workers = options.max_workers or config.scan_workers
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            decoded = list(pool.map(lambda p: self._decode_file(root, p), files))

        result = ScanResult()
        seen: dict = {}
        for rel_path, record, reason in decoded:
            if record is None:
                logger.warning(f"Skipping record file {rel_path}: {reason}")
                result.warnings.append(ScanWarning(path=rel_path, reason=reason))
                continue
            if record.id in seen:
                reason = f"Duplicate record id '{record.id}' (already defined in {seen[record.id]})"
                logger.warning(f"Skipping record file {rel_path}: {reason}")
                result.warnings.append(ScanWarning(path=rel_path, reason=reason))
                continue
            seen[record.id] = rel_path
            result.records.append(ScannedRecord(record=record, path=rel_path))

        logger.info(
            f"Scanned {root}: {len(result.records)} records, "
            f"{len(result.warnings)} warnings"
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _collect_files(root: Path, subdirectories: Optional[Sequence[str]]) -> List[Path]:
        """List record files below ``root`` (sorted, hidden entries skipped)."""
        if subdirectories is None:
            starts = [root]
        else:
            starts = []
            for sub in subdirectories:
                start = (root / sub).resolve()
                if root.resolve() not in start.parents and start != root.resolve():
                    logger.warning(f"Ignoring subdirectory outside the record store: {sub}")
                    continue
                if start.is_dir():
                    starts.append(root / sub)
                else:
                    logger.debug(f"Subdirectory {sub} not found under {root}, skipping")

        files = set()
        for start in starts:
            for path in start.rglob(f"*{RECORD_SUFFIX}"):
                rel_parts = path.relative_to(root).parts
                if any(part.startswith(".") for part in rel_parts):
                    continue
                if path.is_file():
                    files.add(path)
        return sorted(files, key=lambda p: p.relative_to(root).as_posix())

    def _decode_file(
        self, root: Path, path: Path
    ) -> Tuple[str, Optional[RecordEntity], Optional[str]]:
        rel_path = path.relative_to(root).as_posix()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return rel_path, None, f"Cannot read file: {e}"
        try:
            return rel_path, self.codec.decode(text, path=rel_path), None
        except MalformedFrontMatterError as e:
            return rel_path, None, e.message
        except yaml.YAMLError as e:
            return rel_path, None, f"Invalid front matter: {e}"
