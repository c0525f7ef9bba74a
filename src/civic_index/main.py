#!/usr/bin/env python
"""Command line entry point for the civic record index."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from civic_index import __version__
from civic_index.config import config
from civic_index.exceptions import CivicIndexError, ConfigurationError
from civic_index.models.db_models import init_db
from civic_index.models.schema import ConflictStrategy
from civic_index.observability import configure_logging
from civic_index.services.indexing_service import IndexingOptions, IndexingService
from civic_index.services.search_service import SearchFilters, SearchService
from civic_index.services.sync_service import SyncService
from civic_index.storage.record_repository import RecordRepository
from civic_index.storage.scanner import RecordScanner

logger = logging.getLogger(__name__)


def _csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="civic-index",
        description="Index, search and synchronize civic record files",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--records-dir",
        help="Root directory of the record files",
        type=str,
        default=os.environ.get("CIVIC_INDEX_RECORDS_DIR"),
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("CIVIC_INDEX_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("CIVIC_INDEX_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--log-file",
        help="Also write rotating log files to the log directory",
        action="store_true",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    index_cmd = sub.add_parser("index", help="Generate the index (and optionally sync)")
    index_cmd.add_argument("--types", help="Comma-separated record types to keep")
    index_cmd.add_argument("--statuses", help="Comma-separated statuses to keep")
    index_cmd.add_argument("--modules", help="Comma-separated modules to keep")
    index_cmd.add_argument("--sync", action="store_true", help="Also sync the database")
    index_cmd.add_argument(
        "--conflict-resolution",
        help=f"One of: {', '.join(ConflictStrategy.values())}",
    )
    index_cmd.add_argument(
        "--no-persist", action="store_true", help="Do not write index files"
    )

    search_cmd = sub.add_parser("search", help="Search the index")
    search_cmd.add_argument("query", nargs="?", default="")
    search_cmd.add_argument("--type")
    search_cmd.add_argument("--status")
    search_cmd.add_argument("--module")
    search_cmd.add_argument("--tags", help="Comma-separated tags (any matches)")

    sync_cmd = sub.add_parser("sync", help="Sync record files into the database")
    sync_cmd.add_argument(
        "--conflict-resolution",
        default=None,
        help=f"One of: {', '.join(ConflictStrategy.values())}",
    )

    sub.add_parser("stats", help="Show statistics of the stored index")
    sub.add_parser("validate", help="Validate stored indexes against the record files")

    return parser


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    try:
        if args.records_dir:
            config.records_dir = Path(args.records_dir)
        if args.database_path:
            config.database_path = Path(args.database_path)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e.errors()[0]['msg']}") from e


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _sync_service() -> SyncService:
    return SyncService(RecordRepository(init_db(timeout=config.db_timeout)))


def run(args: argparse.Namespace) -> int:
    """Execute one parsed command and print its JSON result.

    Returns the process exit code. Scan warnings and write failures are
    reported in the output but do not fail the command, except that a sync
    with write failures exits with 1.
    """
    if args.command == "index":
        sync_service = _sync_service() if args.sync else None
        service = IndexingService(sync_service=sync_service)
        index = service.generate_indexes(
            IndexingOptions(
                types=_csv(args.types),
                statuses=_csv(args.statuses),
                modules=_csv(args.modules),
                sync_database=args.sync,
                conflict_resolution=args.conflict_resolution,
                persist=not args.no_persist,
            )
        )
        result = {
            "metadata": index.to_dict()["metadata"],
            "warnings": [w.model_dump() for w in index.warnings],
        }
        if index.sync is not None:
            result["sync"] = index.sync.to_dict()
        _print(result)
        return 1 if index.sync is not None and index.sync.errors else 0

    if args.command == "search":
        index = IndexingService().get_index()
        results = SearchService().search(
            index,
            query=args.query,
            filters=SearchFilters(
                type=args.type,
                status=args.status,
                module=args.module,
                tags=_csv(args.tags) or [],
            ),
        )
        _print([entry.model_dump(mode="json", by_alias=True, exclude_none=True) for entry in results])
        return 0

    if args.command == "sync":
        strategy = ConflictStrategy.parse(
            args.conflict_resolution or config.default_conflict_resolution
        )
        scan = RecordScanner().scan(config.get_records_dir())
        outcome = _sync_service().sync(
            scan.entities,
            conflict_resolution=strategy,
            paths={scanned.record.id: scanned.path for scanned in scan.records},
        )
        _print({
            "sync": outcome.to_dict(),
            "warnings": [w.model_dump() for w in scan.warnings],
        })
        return 1 if outcome.errors else 0

    if args.command == "stats":
        _print(IndexingService().get_indexing_stats().model_dump(by_alias=True))
        return 0

    if args.command == "validate":
        report = IndexingService().validate_indexes()
        _print(report.model_dump(by_alias=True))
        return 0 if report.valid else 1

    raise ConfigurationError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the civic-index command line tool."""
    args = build_parser().parse_args(argv)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    if args.log_file:
        configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    else:
        logging.basicConfig(level=log_level, stream=sys.stderr)

    try:
        update_config(args)
        return run(args)
    except CivicIndexError as e:
        logger.error(str(e))
        print(json.dumps({"error": e.to_dict()}, indent=2), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
