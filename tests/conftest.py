"""Common test fixtures for the civic record index."""

import datetime
from datetime import timezone
from pathlib import Path

import pytest

from civic_index.config import config
from civic_index.exceptions import ErrorCode, StorageError
from civic_index.models.db_models import init_db
from civic_index.models.schema import Author, RecordEntity, RecordMetadata
from civic_index.storage.record_codec import RecordCodec
from civic_index.storage.record_repository import RecordRepository

T1 = datetime.datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
T2 = datetime.datetime(2024, 2, 1, 12, 30, tzinfo=timezone.utc)
T3 = datetime.datetime(2024, 3, 15, 8, 45, tzinfo=timezone.utc)


def make_record(
    record_id: str = "bylaw-2024-001",
    title: str = "Noise Restriction Bylaw",
    record_type: str = "bylaw",
    status: str = "published",
    content: str = "# Noise Restriction Bylaw\n\nNo amplified sound after 22:00.",
    tags=("noise", "nighttime", "curfew"),
    module=None,
    created_at: datetime.datetime = T1,
    updated_at: datetime.datetime = T2,
    authors=None,
    **extra,
) -> RecordEntity:
    """Build a valid RecordEntity with sensible defaults."""
    if authors is None:
        authors = [Author(name="Ada Clerk", username="aclerk", role="clerk")]
    return RecordEntity(
        id=record_id,
        title=title,
        type=record_type,
        status=status,
        content=content,
        author=authors[0].username if authors and authors[0].username else "unknown",
        authors=authors,
        created_at=created_at,
        updated_at=updated_at,
        metadata=RecordMetadata(tags=list(tags), module=module, **extra),
    )


def write_record(root: Path, rel_path: str, record: RecordEntity) -> Path:
    """Encode ``record`` and write it under ``root``."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(RecordCodec().encode(record), encoding="utf-8")
    return path


def sample_records():
    """The three records of the sample store, keyed by relative path."""
    return {
        "legal-register/bylaw-noise-restriction.md": make_record(
            module="legal-register", slug="noise-restriction"
        ),
        "policies/policy-data-retention.md": make_record(
            record_id="policy-2024-002",
            title="Data Retention Policy",
            record_type="policy",
            status="draft",
            content="Records are retained for seven years.",
            tags=("privacy", "records"),
            authors=[Author(name="Grace Hopper", role="council")],
        ),
        "resolutions/resolution-budget-2024.md": make_record(
            record_id="resolution-2024-003",
            title="Budget Adoption Resolution",
            record_type="resolution",
            status="pending_review",
            content="Council adopts the 2024 operating budget.",
            tags=("budget", "finance"),
            module="finance",
            authors=[],
        ),
    }


@pytest.fixture
def records_dir(tmp_path):
    """A record store seeded with one bylaw, one policy and one resolution."""
    root = tmp_path / "records"
    root.mkdir()
    for rel_path, record in sample_records().items():
        write_record(root, rel_path, record)
    return root


@pytest.fixture
def test_config(tmp_path, records_dir, monkeypatch):
    """Point the global config at temporary paths (auto-restored)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "records_dir", records_dir)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "civic.db")
    monkeypatch.setattr(config, "default_conflict_resolution", "file-wins")
    monkeypatch.setattr(config, "write_module_indexes", True)
    yield config


@pytest.fixture
def engine(tmp_path):
    """A file-backed SQLite engine with the records table created."""
    db_path = tmp_path / "db" / "civic.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = init_db(f"sqlite:///{db_path}", timeout=5)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return RecordRepository(engine)


class FailingRecordRepository(RecordRepository):
    """Repository whose writes fail for selected record ids."""

    def __init__(self, engine, failing_ids):
        super().__init__(engine)
        self.failing_ids = set(failing_ids)

    def _maybe_fail(self, record, operation):
        if record.id in self.failing_ids:
            raise StorageError(
                f"Simulated {operation} failure for {record.id}",
                operation=operation,
                record_id=record.id,
                code=ErrorCode.STORAGE_WRITE_FAILED,
            )

    def create(self, record, path=None):
        self._maybe_fail(record, "create")
        super().create(record, path=path)

    def update(self, record, path=None):
        self._maybe_fail(record, "update")
        super().update(record, path=path)


@pytest.fixture
def failing_repository_factory(engine):
    """Build a repository failing writes of the given record ids."""
    def factory(*failing_ids):
        return FailingRecordRepository(engine, failing_ids)
    return factory
