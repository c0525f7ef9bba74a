"""Configuration module for the civic record index."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from civic_index import __version__
from civic_index.models.schema import ConflictStrategy

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, shared by every checkout
_USER_ENV = Path.home() / ".civic-index" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class CivicIndexConfig(BaseModel):
    """Configuration for the record indexing and synchronization engine."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("CIVIC_INDEX_BASE_DIR", "."))
    )
    # Root of the record store (one Markdown file per record)
    records_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("CIVIC_INDEX_RECORDS_DIR", "data/records"))
    )
    # SQLite database holding the record projection
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CIVIC_INDEX_DATABASE_PATH", "data/db/civic.db")
        )
    )
    # Name of the index artifact written at the root of the record store
    # (and of every per-module index)
    index_filename: str = Field(
        default_factory=lambda: os.getenv("CIVIC_INDEX_INDEX_FILENAME", "index.yml")
    )
    # Thread pool size used to decode record files during a scan
    scan_workers: int = Field(
        default_factory=lambda: int(os.getenv("CIVIC_INDEX_SCAN_WORKERS", "4"))
    )
    # SQLite busy timeout in seconds; bounds every database wait
    db_timeout: float = Field(
        default_factory=lambda: float(os.getenv("CIVIC_INDEX_DB_TIMEOUT", "30"))
    )
    # Strategy used when generate_indexes(sync_database=True) names none
    default_conflict_resolution: str = Field(
        default_factory=lambda: os.getenv(
            "CIVIC_INDEX_CONFLICT_RESOLUTION", ConflictStrategy.FILE_WINS.value
        )
    )
    # Write <records_dir>/<module>/index.yml next to the global index
    write_module_indexes: bool = Field(
        default_factory=lambda: _env_flag("CIVIC_INDEX_MODULE_INDEXES", "true")
    )
    # Persistent log directory (None = ~/.civic-index/logs)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("CIVIC_INDEX_LOG_DIR"))
            if os.getenv("CIVIC_INDEX_LOG_DIR")
            else None
        )
    )
    version: str = Field(default=__version__)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_settings(self) -> "CivicIndexConfig":
        """Reject settings that would make a scan or a sync unusable."""
        if self.scan_workers < 1:
            raise ValueError("scan_workers must be >= 1")
        if self.db_timeout <= 0:
            raise ValueError("db_timeout must be > 0")
        if not self.index_filename.strip() or "/" in self.index_filename:
            raise ValueError("index_filename must be a plain file name")
        if self.default_conflict_resolution not in ConflictStrategy.values():
            raise ValueError(
                f"default_conflict_resolution must be one of "
                f"{', '.join(ConflictStrategy.values())}"
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_records_dir(self) -> Path:
        """Get the absolute path of the record store root."""
        return self.get_absolute_path(self.records_dir)

    def get_index_path(self) -> Path:
        """Get the absolute path of the global index artifact."""
        return self.get_records_dir() / self.index_filename

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = CivicIndexConfig()
