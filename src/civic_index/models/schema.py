"""Data models for the civic record index."""

import datetime
import re
from datetime import timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from civic_index.exceptions import InvalidConflictStrategyError

# Record IDs end up in file names, so they must be filesystem-safe
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-.]+$")


def validate_record_id(value: str) -> str:
    """Validate that a record ID is safe to use as a filesystem path component.

    Raises:
        ValueError: If the value is empty, contains path separators or
            parent-directory references, or uses characters outside
            alphanumerics, underscores, hyphens and dots.
    """
    if not value or not value.strip():
        raise ValueError("Record ID cannot be empty")
    if ".." in value:
        raise ValueError("Record ID cannot contain '..' (path traversal)")
    if "/" in value or "\\" in value:
        raise ValueError("Record ID cannot contain path separators")
    if not SAFE_ID_PATTERN.match(value):
        raise ValueError(
            "Record ID contains invalid characters. "
            "Only alphanumeric characters, underscores, hyphens and dots are allowed."
        )
    return value


def validate_open_value(value: str, field_name: str) -> str:
    """Validate an open, registry-extensible value such as a type or status.

    The set of recognized values lives in a registry elsewhere; here we only
    require a non-blank single-line string.
    """
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} cannot be empty")
    value = str(value).strip()
    if "\n" in value or "\r" in value:
        raise ValueError(f"{field_name} must be a single line")
    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands datetimes back without tzinfo; they were stored as UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_utc(dt_value: datetime.datetime) -> datetime.datetime:
    """Normalize a datetime to an aware UTC datetime."""
    return ensure_timezone_aware(dt_value).astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime.datetime, datetime.date]) -> datetime.datetime:
    """Parse an ISO-8601 timestamp from front matter into an aware UTC datetime.

    YAML loaders turn unquoted timestamps into ``datetime``/``date`` objects,
    quoted ones stay strings; both forms are accepted.

    Raises:
        ValueError: If the value is not a recognizable timestamp.
    """
    if isinstance(value, datetime.datetime):
        return to_utc(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.datetime.fromisoformat(text))
    raise ValueError(f"Invalid timestamp: {value!r}")


def format_timestamp(value: datetime.datetime) -> str:
    """Render a datetime as ISO-8601 UTC with a ``Z`` suffix."""
    return to_utc(value).isoformat().replace("+00:00", "Z")


class ConflictStrategy(str, Enum):
    """Policies deciding which side wins when file and database disagree."""

    FILE_WINS = "file-wins"  # File data overwrites the database row
    DATABASE_WINS = "database-wins"  # Database row is kept, file data discarded
    TIMESTAMP = "timestamp"  # Strictly newer updated_at wins, tie keeps database
    MANUAL = "manual"  # Nothing is written, the pair is surfaced for review

    @classmethod
    def values(cls) -> List[str]:
        """All accepted strategy names, in declaration order."""
        return [member.value for member in cls]

    @classmethod
    def parse(cls, value: Union[str, "ConflictStrategy"]) -> "ConflictStrategy":
        """Parse a strategy name.

        Raises:
            InvalidConflictStrategyError: If the value is not one of the four
                accepted names.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidConflictStrategyError(value, allowed=cls.values()) from None


class Author(BaseModel):
    """A person credited on a record; list order is attribution order."""

    name: str = Field(..., description="Display name")
    username: Optional[str] = Field(default=None, description="Account identifier")
    role: Optional[str] = Field(default=None, description="Role, e.g. clerk or council")
    email: Optional[str] = Field(default=None, description="Contact address")

    model_config = {"extra": "allow"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the author name is not empty."""
        if not v or not v.strip():
            raise ValueError("Author name cannot be empty")
        return v


class RecordMetadata(BaseModel):
    """Classification metadata of a record.

    ``tags``, ``module``, ``slug`` and ``version`` are the well-known keys;
    any other front-matter key is kept as an extra attribute so that it
    survives a decode/encode round trip.
    """

    tags: List[str] = Field(default_factory=list, description="Tags, display order preserved")
    module: Optional[str] = Field(default=None, description="Grouping namespace")
    slug: Optional[str] = Field(default=None, description="URL-safe identifier")
    version: Optional[str] = Field(default=None, description="Document version")

    model_config = {"extra": "allow", "validate_assignment": True}

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> List[str]:
        """Accept a list or a comma-separated string; drop blanks and duplicates."""
        if v is None:
            return []
        if isinstance(v, str):
            raw = v.split(",")
        elif isinstance(v, (list, tuple, set)):
            raw = list(v)
        else:
            raise ValueError("tags must be a list of strings")
        tags: List[str] = []
        for item in raw:
            name = str(item).strip()
            if name and name not in tags:
                tags.append(name)
        return tags

    @field_validator("version", mode="before")
    @classmethod
    def validate_version(cls, v: Any) -> Optional[str]:
        """YAML reads ``version: 1.0`` as a float; keep it as text."""
        if v is None:
            return None
        return str(v)

    @field_validator("module", "slug")
    @classmethod
    def validate_optional_text(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank values as absent."""
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    @property
    def extra(self) -> Dict[str, Any]:
        """Extra (non well-known) metadata keys, in insertion order."""
        return dict(self.model_extra or {})


class RecordEntity(BaseModel):
    """The canonical decoded form of one record file."""

    id: str = Field(..., description="Stable identifier, unique across the store")
    title: str = Field(..., description="Title of the record")
    type: str = Field(..., description="Record category, e.g. bylaw")
    status: str = Field(..., description="Workflow status, e.g. published")
    content: str = Field(default="", description="Markdown body text")
    author: str = Field(default="unknown", description="Primary author identifier")
    authors: List[Author] = Field(default_factory=list, description="Credited authors")
    created_at: datetime.datetime = Field(..., description="Creation time (UTC)")
    updated_at: datetime.datetime = Field(..., description="Last update time (UTC)")
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)
    workflow_state: Optional[str] = Field(
        default=None,
        description="Database-only workflow state; never read from or written to files",
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is safe for filesystem use."""
        return validate_record_id(v)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v or not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return validate_open_value(v, "Record type")

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return validate_open_value(v, "Record status")

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v: Optional[str]) -> str:
        """Surrounding whitespace of the body is not significant."""
        return (v or "").strip()

    @field_validator("author", mode="before")
    @classmethod
    def validate_author(cls, v: Optional[str]) -> str:
        if isinstance(v, (list, dict)):
            raise ValueError("Author must be a single identifier")
        if v is None or not str(v).strip():
            return "unknown"
        return str(v).strip()

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Store every timestamp as aware UTC."""
        return to_utc(v)

    @model_validator(mode="after")
    def _check_monotonic(self) -> "RecordEntity":
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be earlier than created_at")
        return self

    @property
    def tags(self) -> List[str]:
        return self.metadata.tags

    @property
    def module(self) -> Optional[str]:
        return self.metadata.module

    def comparable(self) -> Dict[str, Any]:
        """Field values used to decide whether two copies of a record differ.

        Excludes the database-only ``workflow_state``; tags are compared as a
        set because their order is only significant for display.
        """
        data = self.model_dump(mode="json", exclude={"workflow_state"})
        data["metadata"]["tags"] = sorted(data["metadata"].get("tags") or [])
        return data


class IndexEntry(BaseModel):
    """Lightweight projection of a record used for listing and search."""

    id: str
    title: str
    type: str
    status: str
    author: str = "unknown"
    authors: List[Author] = Field(default_factory=list)
    created_at: datetime.datetime = Field(..., alias="created")
    updated_at: datetime.datetime = Field(..., alias="updated")
    module: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    slug: Optional[str] = None
    version: Optional[str] = None
    path: str = Field(..., description="Path relative to the record-store root")
    file: str = Field(..., description="File name of the record")

    model_config = {"populate_by_name": True, "frozen": True}

    @classmethod
    def from_record(cls, record: RecordEntity, path: str) -> "IndexEntry":
        """Project a record onto an index entry.

        Args:
            record: The decoded record.
            path: Its file path relative to the record-store root (``/``-separated).
        """
        file_name = path.rsplit("/", 1)[-1]
        stem = file_name[:-3] if file_name.endswith(".md") else file_name
        return cls(
            id=record.id,
            title=record.title,
            type=record.type,
            status=record.status,
            author=record.author,
            authors=[a.model_copy() for a in record.authors],
            created_at=record.created_at,
            updated_at=record.updated_at,
            module=record.metadata.module,
            tags=list(record.metadata.tags),
            slug=record.metadata.slug or stem,
            version=record.metadata.version,
            path=path,
            file=file_name,
        )


class ScanWarning(BaseModel):
    """A record file that could not be turned into a record during a scan."""

    path: str
    reason: str

    model_config = {"frozen": True}


def _distinct(values: Iterable[Optional[str]]) -> List[str]:
    return sorted({v for v in values if v})


class IndexMetadata(BaseModel):
    """Summary of an Index, computed from its entries only."""

    total_records: int = Field(..., alias="totalRecords")
    modules: List[str] = Field(default_factory=list)
    types: List[str] = Field(default_factory=list)
    statuses: List[str] = Field(default_factory=list)
    generated_at: datetime.datetime = Field(default_factory=utc_now, alias="generatedAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_entries(
        cls, entries: List[IndexEntry], generated_at: Optional[datetime.datetime] = None
    ) -> "IndexMetadata":
        return cls(
            total_records=len(entries),
            modules=_distinct(e.module for e in entries),
            types=_distinct(e.type for e in entries),
            statuses=_distinct(e.status for e in entries),
            generated_at=generated_at or utc_now(),
        )


class TypeCounts(BaseModel):
    """Per record-type sync counters."""

    created: int = 0
    updated: int = 0


class RecordWriteFailure(BaseModel):
    """A database write that failed during sync; the batch carried on."""

    record_id: str = Field(..., alias="recordId")
    type: str
    reason: str

    model_config = {"populate_by_name": True, "frozen": True}


class ConflictPair(BaseModel):
    """A conflict left for a human to resolve (manual strategy)."""

    record_id: str = Field(..., alias="recordId")
    type: str
    title: str
    file_updated_at: datetime.datetime = Field(..., alias="fileUpdatedAt")
    database_updated_at: datetime.datetime = Field(..., alias="databaseUpdatedAt")

    model_config = {"populate_by_name": True, "frozen": True}


class SyncOutcome(BaseModel):
    """Result of one synchronization run. Returned and logged, never persisted."""

    conflict_resolution: ConflictStrategy = Field(..., alias="conflictResolution")
    total_records: int = Field(default=0, alias="totalRecords")
    created: int = 0
    updated: int = 0
    conflicts: int = 0
    unchanged: int = 0
    details: Dict[str, TypeCounts] = Field(default_factory=dict)
    errors: List[RecordWriteFailure] = Field(default_factory=list)
    pending: List[ConflictPair] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def counts_for(self, record_type: str) -> TypeCounts:
        """Get (creating if needed) the counters of one record type."""
        counts = self.details.get(record_type)
        if counts is None:
            counts = TypeCounts()
            self.details[record_type] = counts
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the dictionary shape exposed to API clients."""
        return self.model_dump(mode="json", by_alias=True)


class Index(BaseModel):
    """Denormalized, regenerable projection of the record store.

    ``warnings`` and ``sync`` are diagnostics of the run that produced the
    index; they are not part of the persisted artifact.
    """

    entries: List[IndexEntry] = Field(default_factory=list)
    metadata: IndexMetadata
    warnings: List[ScanWarning] = Field(default_factory=list, exclude=True)
    sync: Optional[SyncOutcome] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _check_metadata(self) -> "Index":
        if self.metadata.total_records != len(self.entries):
            raise ValueError(
                f"totalRecords ({self.metadata.total_records}) does not match "
                f"the number of entries ({len(self.entries)})"
            )
        for name, observed in (
            ("modules", _distinct(e.module for e in self.entries)),
            ("types", _distinct(e.type for e in self.entries)),
            ("statuses", _distinct(e.status for e in self.entries)),
        ):
            if sorted(getattr(self.metadata, name)) != observed:
                raise ValueError(f"metadata.{name} does not match the entries")
        return self

    @classmethod
    def build(
        cls,
        entries: List[IndexEntry],
        warnings: Optional[List[ScanWarning]] = None,
        generated_at: Optional[datetime.datetime] = None,
    ) -> "Index":
        """Create an index whose metadata is derived from ``entries``."""
        return cls(
            entries=list(entries),
            metadata=IndexMetadata.from_entries(entries, generated_at),
            warnings=list(warnings or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form of the artifact (entries + metadata)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
