"""Markdown parsing and serialization for civic records.

Handles conversion between RecordEntity objects and record files: a YAML
front-matter block followed by a blank line and the Markdown body. The codec
is pure; reading and writing files is the caller's job.
"""
import datetime
import logging
import re
from typing import Any, Dict, List, Optional

import frontmatter
import yaml
from pydantic import ValidationError

from civic_index.exceptions import ErrorCode, MalformedFrontMatterError
from civic_index.models.schema import (
    RecordEntity,
    RecordMetadata,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Keys that must be present (after legacy normalization) for a record to decode
REQUIRED_FIELDS = ("id", "title", "type", "status", "created", "updated")

# Database-only keys; ignored if a legacy or hand-edited file carries them
DB_ONLY_KEYS = ("workflow_state", "workflowState")

# Legacy spellings of the timestamp keys
LEGACY_TIMESTAMP_KEYS = {"created": "created_at", "updated": "updated_at"}

# Keys with a dedicated place on RecordEntity; everything else is extra metadata
RESERVED_KEYS = frozenset(
    (
        "id", "title", "type", "status", "author", "authors",
        "created", "updated", "created_at", "updated_at",
        "tags", "module", "slug", "version",
    )
    + DB_ONLY_KEYS
)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _normalize_dates(value: Any) -> Any:
    """Render YAML dates/datetimes nested anywhere in a value as ISO strings."""
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, list):
        return [_normalize_dates(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _normalize_dates(v) for k, v in value.items()}
    return value


class RecordCodec:
    """Decodes and encodes civic records as Markdown with YAML front matter."""

    def decode(self, text: str, path: Optional[str] = None) -> RecordEntity:
        """Parse a record from Markdown content with YAML front matter.

        Args:
            text: Raw file content with ``---`` front-matter delimiters.
            path: Optional file path, only used in error details.

        Returns:
            A fully populated RecordEntity. ``workflow_state`` is always None.

        Raises:
            MalformedFrontMatterError: If the front matter is absent, is not
                valid YAML, is not a mapping, misses a required key or holds
                values that do not form a valid record.
        """
        if not frontmatter.checks(text.lstrip()):
            raise MalformedFrontMatterError("Front matter block missing", path=path)

        try:
            post = frontmatter.loads(text)
        except yaml.YAMLError as e:
            raise MalformedFrontMatterError(
                f"Front matter is not valid YAML: {e}", path=path
            ) from e
        except (TypeError, ValueError) as e:
            # Post(**metadata) rejects non-mapping blocks and non-string keys
            raise MalformedFrontMatterError(
                f"Front matter is not a mapping of named keys: {e}", path=path
            ) from e

        if not post.metadata:
            raise MalformedFrontMatterError(
                "Front matter block is empty or not a mapping", path=path
            )

        data = self._normalize(dict(post.metadata))

        missing = [field for field in REQUIRED_FIELDS if _is_blank(data.get(field))]
        if missing:
            raise MalformedFrontMatterError(
                f"Missing required fields: {', '.join(missing)}",
                path=path,
                missing_fields=missing,
            )

        try:
            created_at = parse_timestamp(data["created"])
            updated_at = parse_timestamp(data["updated"])
        except ValueError as e:
            raise MalformedFrontMatterError(
                f"Invalid timestamp: {e}", path=path, code=ErrorCode.INVALID_RECORD
            ) from e

        extra = {
            str(k): _normalize_dates(v)
            for k, v in data.items()
            if k not in RESERVED_KEYS
        }

        try:
            metadata = RecordMetadata(
                tags=data.get("tags"),
                module=data.get("module"),
                slug=data.get("slug"),
                version=data.get("version"),
                **extra,
            )
            return RecordEntity(
                id=str(data["id"]),
                title=str(data["title"]),
                type=str(data["type"]),
                status=str(data["status"]),
                content=post.content,
                author=data.get("author"),
                authors=data.get("authors") or [],
                created_at=created_at,
                updated_at=updated_at,
                metadata=metadata,
            )
        except ValidationError as e:
            raise MalformedFrontMatterError(
                f"Invalid record: {e.errors()[0].get('msg', e)}",
                path=path,
                code=ErrorCode.INVALID_RECORD,
            ) from e

    def encode(self, record: RecordEntity) -> str:
        """Convert a RecordEntity to Markdown with front matter.

        Keys are written in a fixed order: identification, authorship,
        timestamps, classification, then extra metadata in insertion order.
        ``workflow_state`` is never written.
        """
        fm: Dict[str, Any] = {
            "id": record.id,
            "title": record.title,
            "type": record.type,
            "status": record.status,
            "author": record.author,
        }
        if record.authors:
            fm["authors"] = [a.model_dump(exclude_none=True) for a in record.authors]
        fm["created"] = format_timestamp(record.created_at)
        fm["updated"] = format_timestamp(record.updated_at)

        meta = record.metadata
        if meta.tags:
            fm["tags"] = list(meta.tags)
        if meta.module:
            fm["module"] = meta.module
        if meta.slug:
            fm["slug"] = meta.slug
        if meta.version:
            fm["version"] = meta.version
        for key, value in meta.extra.items():
            if key in RESERVED_KEYS:
                logger.debug(f"Not writing reserved key '{key}' from extra metadata of {record.id}")
                continue
            fm[key] = value

        post = frontmatter.Post(record.content)
        post.metadata.update(fm)
        return frontmatter.dumps(post, sort_keys=False)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
        """Bring older front-matter layouts to the current one."""
        for key in DB_ONLY_KEYS:
            data.pop(key, None)

        for key, legacy in LEGACY_TIMESTAMP_KEYS.items():
            legacy_value = data.pop(legacy, None)
            if _is_blank(data.get(key)) and not _is_blank(legacy_value):
                data[key] = legacy_value

        if _is_blank(data.get("author")):
            data["author"] = RecordCodec._derive_author(data.get("authors"))

        authors = data.get("authors")
        if authors is not None:
            if not isinstance(authors, list):
                authors = [authors]
            normalized: List[Any] = []
            for author in authors:
                if isinstance(author, str):
                    normalized.append({"name": author})
                elif isinstance(author, dict):
                    normalized.append(_normalize_dates(author))
                else:
                    normalized.append(author)
            data["authors"] = normalized

        return data

    @staticmethod
    def _derive_author(authors: Any) -> str:
        """Primary author from the first credited author, else ``unknown``."""
        if isinstance(authors, (str, dict)):
            authors = [authors]
        if not isinstance(authors, list) or not authors:
            return "unknown"
        first = authors[0]
        if isinstance(first, str) and first.strip():
            return first.strip()
        if not isinstance(first, dict):
            return "unknown"
        if first.get("username"):
            return str(first["username"])
        if first.get("name"):
            return re.sub(r"\s+", ".", str(first["name"]).strip().lower())
        return "unknown"
