"""Registries of recognized record types and statuses.

Types and statuses are open strings on records. Which values are currently
*recognized* is a separate, swappable concern: core defaults can be extended
by modules and plugins, with ``priority`` deciding who wins a key clash.
"""
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TYPE_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
STATUS_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


class RegistryEntry(BaseModel):
    """Description of one recognized value."""

    label: str
    description: str
    source: str = "core"
    source_name: Optional[str] = None
    priority: int = 0


class ValueRegistry:
    """A set of recognized values for one open field (type or status)."""

    def __init__(
        self,
        kind: str,
        entries: Optional[Mapping[str, RegistryEntry]] = None,
        key_pattern: re.Pattern = TYPE_KEY_PATTERN,
    ):
        self.kind = kind
        self.key_pattern = key_pattern
        self._entries: Dict[str, RegistryEntry] = dict(entries or {})

    def __contains__(self, value: object) -> bool:
        return value in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def get(self, key: str) -> Optional[RegistryEntry]:
        return self._entries.get(key)

    def is_recognized(self, value: Optional[str]) -> bool:
        """Whether ``value`` is currently a recognized key."""
        return bool(value) and value in self._entries

    def merge(self, additions: Mapping[str, RegistryEntry]) -> "ValueRegistry":
        """Return a new registry with ``additions`` merged in.

        An addition replaces an existing key unless the existing entry has a
        strictly higher priority.
        """
        merged = dict(self._entries)
        for key, entry in additions.items():
            existing = merged.get(key)
            if existing is not None and existing.priority > entry.priority:
                logger.debug(
                    f"Keeping {self.kind} '{key}' from {existing.source} "
                    f"(priority {existing.priority} > {entry.priority})"
                )
                continue
            merged[key] = entry
        return ValueRegistry(self.kind, merged, self.key_pattern)

    def validate_entries(self) -> List[str]:
        """Check every entry and return human-readable problems (empty if valid)."""
        errors: List[str] = []
        for key, entry in self._entries.items():
            if not self.key_pattern.match(key):
                errors.append(
                    f"Invalid {self.kind} key '{key}': must be lowercase, start with "
                    f"a letter and match {self.key_pattern.pattern}"
                )
            if not entry.label.strip():
                errors.append(f"{self.kind.capitalize()} '{key}' missing label")
            if not entry.description.strip():
                errors.append(f"{self.kind.capitalize()} '{key}' missing description")
            if entry.source not in ("core", "module", "plugin"):
                errors.append(
                    f"{self.kind.capitalize()} '{key}' has invalid source: {entry.source}"
                )
            if entry.priority < 0:
                errors.append(
                    f"{self.kind.capitalize()} '{key}' has invalid priority: {entry.priority}"
                )
        return errors

    def unrecognized(self, values: Iterable[str]) -> List[str]:
        """Distinct values not present in the registry, sorted."""
        return sorted({v for v in values if v and v not in self._entries})

    def with_metadata(self) -> List[Dict[str, object]]:
        """Entries as dicts with their key, ordered by priority then key."""
        rows = [
            {"key": key, **entry.model_dump(exclude_none=True)}
            for key, entry in self._entries.items()
        ]
        return sorted(rows, key=lambda row: (row["priority"], row["key"]))


DEFAULT_RECORD_TYPES: Dict[str, RegistryEntry] = {
    "bylaw": RegistryEntry(label="Bylaws", description="Municipal bylaws and regulations", priority=1),
    "ordinance": RegistryEntry(label="Ordinances", description="Local ordinances and laws", priority=2),
    "policy": RegistryEntry(label="Policies", description="Administrative policies", priority=3),
    "proclamation": RegistryEntry(label="Proclamations", description="Official proclamations", priority=4),
    "resolution": RegistryEntry(label="Resolutions", description="Council resolutions", priority=5),
}

DEFAULT_RECORD_STATUSES: Dict[str, RegistryEntry] = {
    "draft": RegistryEntry(
        label="Draft", description="Initial working version, not yet ready for review", priority=1
    ),
    "pending_review": RegistryEntry(
        label="Pending Review", description="Submitted for review and awaiting approval", priority=2
    ),
    "under_review": RegistryEntry(
        label="Under Review", description="Currently under active review by authorized personnel", priority=3
    ),
    "approved": RegistryEntry(label="Approved", description="Approved and currently in effect", priority=4),
    "published": RegistryEntry(label="Published", description="Publicly available and in effect", priority=5),
    "rejected": RegistryEntry(label="Rejected", description="Rejected and not approved", priority=6),
    "archived": RegistryEntry(
        label="Archived", description="No longer active but preserved for reference", priority=7
    ),
    "expired": RegistryEntry(
        label="Expired", description="Past its effective date and no longer in force", priority=8
    ),
}


def default_type_registry() -> ValueRegistry:
    return ValueRegistry("record type", DEFAULT_RECORD_TYPES, TYPE_KEY_PATTERN)


def default_status_registry() -> ValueRegistry:
    return ValueRegistry("record status", DEFAULT_RECORD_STATUSES, STATUS_KEY_PATTERN)


class RecordRegistries(BaseModel):
    """Type and status registries travelling together."""

    types: ValueRegistry = Field(default_factory=default_type_registry)
    statuses: ValueRegistry = Field(default_factory=default_status_registry)

    model_config = {"arbitrary_types_allowed": True}
