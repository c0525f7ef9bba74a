"""In-memory search over a generated Index."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from civic_index.models.schema import Index, IndexEntry
from civic_index.observability import traced

logger = logging.getLogger(__name__)


@dataclass
class SearchFilters:
    """Structured filters; ``None`` (or no tags) means the dimension matches all."""

    type: Optional[str] = None
    status: Optional[str] = None
    module: Optional[str] = None
    tags: List[str] = field(default_factory=list)


class SearchService:
    """Filters the entries of an Index by text query and exact-match fields.

    This is a filter, not a ranking: results keep the order of
    ``index.entries``.
    """

    @traced("search")
    def search(
        self,
        index: Index,
        query: str = "",
        filters: Optional[SearchFilters] = None,
    ) -> List[IndexEntry]:
        """Return the entries matching ``query`` and every supplied filter.

        A non-empty ``query`` matches case-insensitively as a substring of the
        title, any tag or any author's name. An empty query keeps every entry.
        """
        filters = filters or SearchFilters()
        needle = (query or "").lower()
        wanted_tags = set(filters.tags or [])

        results = [
            entry
            for entry in index.entries
            if self._matches_query(entry, needle)
            and self._matches_filters(entry, filters, wanted_tags)
        ]
        logger.debug(f"Search '{query}' matched {len(results)} of {len(index.entries)} entries")
        return results

    @staticmethod
    def _matches_query(entry: IndexEntry, needle: str) -> bool:
        if not needle:
            return True
        if needle in entry.title.lower():
            return True
        if any(needle in tag.lower() for tag in entry.tags):
            return True
        return any(needle in author.name.lower() for author in entry.authors)

    @staticmethod
    def _matches_filters(entry: IndexEntry, filters: SearchFilters, wanted_tags: set) -> bool:
        if filters.type and entry.type != filters.type:
            return False
        if filters.status and entry.status != filters.status:
            return False
        if filters.module and entry.module != filters.module:
            return False
        if wanted_tags and wanted_tags.isdisjoint(entry.tags):
            return False
        return True
