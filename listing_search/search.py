"""Search orchestration: compile filters, query listings, post-filter, page.

School criteria cannot be expressed against the listings table, so searches
that carry them fetch a wider window (page * per_page * overfetch multiplier)
from the start of the result set, hand those rows to the school filter, and
page through the survivors.
"""

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy.orm import Session

from .compiler import FilterCompiler, FilterResult
from .config import (
    SEARCH_CACHE_MAX_ENTRIES,
    SEARCH_CACHE_TTL,
    SEARCH_DEFAULT_PER_PAGE,
    SEARCH_MAX_PER_PAGE,
)
from .models import Listing
from .query import build_count_query, build_listing_query
from .schemas import ListingSummary, SearchPage

logger = logging.getLogger(__name__)

# Receives the overfetched rows and the raw school criteria, returns the rows that pass
SchoolFilter = Callable[[list[Listing], Mapping[str, Any]], list[Listing]]

# Cache for search pages: key -> (timestamp, page), oldest first
_search_cache: dict[str, tuple[float, SearchPage]] = {}


def clear_search_cache() -> None:
    _search_cache.clear()


def passthrough_school_filter(rows: list[Listing], criteria: Mapping[str, Any]) -> list[Listing]:
    """Default school filter: keeps every row (no schools data wired in)."""
    logger.debug(f"No school filter configured; ignoring {sorted(criteria)}")
    return rows


class ListingRepository:
    """Read-only access to the listings table for compiled searches."""

    def __init__(self, session: Session):
        self.session = session

    def search(self, result: FilterResult, limit: int, offset: int) -> list[Listing]:
        return list(self.session.scalars(build_listing_query(result, limit, offset)))

    def count(self, result: FilterResult) -> int:
        return self.session.scalar(build_count_query(result)) or 0


class ListingSearchService:
    """Runs compiled searches with pagination, overfetch and caching."""

    def __init__(
        self,
        repository: ListingRepository,
        compiler: FilterCompiler | None = None,
        school_filter: SchoolFilter = passthrough_school_filter,
        cache_ttl: int = SEARCH_CACHE_TTL,
        cache_max_entries: int = SEARCH_CACHE_MAX_ENTRIES,
    ):
        self.repository = repository
        self.compiler = compiler or FilterCompiler()
        self.school_filter = school_filter
        self.cache_ttl = cache_ttl
        self.cache_max_entries = cache_max_entries

    def search(
        self,
        filters: Mapping[str, Any],
        page: int = 1,
        per_page: int = SEARCH_DEFAULT_PER_PAGE,
    ) -> SearchPage:
        """Search listings. `per_page` is clamped to [1, SEARCH_MAX_PER_PAGE].

        Raises:
            FilterValidationError: malformed spatial filters.
        """
        per_page = max(1, min(SEARCH_MAX_PER_PAGE, per_page))
        page = max(1, page)

        cache_key = self._cache_key(filters, page, per_page)
        cached = _search_cache.get(cache_key)
        if cached and (time.monotonic() - cached[0]) < self.cache_ttl:
            logger.debug("Returning cached search page")
            return cached[1]

        result = self._execute(filters, page, per_page)
        self._store(cache_key, result)
        return result

    def _execute(self, filters: Mapping[str, Any], page: int, per_page: int) -> SearchPage:
        compiled = self.compiler.compile(filters)
        offset = (page - 1) * per_page

        if not compiled.has_school_filters:
            rows = self.repository.search(compiled, per_page, offset)
            total = self.repository.count(compiled)
        else:
            # Post-filtering needs every candidate up to the end of this page
            fetch_limit = page * per_page * compiled.overfetch_multiplier
            candidates = self.repository.search(compiled, fetch_limit, 0)
            survivors = self.school_filter(candidates, compiled.school_criteria) if candidates else []
            total = len(survivors)
            rows = survivors[offset:offset + per_page]

            if len(candidates) == fetch_limit and len(rows) < per_page:
                logger.info(
                    f"School post-filter kept {total} of {fetch_limit} candidates; "
                    f"page {page} under-filled ({len(rows)}/{per_page})"
                )

        logger.info(f"Search returned {len(rows)} of {total} listings (page {page})")

        return SearchPage(
            data=[ListingSummary.model_validate(row) for row in rows],
            total=total,
            page=page,
            per_page=per_page,
        )

    def _store(self, cache_key: str, result: SearchPage) -> None:
        """Cache a page, dropping expired entries and then the oldest over the cap."""
        now = time.monotonic()
        for key, (stored_at, _) in list(_search_cache.items()):
            if now - stored_at >= self.cache_ttl:
                del _search_cache[key]

        # Re-insert so a refreshed key moves to the newest end
        _search_cache.pop(cache_key, None)
        while _search_cache and len(_search_cache) >= self.cache_max_entries:
            del _search_cache[next(iter(_search_cache))]

        if self.cache_max_entries > 0 and self.cache_ttl > 0:
            _search_cache[cache_key] = (now, result)

    def _cache_key(self, filters: Mapping[str, Any], page: int, per_page: int) -> str:
        encoded = json.dumps(dict(filters), sort_keys=True, default=str)
        return f"search:{encoded}:{page}:{per_page}"
