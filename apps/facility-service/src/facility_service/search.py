from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from devkit.config import MAX_SEARCH_RESULT_LIMIT
from devkit.observability import get_tracer

from facility_service.errors import StorageReadError
from facility_service.models import FacilityQuery, FacilityWithServices, SearchFilters, SearchResult
from facility_service.validation import normalize_text_filter

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

FacilityPredicate = Callable[[FacilityWithServices], bool]


class FacilityReader(Protocol):
    async def fetch_facilities(self, query: FacilityQuery) -> list[FacilityWithServices]: ...


def build_facility_query(filters: SearchFilters, limit: int = MAX_SEARCH_RESULT_LIMIT) -> FacilityQuery:
    """Translate the scalar part of the filters into a storage query."""
    district = filters.district.strip() if filters.district else ""
    return FacilityQuery(
        limit=min(limit, MAX_SEARCH_RESULT_LIMIT),
        active_only=True,
        name_contains=normalize_text_filter(filters.query),
        district=district or None,
    )


def offers_service_category(category: str) -> FacilityPredicate:
    def _predicate(facility: FacilityWithServices) -> bool:
        return any(
            link.service is not None and link.service.category == category
            for link in facility.facility_services
        )

    return _predicate


def has_available_service(facility: FacilityWithServices) -> bool:
    return any(link.is_available for link in facility.facility_services)


def build_post_filters(filters: SearchFilters) -> list[FacilityPredicate]:
    """Predicates over the joined service collection; every one must hold."""
    predicates: list[FacilityPredicate] = []
    category = filters.service_category.strip() if filters.service_category else ""
    if category:
        predicates.append(offers_service_category(category))
    if filters.available_only:
        predicates.append(has_available_service)
    return predicates


def apply_post_filters(
    facilities: Iterable[FacilityWithServices],
    predicates: list[FacilityPredicate],
) -> list[FacilityWithServices]:
    # inactive rows never leave the engine, whatever the storage adapter returned
    return [item for item in facilities if item.is_active and all(check(item) for check in predicates)]


class SearchEngine:
    """Facility search: storage-side scalar filters, then post-filters over joined services.

    ``total_count`` is the number of facilities returned after post-filtering the
    capped fetch, not the number of matching rows in storage.
    """

    def __init__(self, storage: FacilityReader, *, limit: int = MAX_SEARCH_RESULT_LIMIT) -> None:
        self._storage = storage
        self._limit = min(limit, MAX_SEARCH_RESULT_LIMIT)

    async def search(self, filters: SearchFilters) -> SearchResult:
        query = build_facility_query(filters, limit=self._limit)
        with tracer.start_as_current_span("facility.search"):
            try:
                fetched = await self._storage.fetch_facilities(query)
            except Exception as exc:
                logger.exception(
                    "facility_search_failed",
                    extra={"component": "search", "district": query.district},
                )
                raise StorageReadError("facility search is temporarily unavailable") from exc

        results = apply_post_filters(fetched[: self._limit], build_post_filters(filters))
        logger.info(
            "facility_search_completed",
            extra={"component": "search", "fetched": len(fetched), "returned": len(results)},
        )
        return SearchResult(results=results, total_count=len(results))
