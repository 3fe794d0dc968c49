from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from devkit.timezone import JST_ZONE
from facility_service.errors import StorageReadError
from facility_service.models import (
    FacilityQuery,
    FacilityRecord,
    FacilityServiceLink,
    FacilityServiceRow,
    FacilityWithServices,
    SearchFilters,
    Service,
)
from facility_service.search import SearchEngine, build_facility_query
from facility_service.store import FacilityStore

BASE_TIME = datetime(2025, 5, 1, 12, 0, tzinfo=JST_ZONE)


def _facility(
    facility_id: int,
    *,
    name: str = "施設",
    links: list[tuple[str, str]] | None = None,
    is_active: bool = True,
) -> FacilityWithServices:
    services = [
        FacilityServiceLink(
            id=facility_id * 10 + idx,
            facility_id=facility_id,
            service_id=idx + 1,
            availability=availability,
            service=Service(id=idx + 1, name=f"service-{idx}", category=category),
        )
        for idx, (category, availability) in enumerate(links or [])
    ]
    return FacilityWithServices(
        id=facility_id,
        name=name,
        address="東京都",
        district="新宿区",
        is_active=is_active,
        updated_at=BASE_TIME - timedelta(minutes=facility_id),
        facility_services=services,
    )


class FakeReader:
    def __init__(self, facilities: list[FacilityWithServices]) -> None:
        self.facilities = facilities
        self.queries: list[FacilityQuery] = []

    async def fetch_facilities(self, query: FacilityQuery) -> list[FacilityWithServices]:
        self.queries.append(query)
        return self.facilities


class FailingReader:
    async def fetch_facilities(self, query: FacilityQuery) -> list[FacilityWithServices]:
        raise ConnectionError("database unreachable")


async def _add_facility(
    store: FacilityStore,
    name: str,
    district: str,
    services: list[tuple[int, str]],
    *,
    is_active: bool = True,
) -> int:
    facility = await store.insert_facility(
        FacilityRecord(name=name, address=f"東京都{district}", district=district, is_active=is_active)
    )
    await store.insert_facility_services(
        [
            FacilityServiceRow(facility_id=facility.id, service_id=service_id, availability=availability)
            for service_id, availability in services
        ]
    )
    return facility.id


def test_build_facility_query_short_circuits_blank_text() -> None:
    query = build_facility_query(SearchFilters(query="   ", district=""))

    assert query.name_contains is None
    assert query.district is None
    assert query.active_only is True
    assert query.limit == 100


def test_build_facility_query_trims_text_and_keeps_district() -> None:
    query = build_facility_query(SearchFilters(query=" さくら ", district="新宿区"), limit=500)

    assert query.name_contains == "さくら"
    assert query.district == "新宿区"
    assert query.limit == 100


@pytest.mark.asyncio
async def test_empty_result_is_not_an_error() -> None:
    engine = SearchEngine(FakeReader([]))

    result = await engine.search(SearchFilters(query="none"))

    assert result.results == []
    assert result.total_count == 0


@pytest.mark.asyncio
async def test_storage_failure_is_storage_read_error() -> None:
    engine = SearchEngine(FailingReader())

    with pytest.raises(StorageReadError) as exc_info:
        await engine.search(SearchFilters())
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_service_category_and_available_only_are_independent() -> None:
    day = "日中活動系サービス"
    visit = "訪問系サービス"
    reader = FakeReader(
        [
            _facility(1, links=[(day, "unavailable"), (visit, "available")]),
            _facility(2, links=[(day, "unavailable")]),
            _facility(3, links=[(visit, "available")]),
            _facility(4, links=[]),
        ]
    )
    engine = SearchEngine(reader)

    both = await engine.search(SearchFilters(service_category=day, available_only=True))
    category_only = await engine.search(SearchFilters(service_category=day))
    available_only = await engine.search(SearchFilters(available_only=True))
    unfiltered = await engine.search(SearchFilters())

    assert [item.id for item in both.results] == [1]
    assert [item.id for item in category_only.results] == [1, 2]
    assert [item.id for item in available_only.results] == [1, 3]
    assert [item.id for item in unfiltered.results] == [1, 2, 3, 4]
    assert both.total_count == 1


@pytest.mark.asyncio
async def test_engine_drops_inactive_rows_and_applies_cap() -> None:
    facilities = [_facility(idx, is_active=idx != 3) for idx in range(1, 151)]
    engine = SearchEngine(FakeReader(facilities))

    result = await engine.search(SearchFilters())

    assert len(result.results) == 99
    assert all(item.is_active for item in result.results)
    assert result.total_count == len(result.results)


@pytest.mark.asyncio
async def test_scenario_name_district_and_availability() -> None:
    store = FacilityStore(database_url=None, seed=False)
    expected = await _add_facility(store, "さくら就労センター", "新宿区", [(8, "available")])
    await _add_facility(store, "さくら訪問介護", "渋谷区", [(1, "available")])
    await _add_facility(store, "ひかり生活介護", "新宿区", [(4, "unavailable")])
    engine = SearchEngine(store)

    result = await engine.search(
        SearchFilters(query="さくら", district="新宿区", service_category="", available_only=True)
    )

    assert [item.id for item in result.results] == [expected]
    assert result.total_count == 1


@pytest.mark.asyncio
async def test_inactive_facilities_are_never_returned() -> None:
    store = FacilityStore(database_url=None, seed=False)
    await _add_facility(store, "さくらホーム", "新宿区", [(7, "available")], is_active=False)
    active = await _add_facility(store, "さくらハウス", "新宿区", [(7, "available")])
    engine = SearchEngine(store)

    for filters in (
        SearchFilters(),
        SearchFilters(query="さくら"),
        SearchFilters(district="新宿区"),
        SearchFilters(service_category="居住系サービス", available_only=True),
    ):
        result = await engine.search(filters)
        assert [item.id for item in result.results] == [active]


@pytest.mark.asyncio
async def test_text_filter_is_case_insensitive_and_blank_means_unfiltered() -> None:
    store = FacilityStore(database_url=None, seed=False)
    await _add_facility(store, "Green Care Tokyo", "港区", [(1, "available")])
    await _add_facility(store, "ひまわり", "港区", [(1, "available")])
    engine = SearchEngine(store)

    matched = await engine.search(SearchFilters(query="green care"))
    blank = await engine.search(SearchFilters(query="  \t "))
    unfiltered = await engine.search(SearchFilters())

    assert [item.name for item in matched.results] == ["Green Care Tokyo"]
    assert [item.id for item in blank.results] == [item.id for item in unfiltered.results]
    assert blank.total_count == 2


@pytest.mark.asyncio
async def test_unknown_district_yields_empty_result() -> None:
    engine = SearchEngine(FacilityStore(database_url=None))

    result = await engine.search(SearchFilters(district="存在しない区"))

    assert result.results == []
    assert result.total_count == 0


@pytest.mark.asyncio
async def test_results_are_capped_and_ordered_newest_first() -> None:
    store = FacilityStore(database_url=None, seed=False)
    for idx in range(120):
        await _add_facility(store, f"施設{idx}", "新宿区", [(1, "available")])
    engine = SearchEngine(store)

    result = await engine.search(SearchFilters())

    assert len(result.results) == 100
    keys = [(item.updated_at, item.id) for item in result.results]
    assert keys == sorted(keys, reverse=True)
    assert result.results[0].id == 120
