from fastapi.testclient import TestClient

from facility_service.app import create_app
from facility_service.models import FacilityQuery, FacilityRecord, FacilityServiceRow
from facility_service.store import FacilityStore


class BrokenStore(FacilityStore):
    async def fetch_facilities(self, query: FacilityQuery):
        raise ConnectionError("database unreachable")


class StuckRegistrationStore(FacilityStore):
    """Association batch and the compensating delete both fail."""

    def __init__(self) -> None:
        super().__init__(database_url=None)
        self.delete_attempts: list[int] = []

    async def insert_facility_services(self, rows: list[FacilityServiceRow]):
        raise ConnectionError("association insert timed out")

    async def delete_facility(self, facility_id: int) -> bool:
        self.delete_attempts.append(facility_id)
        raise ConnectionError("database unreachable")


class RollbackStore(FacilityStore):
    @property
    def supports_transactions(self) -> bool:
        return True

    async def insert_facility_with_services(self, record: FacilityRecord, service_ids: tuple[int, ...]):
        raise ConnectionError("transaction aborted")


_REGISTRATION = {"name": "みどり", "address": "東京都港区", "district": "港区", "service_ids": [1, 2]}


def _client(store: FacilityStore | None = None) -> TestClient:
    return TestClient(create_app(store or FacilityStore(database_url=None)))


def test_search_returns_seeded_facilities() -> None:
    client = _client()
    response = client.get("/v1/facilities/search")
    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["total_count"] == 3
    assert [item["id"] for item in body["data"]] == [1, 2, 3]


def test_search_filters_by_name_district_and_availability() -> None:
    client = _client()
    response = client.get(
        "/v1/facilities/search",
        params={"query": "さくら", "district": "新宿区", "available_only": "true"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert [item["name"] for item in data] == ["さくら就労支援センター"]
    assert data[0]["facility_services"][0]["service"]["category"] == "訓練系・就労系サービス"


def test_search_blocks_invalid_query() -> None:
    client = _client()
    response = client.get("/v1/facilities/search", params={"query": "';DROP"})
    assert response.status_code == 422
    assert response.json()["error"]["field"] == "query"


def test_search_storage_failure_is_503() -> None:
    client = _client(BrokenStore(database_url=None))
    response = client.get("/v1/facilities/search")
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SEARCH_UNAVAILABLE"


def test_register_then_detail() -> None:
    client = _client()
    created = client.post(
        "/v1/facilities",
        headers={"X-Actor-Id": "profile-123"},
        json={
            "name": "みどり生活介護",
            "address": "東京都練馬区豊玉北6-12-1",
            "district": "練馬区",
            "service_ids": [4, 4, 5],
        },
    )
    assert created.status_code == 201
    facility_id = created.json()["data"]["facility_id"]
    assert created.json()["meta"]["service_ids"] == [4, 5]

    detail = client.get(f"/v1/facilities/{facility_id}")
    assert detail.status_code == 200
    body = detail.json()["data"]
    assert body["profile_id"] == "profile-123"
    assert [item["service_id"] for item in body["facility_services"]] == [4, 5]

    searched = client.get("/v1/facilities/search", params={"district": "練馬区"})
    assert [item["id"] for item in searched.json()["data"]] == [facility_id]


def test_register_missing_district_names_field() -> None:
    client = _client()
    response = client.post(
        "/v1/facilities",
        json={"name": "みどり", "address": "東京都", "service_ids": [1]},
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert error["field"] == "district"


def test_register_unknown_service_is_502_and_rolled_back() -> None:
    client = _client()
    response = client.post(
        "/v1/facilities",
        json={"name": "みどり", "address": "東京都港区", "district": "港区", "service_ids": [999]},
    )
    assert response.status_code == 502
    assert response.json()["error"]["stage"] == "facility_services"
    assert client.get("/v1/facilities/4").status_code == 404


def test_detail_missing_facility_is_404() -> None:
    client = _client()
    response = client.get("/v1/facilities/9999")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_catalog_endpoints() -> None:
    client = _client()
    services = client.get("/v1/services", params={"category": "訪問系サービス"})
    assert services.status_code == 200
    assert {item["id"] for item in services.json()["data"]} == {1, 2, 3}

    districts = client.get("/v1/districts")
    assert "新宿区" in districts.json()["data"]
    assert districts.json()["meta"]["count"] == 62


def test_register_malformed_service_ids_names_field() -> None:
    client = _client()
    response = client.post(
        "/v1/facilities",
        json={"name": "みどり", "address": "東京都港区", "district": "港区", "service_ids": ["abc"]},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_INPUT"
    assert body["error"]["field"] == "service_ids"


def test_register_without_body_is_invalid_input() -> None:
    client = _client()
    response = client.post("/v1/facilities")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_INPUT"
    assert response.json()["error"]["field"] == "body"


def test_search_malformed_flag_names_field() -> None:
    client = _client()
    response = client.get("/v1/facilities/search", params={"available_only": "foo"})
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert error["field"] == "available_only"


def test_register_failed_rollback_is_500_with_facility_id() -> None:
    store = StuckRegistrationStore()
    client = _client(store)
    response = client.post("/v1/facilities", json=_REGISTRATION)
    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "REGISTRATION_INCONSISTENT"
    assert store.delete_attempts == [error["facility_id"]]
    assert str(error["facility_id"]) not in error["message"]


def test_register_transaction_failure_is_502() -> None:
    client = _client(RollbackStore(database_url=None))
    response = client.post("/v1/facilities", json=_REGISTRATION)
    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "REGISTRATION_FAILED"
    assert error["stage"] == "transaction"
