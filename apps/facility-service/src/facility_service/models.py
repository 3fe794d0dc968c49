from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

TOKYO_DISTRICTS: tuple[str, ...] = (
    # 23 special wards
    "千代田区", "中央区", "港区", "新宿区", "文京区", "台東区", "墨田区", "江東区",
    "品川区", "目黒区", "大田区", "世田谷区", "渋谷区", "中野区", "杉並区", "豊島区",
    "北区", "荒川区", "板橋区", "練馬区", "足立区", "葛飾区", "江戸川区",
    # cities
    "八王子市", "立川市", "武蔵野市", "三鷹市", "青梅市", "府中市", "昭島市",
    "調布市", "町田市", "小金井市", "小平市", "日野市", "東村山市", "国分寺市",
    "国立市", "福生市", "狛江市", "東大和市", "清瀬市", "東久留米市", "武蔵村山市",
    "多摩市", "稲城市", "羽村市", "あきる野市", "西東京市",
    # Nishitama district
    "瑞穂町", "日の出町", "檜原村", "奥多摩町",
    # islands
    "大島町", "利島村", "新島村", "神津島村", "三宅村", "御蔵島村",
    "八丈町", "青ヶ島村", "小笠原村",
)


class ServiceCategory(str, Enum):
    VISITING = "訪問系サービス"
    DAYTIME_ACTIVITY = "日中活動系サービス"
    RESIDENTIAL_FACILITY = "施設系サービス"
    GROUP_LIVING = "居住系サービス"
    TRAINING_EMPLOYMENT = "訓練系・就労系サービス"
    CHILD_DAY_SUPPORT = "障害児通所系サービス"
    CHILD_RESIDENTIAL = "障害児入所系サービス"
    CONSULTATION = "相談系サービス"


class Availability(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Service:
    id: int
    name: str
    category: str
    description: str | None = None


@dataclass
class FacilityServiceLink:
    """Association row between a facility and a catalog service."""

    id: int
    facility_id: int
    service_id: int
    availability: str = Availability.AVAILABLE.value
    capacity: int | None = None
    current_users: int = 0
    service: Service | None = None

    @property
    def is_available(self) -> bool:
        return self.availability == Availability.AVAILABLE.value


@dataclass
class Facility:
    id: int
    name: str
    address: str
    district: str
    description: str | None = None
    appeal_points: str | None = None
    phone_number: str | None = None
    website_url: str | None = None
    image_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    profile_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class FacilityWithServices(Facility):
    facility_services: list[FacilityServiceLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(frozen=True)
class SearchFilters:
    query: str = ""
    district: str = ""
    service_category: str = ""
    available_only: bool = False


@dataclass(frozen=True)
class SearchResult:
    results: list[FacilityWithServices]
    total_count: int


@dataclass
class FacilityDraft:
    """Registration payload: facility attributes plus the services it offers."""

    name: str | None = None
    address: str | None = None
    district: str | None = None
    service_ids: list[int] = field(default_factory=list)
    description: str | None = None
    appeal_points: str | None = None
    phone_number: str | None = None
    website_url: str | None = None
    image_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    profile_id: str | None = None


@dataclass(frozen=True)
class FacilityRecord:
    """Validated facility attributes ready for insertion; id and timestamps come from storage."""

    name: str
    address: str
    district: str
    description: str | None = None
    appeal_points: str | None = None
    phone_number: str | None = None
    website_url: str | None = None
    image_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    profile_id: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class FacilityServiceRow:
    facility_id: int
    service_id: int
    availability: str = Availability.AVAILABLE.value
    capacity: int | None = None
    current_users: int = 0


@dataclass(frozen=True)
class FacilityQuery:
    """Scalar predicates the storage adapter can push into its primary query."""

    limit: int
    active_only: bool = True
    name_contains: str | None = None
    district: str | None = None


@dataclass(frozen=True)
class RegistrationOutcome:
    facility_id: int
    service_ids: tuple[int, ...]
