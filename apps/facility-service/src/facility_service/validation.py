from __future__ import annotations

import re

from facility_service.errors import InvalidInputError
from facility_service.models import (
    TOKYO_DISTRICTS,
    Availability,
    FacilityDraft,
    FacilityRecord,
    FacilityServiceRow,
)

_FORBIDDEN_SEARCH_CHARS = re.compile(r"[;\'\"\\]")
_URL_PREFIXES = ("http://", "https://")


def validate_search_input(value: str, max_length: int = 100) -> bool:
    """Coarse guard applied at the HTTP edge before a free-text search.

    Storage binds the text as a parameter, so the guard is not what keeps queries
    safe. It also rejects names containing an apostrophe, such as "O'Hara Care".
    """
    if len(value) > max_length:
        return False
    if _FORBIDDEN_SEARCH_CHARS.search(value):
        return False
    return True


def normalize_text_filter(value: str | None) -> str | None:
    """Trimmed filter text, or None when there is nothing to filter on."""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _required_text(draft: FacilityDraft, field_name: str) -> str:
    value = _optional_text(getattr(draft, field_name))
    if value is None:
        raise InvalidInputError(field_name, f"{field_name} is required")
    return value


def _optional_url(draft: FacilityDraft, field_name: str) -> str | None:
    value = _optional_text(getattr(draft, field_name))
    if value is not None and not value.startswith(_URL_PREFIXES):
        raise InvalidInputError(field_name, f"{field_name} must start with http:// or https://")
    return value


def _optional_coordinate(draft: FacilityDraft, field_name: str, bound: float) -> float | None:
    value = getattr(draft, field_name)
    if value is None:
        return None
    if not -bound <= value <= bound:
        raise InvalidInputError(field_name, f"{field_name} must be between {-bound} and {bound}")
    return float(value)


def dedupe_service_ids(service_ids: list[int]) -> tuple[int, ...]:
    """First-seen order of the distinct service ids."""
    return tuple(dict.fromkeys(service_ids))


def validate_draft(draft: FacilityDraft) -> tuple[FacilityRecord, tuple[int, ...]]:
    name = _required_text(draft, "name")
    district = _required_text(draft, "district")
    address = _required_text(draft, "address")
    if district not in TOKYO_DISTRICTS:
        raise InvalidInputError("district", f"unknown district: {district}")

    if not draft.service_ids:
        raise InvalidInputError("service_ids", "at least one service must be selected")
    for service_id in draft.service_ids:
        if isinstance(service_id, bool) or not isinstance(service_id, int) or service_id <= 0:
            raise InvalidInputError("service_ids", f"invalid service id: {service_id!r}")

    record = FacilityRecord(
        name=name,
        address=address,
        district=district,
        description=_optional_text(draft.description),
        appeal_points=_optional_text(draft.appeal_points),
        phone_number=_optional_text(draft.phone_number),
        website_url=_optional_url(draft, "website_url"),
        image_url=_optional_url(draft, "image_url"),
        latitude=_optional_coordinate(draft, "latitude", 90.0),
        longitude=_optional_coordinate(draft, "longitude", 180.0),
        profile_id=_optional_text(draft.profile_id),
    )
    return record, dedupe_service_ids(draft.service_ids)


def check_capacity(capacity: int | None, current_users: int) -> None:
    if capacity is not None and capacity < 0:
        raise InvalidInputError("capacity", "capacity must be >= 0")
    if current_users < 0:
        raise InvalidInputError("current_users", "current_users must be >= 0")
    if capacity is not None and current_users > capacity:
        raise InvalidInputError("current_users", "current_users must not exceed capacity")


def build_service_rows(facility_id: int, service_ids: tuple[int, ...]) -> list[FacilityServiceRow]:
    rows = [
        FacilityServiceRow(
            facility_id=facility_id,
            service_id=service_id,
            availability=Availability.AVAILABLE.value,
            capacity=None,
            current_users=0,
        )
        for service_id in service_ids
    ]
    for row in rows:
        check_capacity(row.capacity, row.current_users)
    return rows
