from __future__ import annotations

from pydantic import BaseModel, Field

from facility_service.models import FacilityDraft


class FacilityRegisterRequest(BaseModel):
    # required fields stay optional here so the coordinator reports which one is missing
    name: str | None = None
    address: str | None = None
    district: str | None = None
    service_ids: list[int] = Field(default_factory=list)
    description: str | None = None
    appeal_points: str | None = None
    phone_number: str | None = Field(default=None, max_length=32)
    website_url: str | None = Field(default=None, max_length=500)
    image_url: str | None = Field(default=None, max_length=500)
    latitude: float | None = None
    longitude: float | None = None

    def to_draft(self, profile_id: str | None = None) -> FacilityDraft:
        return FacilityDraft(**self.model_dump(), profile_id=profile_id)
