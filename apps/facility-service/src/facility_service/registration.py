from __future__ import annotations

import logging
from typing import Protocol

from devkit.observability import get_tracer

from facility_service.errors import CompensationFailedError, StorageWriteError
from facility_service.models import (
    Facility,
    FacilityDraft,
    FacilityRecord,
    FacilityServiceLink,
    FacilityServiceRow,
    RegistrationOutcome,
)
from facility_service.validation import build_service_rows, validate_draft

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class FacilityWriter(Protocol):
    supports_transactions: bool

    async def insert_facility(self, record: FacilityRecord) -> Facility: ...

    async def insert_facility_services(self, rows: list[FacilityServiceRow]) -> list[FacilityServiceLink]: ...

    async def insert_facility_with_services(
        self,
        record: FacilityRecord,
        service_ids: tuple[int, ...],
    ) -> tuple[Facility, list[FacilityServiceLink]]: ...

    async def delete_facility(self, facility_id: int) -> bool: ...


class RegistrationCoordinator:
    """Registers a facility together with the services it offers.

    Storage that can run both inserts in one transaction is used that way. For
    storage without cross-table transactions the facility row is written first and
    deleted again if the association batch fails. No step is retried.
    """

    def __init__(self, storage: FacilityWriter) -> None:
        self._storage = storage

    async def register(self, draft: FacilityDraft) -> RegistrationOutcome:
        record, service_ids = validate_draft(draft)
        with tracer.start_as_current_span("facility.register"):
            if getattr(self._storage, "supports_transactions", False):
                facility_id = await self._register_in_transaction(record, service_ids)
            else:
                facility_id = await self._register_with_compensation(record, service_ids)
        logger.info(
            "facility_registered",
            extra={"component": "registration", "facility_id": facility_id, "service_count": len(service_ids)},
        )
        return RegistrationOutcome(facility_id=facility_id, service_ids=service_ids)

    async def _register_in_transaction(self, record: FacilityRecord, service_ids: tuple[int, ...]) -> int:
        try:
            facility, _ = await self._storage.insert_facility_with_services(record, service_ids)
        except Exception as exc:
            logger.warning(
                "facility_registration_transaction_failed",
                extra={"component": "registration", "stage": "transaction", "error": str(exc)},
            )
            raise StorageWriteError("transaction", "facility registration was rolled back") from exc
        return facility.id

    async def _register_with_compensation(self, record: FacilityRecord, service_ids: tuple[int, ...]) -> int:
        try:
            facility = await self._storage.insert_facility(record)
        except Exception as exc:
            logger.warning(
                "facility_insert_failed",
                extra={"component": "registration", "stage": "facility", "error": str(exc)},
            )
            raise StorageWriteError("facility", "failed to create facility record") from exc

        try:
            await self._storage.insert_facility_services(build_service_rows(facility.id, service_ids))
        except Exception as exc:
            logger.warning(
                "facility_services_insert_failed",
                extra={
                    "component": "registration",
                    "stage": "facility_services",
                    "facility_id": facility.id,
                    "error": str(exc),
                },
            )
            await self._compensate(facility.id, exc)
            raise StorageWriteError(
                "facility_services",
                "failed to attach services to the facility; registration was undone",
                compensated=True,
            ) from exc
        return facility.id

    async def _compensate(self, facility_id: int, cause: Exception) -> None:
        try:
            await self._storage.delete_facility(facility_id)
        except Exception as exc:
            logger.error(
                "facility_compensation_failed",
                extra={
                    "component": "registration",
                    "facility_id": facility_id,
                    "cause": str(cause),
                    "error": str(exc),
                },
            )
            raise CompensationFailedError(
                facility_id,
                "facility registration could not be completed or undone; an operator has been notified",
            ) from exc
        logger.info(
            "facility_registration_compensated",
            extra={"component": "registration", "facility_id": facility_id},
        )
