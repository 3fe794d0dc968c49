from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from devkit.config import load_settings
from devkit.observability import configure_logging, configure_otel, configure_probe_access_log_filter
from fastapi import FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from facility_service.errors import (
    CompensationFailedError,
    DirectoryError,
    InvalidInputError,
    StorageReadError,
    StorageWriteError,
)
from facility_service.models import TOKYO_DISTRICTS, SearchFilters
from facility_service.registration import RegistrationCoordinator
from facility_service.schemas import FacilityRegisterRequest
from facility_service.search import SearchEngine
from facility_service.store import FacilityStore
from facility_service.validation import validate_search_input

logger = logging.getLogger(__name__)


def success_response(data: object, meta: dict[str, object] | None = None) -> dict[str, object]:
    return {"success": True, "data": data, "meta": meta or {}}


def error_response(code: str, message: str, **details: object) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message, **details}}


def _validation_field(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "body"
    loc = [str(part) for part in errors[0].get("loc", ()) if not isinstance(part, int)]
    if loc and loc[0] in ("body", "query", "path", "header"):
        loc = loc[1:]
    return ".".join(loc) or "body"


def _error_status(exc: DirectoryError) -> int:
    if isinstance(exc, InvalidInputError):
        return 422
    if isinstance(exc, StorageReadError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, StorageWriteError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, CompensationFailedError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(store: FacilityStore | None = None) -> FastAPI:
    settings = load_settings("facility-service")
    configure_logging(settings.LOG_LEVEL)
    configure_otel(service_name=settings.SERVICE_NAME)
    configure_probe_access_log_filter()
    store = store or FacilityStore()
    engine = SearchEngine(store, limit=settings.SEARCH_RESULT_LIMIT)
    coordinator = RegistrationCoordinator(store)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await store.close()

    app = FastAPI(title="Facility Directory Service", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(DirectoryError)
    async def handle_directory_error(_: Request, exc: DirectoryError) -> JSONResponse:
        details: dict[str, object] = {}
        if isinstance(exc, InvalidInputError):
            details["field"] = exc.field
        elif isinstance(exc, StorageWriteError):
            details["stage"] = exc.stage
        elif isinstance(exc, CompensationFailedError):
            details["facility_id"] = exc.facility_id
        return JSONResponse(status_code=_error_status(exc), content=error_response(exc.code, exc.message, **details))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(err["msg"] for err in exc.errors())
        return JSONResponse(
            status_code=422,
            content=error_response("INVALID_INPUT", message, field=_validation_field(exc)),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})
        return JSONResponse(status_code=exc.status_code, content=error_response("HTTP_ERROR", str(exc.detail)))

    @app.get("/healthz")
    async def healthz() -> dict[str, object]:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict[str, object]:
        return success_response({"status": "ready"}, meta={})

    @app.get("/v1/facilities/search")
    async def search_facilities(
        query: str = "",
        district: str = "",
        service_category: str = "",
        available_only: bool = False,
    ) -> dict[str, object]:
        if not validate_search_input(query):
            raise HTTPException(
                status_code=422,
                detail={"code": "INVALID_INPUT", "message": "invalid search query", "field": "query"},
            )
        result = await engine.search(
            SearchFilters(
                query=query,
                district=district,
                service_category=service_category,
                available_only=available_only,
            )
        )
        return success_response(
            [item.to_dict() for item in result.results],
            meta={"total_count": result.total_count},
        )

    @app.post("/v1/facilities", status_code=status.HTTP_201_CREATED)
    async def register_facility(
        body: FacilityRegisterRequest,
        x_actor_id: str | None = Header(default=None),
    ) -> dict[str, object]:
        outcome = await coordinator.register(body.to_draft(profile_id=x_actor_id))
        return success_response(
            {"facility_id": outcome.facility_id},
            meta={"service_ids": list(outcome.service_ids)},
        )

    @app.get("/v1/facilities/{facility_id}")
    async def get_facility(facility_id: int) -> dict[str, object]:
        try:
            item = await store.get_facility(facility_id)
        except Exception as exc:
            logger.exception("facility_detail_failed", extra={"component": "api", "facility_id": facility_id})
            raise StorageReadError("facility lookup is temporarily unavailable") from exc
        if item is None or not item.is_active:
            raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "facility not found"})
        return success_response(item.to_dict(), meta={})

    @app.get("/v1/services")
    async def list_services(category: str | None = Query(default=None)) -> dict[str, object]:
        try:
            services = await store.list_services()
        except Exception as exc:
            logger.exception("service_catalog_failed", extra={"component": "api"})
            raise StorageReadError("service catalog is temporarily unavailable") from exc
        data = [
            {"id": item.id, "name": item.name, "category": item.category, "description": item.description}
            for item in services
            if not category or item.category == category
        ]
        return success_response(data, meta={"count": len(data)})

    @app.get("/v1/districts")
    async def list_districts() -> dict[str, object]:
        return success_response(list(TOKYO_DISTRICTS), meta={"count": len(TOKYO_DISTRICTS)})

    return app


app = create_app()
