from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from devkit.timezone import configure_jst_timezone

MAX_SEARCH_RESULT_LIMIT = 100


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "service"
    DATABASE_URL: str | None = None
    DB_MAX_RETRIES: int = 3
    LOG_LEVEL: str = "INFO"
    SEARCH_RESULT_LIMIT: int = MAX_SEARCH_RESULT_LIMIT

    @field_validator("SEARCH_RESULT_LIMIT")
    @classmethod
    def _clamp_search_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SEARCH_RESULT_LIMIT must be >= 1")
        return min(value, MAX_SEARCH_RESULT_LIMIT)

    @field_validator("DATABASE_URL")
    @classmethod
    def _blank_url_is_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value


def load_settings(service_name: str) -> ServiceSettings:
    configure_jst_timezone()
    return ServiceSettings(SERVICE_NAME=service_name)
