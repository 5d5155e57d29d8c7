from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "acumatica-gateway"
    app_version: str = "0.1.0"
    environment: str = Field(default="dev", alias="ENV")

    api_key: str = Field(..., alias="API_KEY")
    fernet_key: str = Field(..., alias="FERNET_KEY")

    database_url: str = Field(..., alias="DATABASE_URL")

    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    acumatica_api_version: str = Field(default="24.200.001", alias="ACUMATICA_API_VERSION")
    poll_max_attempts: int = Field(default=60, alias="POLL_MAX_ATTEMPTS")
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")

    allow_docs_without_auth: bool = Field(default=True, alias="ALLOW_DOCS_WITHOUT_AUTH")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
