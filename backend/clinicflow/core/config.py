"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Annotated, Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Elvet Clinic Workflow Gateway"
    api_v1_prefix: str = "/api/v1"

    clinic_api_base: str = Field(
        "http://localhost:8000/api/v1/", alias="CLINIC_API_BASE"
    )
    clinic_api_timeout: float = Field(10.0, alias="CLINIC_API_TIMEOUT")
    clinic_api_token: str | None = Field(default=None, alias="CLINIC_API_TOKEN")

    local_timezone: str = Field("UTC", alias="LOCAL_TIMEZONE")
    label_locale: str = Field("ru", alias="LABEL_LOCALE")

    resolve_wait_seconds: float = Field(2.0, alias="RESOLVE_WAIT_SECONDS")
    session_idle_seconds: int = Field(3600, alias="SESSION_IDLE_SECONDS")

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:8080",
        ],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("clinic_api_base")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        """Relative upstream paths need a base URL ending with a slash."""
        return value if value.endswith("/") else f"{value}/"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("label_locale", mode="before")
    @classmethod
    def _normalise_locale(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or "ru"
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
