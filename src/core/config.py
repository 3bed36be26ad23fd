"""Application configuration using pydantic-settings."""
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database - local copy of submitted registrations
    database_url: str = "sqlite+aiosqlite:///./fidelity.db"

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="https://localhost:7065",
        validation_alias="CORS_ORIGINS",
    )

    # Central registry ("Sede")
    registry_endpoint: str = Field(default="", validation_alias="SEDE_ENDPOINT")
    registry_db_name: str = Field(default="", validation_alias="SEDE_DB_NAME")
    registry_called_from: str = Field(
        default="APP FIDELITY", validation_alias="SEDE_CALLED_FROM",
    )
    registry_timeout_seconds: float = Field(
        default=10.0, gt=0, validation_alias="SEDE_TIMEOUT_SECONDS",
    )
    registry_list_all_procedure: str = Field(
        default="xTSP_API_Get_Fidelity_All",
        validation_alias="SEDE_LIST_ALL_PROCEDURE",
    )

    # Client-facing links sent by email
    client_base_url: str = Field(
        default="https://localhost:7065", validation_alias="CLIENT_HOST",
    )
    profile_path: str = "/profilo"
    registration_path: str = "/Fidelity-form"

    # Tokens
    token_dir: Path = Field(default=Path("Token"), validation_alias="TOKEN_DIR")
    token_retention_minutes: int = Field(default=15, gt=0)
    token_sweep_interval_seconds: int = Field(default=300, gt=0)

    # Cache
    default_store: str = Field(default="NE001", validation_alias="DEFAULT_STORE")
    cache_sync_on_startup: bool = True

    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = ""
    smtp_sender_name: str = "Suns Fidelity Card"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 30.0
    email_dry_run: bool | None = None

    log_level: str = "INFO"

    @field_validator("client_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Links are built as base + path, so the base never ends with '/'."""
        value = value.strip().rstrip("/")
        if value and "://" not in value:
            # Bare host, as configured for the original client ("ClientHost")
            value = f"https://{value}"
        return value

    @model_validator(mode="after")
    def validate_registry_endpoint(self) -> "Settings":
        """Reject registry endpoints that are not http(s) URLs."""
        if not self.registry_endpoint:
            return self
        parsed = urlparse(self.registry_endpoint)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError(
                f"SEDE_ENDPOINT must be an http(s) URL, got '{self.registry_endpoint}'",
            )
        return self

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def token_retention(self) -> timedelta:
        """Age after which an issued token is reaped."""
        return timedelta(minutes=self.token_retention_minutes)

    @property
    def is_email_dry_run(self) -> bool:
        """Emails are only logged when explicitly requested or no SMTP host is set."""
        if self.email_dry_run is not None:
            return self.email_dry_run
        return not self.smtp_host


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
