from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Every field carries a default so the application can be imported without a
    populated environment; secrets are checked for presence at the point of
    use instead.
    """

    app_name: str = "Helpdesk"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SUPABASE_DB_URL"),
    )
    sqlite_path: Path = Field(
        default=_PROJECT_ROOT / "helpdesk.db",
        validation_alias="SQLITE_PATH",
    )
    encryption_key: SecretStr | None = Field(default=None, validation_alias="ENCRYPTION_KEY")
    admin_setup_key: SecretStr | None = Field(default=None, validation_alias="ADMIN_SETUP_KEY")
    mail_address: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MAIL_ADDRESS", "GMAIL_ADDRESS"),
    )
    mail_app_password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("MAIL_APP_PASSWORD", "GMAIL_APP_PASSWORD"),
    )
    imap_host: str = Field(default="imap.gmail.com", validation_alias="IMAP_HOST")
    imap_port: int = Field(default=993, validation_alias="IMAP_PORT")
    imap_connect_timeout: float = Field(default=10.0, validation_alias="IMAP_CONNECT_TIMEOUT")
    imap_auth_timeout: float = Field(default=5.0, validation_alias="IMAP_AUTH_TIMEOUT")
    imap_operation_timeout: float = Field(
        default=15.0, validation_alias="IMAP_OPERATION_TIMEOUT"
    )
    support_address: str = Field(
        default="support@helpdesk.local", validation_alias="SUPPORT_ADDRESS"
    )
    allowed_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        validation_alias="ALLOWED_ORIGINS",
    )
    audit_log_path: Path | None = Field(default=None, validation_alias="AUDIT_LOG_PATH")

    @field_validator("database_url", "mail_address", "audit_log_path", mode="before")
    @classmethod
    def _empty_string_to_none(cls, value):  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    model_config = SettingsConfigDict(
        env_file=(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
