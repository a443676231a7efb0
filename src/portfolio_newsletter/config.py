# ABOUTME: Centralized configuration using Pydantic Settings.
# ABOUTME: Loads site, mail provider, storage, database and admin settings from the environment.

from functools import lru_cache

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from portfolio_newsletter.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Site
    site_url: str | None = None  # Base URL for confirm/unsubscribe links
    site_name: str = "zachpawelek.com"

    # Mail provider (SMTP relay, e.g. SES). Optional until something is sent.
    smtp_host: str = "email-smtp.eu-west-1.amazonaws.com"
    smtp_port: int = 587
    smtp_timeout: int = 30
    smtp_username: SecretStr | None = None
    smtp_password: SecretStr | None = None
    mail_from: str | None = None  # Verified from-address, "Name <addr>" allowed
    contact_to: str | None = None

    # Admin basic auth. Missing values mean the admin endpoints reject everyone.
    admin_user: str | None = None
    admin_password: SecretStr | None = None

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "portfolio"
    db_user: str = "portfolio"
    db_password: SecretStr | None = None
    db_pool_size: int = 5
    db_pool_max_overflow: int = 10

    # Blob storage for issue attachments
    gcs_bucket: str | None = None

    # Token lifecycle
    confirm_token_ttl_hours: int = 24
    unsubscribe_token_ttl_days: int = 365
    latest_issue_url_ttl_days: int = 7

    # Bulk send
    send_max_attempts: int = 4
    send_backoff_seconds: float = 0.7
    send_throttle_seconds: float = 0.6
    max_attachment_bytes: int = 10 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @property
    def database_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        password = self.db_password.get_secret_value() if self.db_password else ""
        return f"postgresql+asyncpg://{self.db_user}:{password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def database_url_sync(self) -> str:
        """Build sync PostgreSQL connection URL (for Alembic)."""
        password = self.db_password.get_secret_value() if self.db_password else ""
        return (
            f"postgresql://{self.db_user}:{password}@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    def require(self, *names: str) -> None:
        """Fail fast when any of the named settings is missing.

        Raises:
            ConfigError: Naming the first unset value.
        """
        for name in names:
            value = getattr(self, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if not value:
                raise ConfigError(f"Missing {name.upper()} env var.")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded from environment variables and .env file.
    Mail, storage and admin credentials are optional at load time and are
    checked by the operations that need them.
    """
    return Settings()
