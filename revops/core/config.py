"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Any, Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from revops.engine.policy import Policy

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # HubSpot (pipeline metadata only)
    HUBSPOT_ACCESS_TOKEN: SecretStr = SecretStr("")
    HUBSPOT_API_URL: str = "https://api.hubapi.com"
    HUBSPOT_TIMEOUT_SECONDS: float = 10.0

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Scheduler
    ENABLE_SCHEDULER: bool = False
    DIGEST_CRON_HOUR: int = 7
    DIGEST_TIMEZONE: str = "America/New_York"

    # AEs included in dashboards and digests (comma-separated emails)
    TARGET_AE_EMAILS: str = ""

    # Engine policy overrides; unset values keep the Policy defaults
    POLICY_HIGH_VALUE_THRESHOLD: float | None = None
    POLICY_DEFAULT_QUOTA: float | None = None
    POLICY_DEFAULT_AVG_DEAL_SIZE: float | None = None
    POLICY_ACTIVITY_DROUGHT_DAYS: int | None = None
    POLICY_EXCEPTION_DROUGHT_DAYS: int | None = None
    POLICY_SEVERE_NEXT_STEP_OVERDUE_DAYS: int | None = None
    POLICY_HYGIENE_GRACE_DAYS: int | None = None
    POLICY_BEHIND_CUTOFF_PERCENT: float | None = None
    POLICY_WEEKLY_RAMP: str | None = None  # 13 comma-separated weights

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("DIGEST_CRON_HOUR")
    @classmethod
    def validate_digest_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("DIGEST_CRON_HOUR must be between 0 and 23")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def target_ae_emails_list(self) -> list[str]:
        """Get target AE emails as a lowercased list."""
        return [e.strip().lower() for e in self.TARGET_AE_EMAILS.split(",") if e.strip()]

    @property
    def is_configured(self) -> bool:
        """Check if required settings are configured."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value())

    @property
    def hubspot_configured(self) -> bool:
        """Check if HubSpot pipeline metadata can be fetched."""
        return bool(self.HUBSPOT_ACCESS_TOKEN.get_secret_value())

    def policy_overrides(self) -> dict[str, Any]:
        """Collect POLICY_* values that were set, keyed by Policy field name."""
        overrides: dict[str, Any] = {}
        for name, value in self.model_dump().items():
            if not name.startswith("POLICY_") or value is None:
                continue
            field = name.removeprefix("POLICY_").lower()
            if field == "weekly_ramp":
                value = tuple(float(w) for w in value.split(",") if w.strip())
            overrides[field] = value
        return overrides

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")

        if not self.hubspot_configured:
            logger.warning(
                "HUBSPOT_ACCESS_TOKEN not set; stage classification will use pattern matching"
            )

        # Fail fast on a malformed policy rather than on the first request.
        get_policy()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from the environment.
    """
    return Settings()


@lru_cache
def get_policy() -> Policy:
    """Build the engine Policy from defaults plus POLICY_* overrides.

    Raises:
        pydantic.ValidationError: If an override produces an invalid policy.
    """
    overrides = get_settings().policy_overrides()
    if overrides:
        logger.info("Applying engine policy overrides", extra={"fields": sorted(overrides)})
    return Policy(**overrides)


# Global settings instance - import this for easy access
settings = get_settings()
