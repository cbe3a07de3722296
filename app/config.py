"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_REWARD_PLATFORMS = ("admob", "applovin", "ironsource")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Ad Rewards API"
    api_version: str = "0.1.0"
    api_description: str = "Rewarded-ad server-side verification and entitlements"

    # Peers whose X-Forwarded-Proto is honoured (comma-separated, "*" for any)
    TRUSTED_PROXY_IPS: str = "127.0.0.1"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "ad-rewards-api"
    environment: str = "production"

    # Reward platforms accepted by the webhook endpoints (comma-separated)
    REWARD_PLATFORMS: str = "admob,applovin,ironsource"

    # AdMob SSV - Google publishes the verifier keys as JSON
    ADMOB_KEYS_URL: str = "https://www.gstatic.com/admob/reward/verifier-keys.json"
    ADMOB_KEY_CACHE_TTL_SECONDS: int = 86400
    ADMOB_KEY_FETCH_TIMEOUT_SECONDS: float = 10.0
    ADMOB_KEY_MIN_REFRESH_SECONDS: int = 60  # Floor between forced refreshes on unknown key_id

    # AppLovin MAX S2S - signing key from the MAX dashboard
    APPLOVIN_SIGNING_KEY: str = ""

    # IronSource SSV - private key from the ironSource dashboard
    IRONSOURCE_PRIVATE_KEY: str = ""

    # Rewards
    REWARD_CONFIG_ID: str = "default"
    IDEMPOTENCY_TTL_DAYS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def reward_platforms(self) -> list[str]:
        """Enabled reward platforms, lowercased and de-duplicated in order."""
        platforms: list[str] = []
        for platform in self.REWARD_PLATFORMS.split(","):
            platform = platform.strip().lower()
            if platform and platform not in platforms:
                platforms.append(platform)
        return platforms

    @property
    def trusted_proxy_ips(self) -> list[str]:
        """Peers allowed to set X-Forwarded-Proto."""
        return [ip.strip() for ip in self.TRUSTED_PROXY_IPS.split(",") if ip.strip()]

    def _database_errors(self) -> list[str]:
        if not self.database_url:
            return ["DATABASE_URL is required but empty or missing"]
        if not self.database_url.startswith(("postgresql", "postgres")):
            # Idempotency claims rely on INSERT .. ON CONFLICT
            return [f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."]
        return []

    def _reward_errors(self) -> list[str]:
        errors: list[str] = []
        unknown = [p for p in self.reward_platforms if p not in KNOWN_REWARD_PLATFORMS]
        if unknown:
            errors.append(f"REWARD_PLATFORMS contains unknown platforms: {', '.join(unknown)}")
        if self.ADMOB_KEY_CACHE_TTL_SECONDS <= 0:
            errors.append("ADMOB_KEY_CACHE_TTL_SECONDS must be positive")
        if self.ADMOB_KEY_FETCH_TIMEOUT_SECONDS <= 0:
            errors.append("ADMOB_KEY_FETCH_TIMEOUT_SECONDS must be positive")
        if self.IDEMPOTENCY_TTL_DAYS <= 0:
            errors.append("IDEMPOTENCY_TTL_DAYS must be positive")
        if not self.REWARD_CONFIG_ID:
            errors.append("REWARD_CONFIG_ID cannot be empty")
        return errors

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: the app MUST NOT start with a broken database or reward setup.
        """
        errors = self._database_errors() + self._reward_errors()
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()
