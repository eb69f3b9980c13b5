"""
Card Reconciliation - Configuration Management

Centralized configuration for environment variables and engine tunables.
This module ensures:
- No hardcoded secrets
- Environment-specific settings (dev/staging/prod)
- Matching and fraud thresholds can be tuned without code changes
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (postgresql+asyncpg://...)"
    )

    # ==================== AUTHENTICATION ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary API key for internal service calls"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (for rotation)"
    )

    # ==================== CARD FEED ====================
    FEED_BASE_URL: str = Field(
        default="",
        description="Base URL of the card provider transaction feed"
    )
    FEED_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for a single feed request"
    )
    IMPORT_LOOKBACK_DAYS: int = Field(
        default=30,
        description="Default import window when no start date is given"
    )

    # ==================== MATCHING ====================
    AUTO_MATCH_THRESHOLD: float = Field(
        default=0.95,
        description="Minimum match score for linking without review"
    )
    MIN_MATCH_SCORE: float = Field(
        default=0.60,
        description="Minimum match score for a pair to be a candidate"
    )
    PARALLEL_MATCH_THRESHOLD: int = Field(
        default=2000,
        description="Candidate pair count above which scoring fans out to workers"
    )
    MATCH_WORKERS: int = Field(
        default=4,
        description="Worker count for parallel candidate scoring"
    )

    # ==================== FRAUD ====================
    FRAUD_ALERT_THRESHOLD: int = Field(
        default=50,
        description="Individual check risk above which an alert is raised"
    )
    CARD_HOME_COUNTRY: str = Field(
        default="BR",
        description="Home country used when a card does not declare one"
    )

    # ==================== RECONCILIATION ====================
    UNMATCHED_AFTER_DAYS: int = Field(
        default=7,
        description="Age after which an unlinked transaction becomes an issue"
    )
    SWEEP_TIMEOUT_SECONDS: float = Field(
        default=300.0,
        description="Upper bound for a full-tenant reconciliation sweep"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Corporate Card Reconciliation API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def internal_api_keys(self) -> List[str]:
        keys = []
        if self.INTERNAL_API_KEY:
            keys.append(self.INTERNAL_API_KEY)
        if self.INTERNAL_API_KEYS:
            keys.extend(k.strip() for k in self.INTERNAL_API_KEYS.split(",") if k.strip())
        return keys

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        for name in ("AUTO_MATCH_THRESHOLD", "MIN_MATCH_SCORE"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"{name} must be between 0 and 1 (got {value})")

        if self.MIN_MATCH_SCORE > self.AUTO_MATCH_THRESHOLD:
            errors.append("MIN_MATCH_SCORE cannot exceed AUTO_MATCH_THRESHOLD")

        if not 0 <= self.FRAUD_ALERT_THRESHOLD <= 100:
            errors.append("FRAUD_ALERT_THRESHOLD must be between 0 and 100")

        if self.is_production:
            if not self.DATABASE_URL:
                errors.append("DATABASE_URL is required")
            elif "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if not self.internal_api_keys:
                errors.append("INTERNAL_API_KEY is required")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
    }

    if not settings.DATABASE_URL:
        status["warnings"].append("DATABASE_URL not set - SQL repositories unavailable")
    if not settings.SENTRY_DSN:
        status["warnings"].append("Error tracking disabled")
    if not settings.FEED_BASE_URL:
        status["warnings"].append("Card feed not configured - imports disabled")

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
