"""
Reconciliation Service - Configuration Management

All runtime settings come from the environment (or a local .env file):
- database and CORS settings per deployment
- candidate date window and balance tolerances, tunable per deployment
- observability (log level, Sentry)
"""

from decimal import Decimal
from functools import lru_cache
from typing import List
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LOCAL_FRONTEND_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


class Settings(BaseSettings):
    """
    Environment-backed settings for the reconciliation API.
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
        description="development | staging | production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Expose OpenAPI docs and error tracebacks outside development"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="postgresql+asyncpg:// URL holding bank_transactions and ledger_transactions"
    )
    DATABASE_SSL: bool = Field(
        default=True,
        description="Require SSL on database connections"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated origins of the reconciliation UI"
    )

    # ==================== RECONCILIATION ====================
    RECON_DATE_WINDOW_DAYS: int = Field(
        default=3,
        ge=0,
        description="Max days between bank and ledger dates for a candidate"
    )
    RECON_BALANCE_TOLERANCE: Decimal = Field(
        default=Decimal("0.01"),
        description="Largest statement/book difference still considered balanced"
    )
    RECON_VARIANCE_ALERT_PERCENT: Decimal = Field(
        default=Decimal("10"),
        description="Statement balance movement (%) that raises a variance alert"
    )
    RECON_SESSION_TTL_MINUTES: int = Field(
        default=480,
        ge=1,
        description="Idle minutes before an open session is dropped"
    )
    RECON_MAX_SESSIONS: int = Field(
        default=500,
        ge=1,
        description="Open sessions kept in memory; the least recently used is evicted beyond this"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Error tracking is off when empty"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level name"
    )

    # ==================== API ====================
    API_TITLE: str = Field(default="Bank Reconciliation API")
    API_VERSION: str = Field(default="1.0.0")

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Sorted allowed origins. "*" is ignored; the local frontend dev
        servers are added everywhere except production.
        """
        configured = {
            origin.strip() for origin in self.CORS_ORIGINS.split(",")
            if origin.strip() and origin.strip() != "*"
        }
        if not self.is_production:
            configured.update(LOCAL_FRONTEND_ORIGINS)
        return sorted(configured)

    @property
    def debug_enabled(self) -> bool:
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Return the configuration problems that block a production start.
        DATABASE_URL is checked in every environment.
        """
        problems = []

        if not self.DATABASE_URL:
            problems.append("DATABASE_URL is required")

        if self.is_production:
            if self.CORS_ORIGINS.strip() == "*":
                problems.append("CORS_ORIGINS cannot be '*' in production")
            if "localhost" in self.DATABASE_URL.lower():
                problems.append("DATABASE_URL cannot point to localhost in production")
            if self.DEBUG:
                problems.append("DEBUG should be False in production")

        return problems


@lru_cache()
def get_settings() -> Settings:
    """
    Load settings once per process.

    Raises:
        ValueError: production configuration is incomplete
    """
    settings = Settings()
    logger.info(
        f"Environment: {settings.ENVIRONMENT}, "
        f"candidate date window: {settings.RECON_DATE_WINDOW_DAYS} days"
    )

    if settings.is_production:
        problems = settings.validate_production_config()
        if problems:
            raise ValueError(f"Production configuration invalid: {', '.join(problems)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """Keyword arguments for CORSMiddleware."""
    return {
        "allow_origins": get_settings().cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Accept",
            "X-Internal-Api-Key",
            "X-User-Id",
            "X-Request-ID",
        ],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Startup check used by the application lifespan.

    Missing optional services are warnings; production problems are errors
    and mark the result invalid.
    """
    settings = get_settings()

    warnings = []
    if not settings.SENTRY_DSN:
        warnings.append("SENTRY_DSN not set: error tracking disabled")
    if not settings.DATABASE_URL:
        warnings.append("DATABASE_URL not set: session load/save endpoints disabled")

    errors = settings.validate_production_config() if settings.is_production else []

    return {
        "valid": not errors,
        "environment": settings.ENVIRONMENT,
        "errors": errors,
        "warnings": warnings,
    }
