from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


# Secrets that must never reach production
WEAK_SECRET_KEYS = {
    "development-secret-key-change-in-production",
    "changeme",
    "secret",
    "password",
    "test",
    "dev",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/repair_ledger"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    # Business identity (payment beneficiary and equipment code prefix)
    BUSINESS_NAME: str = "RJD"

    # Technician payment distribution policy
    TECHNICIAN_PAYMENT_CAP: Decimal = Decimal("250")
    TECHNICIAN_PAYMENT_ROUNDING_STEP: Decimal = Decimal("10")

    # Alerting thresholds
    OVERDUE_REPAIR_DAYS: int = 14
    PENDING_PAYMENTS_ALERT_THRESHOLD: float = 5000.0
    PENDING_PAYMENTS_HIGH_THRESHOLD: float = 10000.0
    HIGH_EXPENSE_RATIO: float = 0.7
    MONTHLY_INCOME_TARGET: float = 5000.0

    # strict: REPAIRED -> DELIVERED requires a COMPLETED payment
    # warn: allowed, but the response carries a warning
    DELIVERY_PAYMENT_POLICY: Literal["strict", "warn"] = "warn"

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Reject insecure configuration when running in production."""
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY must be changed in production")
            if len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production")
            self.DEBUG = False
            self.DOCS_ENABLED = False
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is never enabled in production."""
        return self.DEBUG and not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
