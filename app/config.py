from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/feedback_engine"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_SLOW_QUERY_MS: int = 500

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Cache
    REDIS_URL: str | None = None
    ANALYTICS_CACHE_TTL: int = 60
    ANALYTICS_CACHE_TAG: str = "analytics-full"

    # WhatsApp Cloud API
    WHATSAPP_API_TOKEN: str | None = None
    WHATSAPP_PHONE_ID: str | None = None
    WHATSAPP_API_VERSION: str = "v17.0"
    WHATSAPP_API_BASE_URL: str = "https://graph.facebook.com"
    WHATSAPP_TIMEOUT_SECONDS: float = 10.0
    WHATSAPP_LANGUAGE_CODE: str = "es_MX"
    WHATSAPP_ALERT_TEMPLATE: str = "new_survey_alertt"
    WHATSAPP_RECOVERY_TEMPLATE: str = "recovery_offer_v1"

    # Email (Brevo)
    BREVO_API_KEY: str | None = None
    EMAIL_FROM_ADDRESS: str = "alertas@happymeter.app"
    EMAIL_FROM_NAME: str = "HappyMeter"

    # Dispatch worker pool
    DISPATCH_MAX_WORKERS: int = 4
    DISPATCH_QUEUE_SIZE: int = 1000

    # Scheduled alerts
    ALERTS_SCHEDULER_ENABLED: bool = False
    ALERTS_DAILY_HOUR: int = 9

    # Error tracking
    SENTRY_DSN: str | None = None

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is never enabled in production."""
        return self.DEBUG and not self.is_production

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.WHATSAPP_API_TOKEN) and bool(self.WHATSAPP_PHONE_ID)

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
