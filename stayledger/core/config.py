from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "StayLedger"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./stayledger.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def pin_postgres_driver(cls, v: str) -> str:
        """Point driverless PostgreSQL URLs at psycopg2, the driver this package ships with."""
        scheme, sep, rest = (v or "").partition("://")
        if sep and scheme in ("postgres", "postgresql"):
            return f"postgresql+psycopg2://{rest}"
        return v

    REDIS_URL: str = "redis://localhost:6379/0"
    # certificate policy for rediss:// URLs that do not set ssl_cert_reqs themselves
    REDIS_SSL_CERT_REQS: str = "CERT_REQUIRED"
    CELERY_TIMEZONE: str = "UTC"

    # Atomic units: bounded retries on lock/serialization conflicts
    ATOMIC_MAX_RETRIES: int = 5
    ATOMIC_RETRY_BACKOFF_MS: int = 20
    LOCK_TIMEOUT_SECONDS: int = 5

    BOOKING_HOLD_MINUTES: int = 15
    BOOKING_CODE_PREFIX: str = "BK"
    INVOICE_CODE_PREFIX: str = "INV"
    FOLIO_CODE_PREFIX: str = "FL"
    CURRENCY: str = "VND"  # amounts are stored in integer minor units of this currency

    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    @field_validator("ATOMIC_MAX_RETRIES", "LOCK_TIMEOUT_SECONDS", mode="after")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


settings = Settings()
