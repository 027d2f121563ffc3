from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Court Reservations API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Hosted Postgres gives postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Venue wall clock; slot times and "today" are evaluated here
    VENUE_TIMEZONE: str = "America/Santiago"

    # How long an online reservation holds its slot while waiting for payment
    PENDING_HOLD_MINUTES: int = 15

    # Transport failures against the store are retried this many times before surfacing
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.2

    # memory|redis. Use redis when more than one API process serves availability streams.
    CHANGE_FEED_BACKEND: str = "memory"

    # QR code storage
    QR_LOCAL_DIR: str = "./data/qr_codes"
    GCS_BUCKET_NAME: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""

    # Payment gateway (HMAC-signed JSON API)
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_MERCHANT_ID: str = ""
    PAYMENT_SECRET_KEY_B64: str = ""
    PAYMENT_TIMEOUT_SECONDS: int = 25
    PAYMENT_SANDBOX: bool = False  # If True, skip the gateway call and approve every charge/refund (dev only)


settings = Settings()
