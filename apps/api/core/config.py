"""
Settings for the Stakewise API, read from the environment (and .env).

SECRET_KEY has no default: the process refuses to start without one.
Payment gateway credentials are optional here; a gateway that is used
without its credentials fails the request with 503 instead.
"""
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Postgres in deployment; DATABASE_URL overrides the parts (tests use SQLite)
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "stakewise"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    REDIS_URL: str = "redis://redis:6379/0"

    SECRET_KEY: str = Field(
        default=...,
        description="JWT signing key, at least 32 characters "
        "(python -c \"import secrets; print(secrets.token_urlsafe(32))\")",
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_RELOAD: bool = False
    # Comma-separated; required outside development
    CORS_ORIGINS: Optional[str] = None

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json | text

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60

    # Stakes
    PAYMENT_PROVIDER: str = "stripe"  # default when a goal names none: stripe | paypal
    STAKE_CURRENCY: str = "usd"
    MAX_STAKE_AMOUNT: float = 10000.0
    MAX_GOAL_DURATION_DAYS: int = 365
    EXTERNAL_API_TIMEOUT: int = 30

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_API_VERSION: str = "2024-06-20"

    PAYPAL_CLIENT_ID: Optional[str] = None
    PAYPAL_CLIENT_SECRET: Optional[str] = None
    PAYPAL_API_BASE: Optional[str] = None

    # Submission evidence
    UPLOAD_BACKEND: str = "local"  # local | s3
    UPLOAD_DIR: str = "uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    S3_BUCKET_NAME: Optional[str] = None
    S3_REGION: Optional[str] = None
    AWS_ACCESS_KEY: Optional[str] = None
    AWS_SECRET_KEY: Optional[str] = None

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def paypal_api_base(self) -> str:
        """Live API in production, sandbox everywhere else, unless overridden."""
        if self.PAYPAL_API_BASE:
            return self.PAYPAL_API_BASE.rstrip("/")
        if self.ENVIRONMENT == "production":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


settings = Settings()
