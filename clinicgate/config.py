# clinicgate/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Clinic Practice Manager", alias="APP_NAME")
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Database
    database_url: str = Field(default="sqlite:///./clinicgate.db", alias="DATABASE_URL")

    # Security
    secret_key: str = Field(..., alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    email_verification_expire_hours: int = Field(default=24, alias="EMAIL_VERIFICATION_EXPIRE_HOURS")

    # Rate limiting
    rate_limit_backend: str = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    auth_rate_limit_window_seconds: int = Field(default=15 * 60, alias="AUTH_RATE_LIMIT_WINDOW_SECONDS")
    auth_rate_limit_max_requests: int = Field(default=5, alias="AUTH_RATE_LIMIT_MAX_REQUESTS")
    general_rate_limit_window_seconds: int = Field(default=60, alias="GENERAL_RATE_LIMIT_WINDOW_SECONDS")
    general_rate_limit_max_requests: int = Field(default=60, alias="GENERAL_RATE_LIMIT_MAX_REQUESTS")
    rate_limit_cleanup_interval_seconds: int = Field(default=300, alias="RATE_LIMIT_CLEANUP_INTERVAL_SECONDS")

    # Email
    sendgrid_api_key: Optional[str] = Field(default=None, alias="SENDGRID_API_KEY")
    email_from: str = Field(default="no-reply@clinic.local", alias="EMAIL_FROM")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000", "http://localhost:8000"], alias="CORS_ORIGINS")

    # Logging
    log_json: bool = Field(default=True, alias="LOG_JSON")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000", "http://localhost:8000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite:///", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_rate_limit_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key)

    @property
    def redis_enabled(self) -> bool:
        return self.rate_limit_backend == "redis" and bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()
