"""
Configuration management for twofa_service
Uses pydantic-settings for environment variable loading and validation
"""

from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "twofa_service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # API
    API_V1_PREFIX: str = "/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./twofa_service.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_POOL_SIZE: int = 50

    # Encryption (32-byte key, hex or base64 encoded)
    TWO_FACTOR_ENCRYPTION_KEY: Optional[str] = None

    # TOTP
    TOTP_ISSUER: str = "Auth App"
    TOTP_DIGITS: int = 6
    TOTP_INTERVAL_SECONDS: int = 30
    TOTP_TOLERANCE_WINDOWS: int = Field(default=1, ge=0)
    TOTP_FALLBACK_TOLERANCE_WINDOWS: int = Field(default=4, ge=0)
    TOTP_DIAGNOSTIC_WINDOWS: int = Field(default=4, ge=0)
    TOTP_LOGIN_ALLOW_FALLBACK: bool = False

    # Backup codes
    BACKUP_CODE_COUNT: int = Field(default=10, gt=0)
    BACKUP_CODE_LENGTH: int = Field(default=8, gt=0)

    # Step-up verification during sign-in
    STEP_UP_SESSION_TTL_SECONDS: int = 300
    STEP_UP_MAX_ATTEMPTS: int = Field(default=5, gt=0)

    # CORS
    CORS_ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # 'json' or 'text'

    # Feature Flags
    FEATURE_TOTP_DEBUG_ENDPOINT: bool = False

    @field_validator("CORS_ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated string to list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        if v.lower() not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v.lower()

    @field_validator("TOTP_FALLBACK_TOLERANCE_WINDOWS")
    @classmethod
    def fallback_wider_than_default(cls, v, info):
        normal = info.data.get("TOTP_TOLERANCE_WINDOWS", 1)
        if v < normal:
            raise ValueError("TOTP_FALLBACK_TOLERANCE_WINDOWS must not be smaller than TOTP_TOLERANCE_WINDOWS")
        return v


# Global settings instance
settings = Settings()
