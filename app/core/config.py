"""
Configuration management for the biometric sync service
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Required settings
    DATABASE_URL: str = Field(..., description="PostgreSQL database URL")
    JWT_SECRET_KEY: str = Field(..., description="JWT secret key for token verification")

    # Optional settings with defaults
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_EXPIRE_MINUTES: int = Field(default=120, description="JWT token expiration in minutes")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # CORS settings
    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins. Use '*' for local only."
    )

    # Terminals report wall-clock time without an offset; this is the zone they run in
    DEVICE_TIMEZONE: str = Field(default="Asia/Manila", description="Timezone of the biometric terminals")

    # Terminal network defaults and bounds
    DEVICE_DEFAULT_PORT: int = Field(default=4370, description="Default ZK protocol port")
    DEVICE_DEFAULT_INPORT: int = Field(default=5200, description="Default inbound port when a device has none")
    DEVICE_DEFAULT_TIMEOUT_MS: int = Field(default=15000, description="Default device timeout in milliseconds")
    DEVICE_MIN_TIMEOUT_MS: int = Field(default=1000, description="Lowest accepted device timeout in milliseconds")
    DEVICE_MAX_TIMEOUT_MS: int = Field(default=60000, description="Highest accepted device timeout in milliseconds")
    DEVICE_ENROLL_TIMEOUT_MS: int = Field(
        default=200000,
        description="How long a remote enroll waits for the three fingerprint scans, in milliseconds"
    )

    # Sync pipeline
    SYNC_PREVIEW_LIMIT: int = Field(default=800, description="Maximum prepared lines kept in a batch preview")

    # Enrollment sessions
    ENROLLMENT_SESSION_TTL_SECONDS: int = Field(
        default=300,
        description="Seconds an enrollment session waits for a new fingerprint before it expires"
    )

    # Key material for device comm keys at rest; falls back to JWT_SECRET_KEY
    BIOMETRIC_CREDENTIAL_SECRET: Optional[str] = Field(
        default=None,
        description="Secret used to encrypt stored device comm keys"
    )

    # Version (can be git SHA or semver)
    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("DEVICE_TIMEZONE")
    @classmethod
    def validate_device_timezone(cls, v: str) -> str:
        """Validate DEVICE_TIMEZONE is a known IANA zone"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"DEVICE_TIMEZONE '{v}' is not a known timezone")
        return v

    @field_validator("SYNC_PREVIEW_LIMIT", "ENROLLMENT_SESSION_TTL_SECONDS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    def validate_production(self) -> None:
        """
        Validate settings for production environment

        Raises:
            ValueError: If production settings are invalid
        """
        if self.APP_ENV == "prod":
            # JWT_SECRET_KEY must be at least 32 characters in production
            if len(self.JWT_SECRET_KEY) < 32:
                raise ValueError(
                    "JWT_SECRET_KEY must be at least 32 characters in production environment"
                )

            # ALLOWED_ORIGINS must not be wildcard in production
            if self.ALLOWED_ORIGINS == "*" or not self.ALLOWED_ORIGINS:
                raise ValueError(
                    "ALLOWED_ORIGINS must be explicitly set (not '*') in production environment"
                )

    def get_allowed_origins_list(self) -> List[str]:
        """
        Get list of allowed CORS origins

        Returns:
            List of allowed origins (or ['*'] for local)
        """
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    def get_credential_secret(self) -> str:
        """Secret used to derive the device comm key encryption key"""
        return self.BIOMETRIC_CREDENTIAL_SECRET or self.JWT_SECRET_KEY


# Create settings instance
settings = Settings()

# Validate production settings if in prod
if settings.APP_ENV == "prod":
    settings.validate_production()
