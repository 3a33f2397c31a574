"""
Tests for configuration validation
"""
import pytest
from pydantic import ValidationError
from app.core.config import Settings


def test_prod_settings_rejects_wildcard_origins():
    """Test that production settings reject wildcard origins"""
    settings = Settings(
        DATABASE_URL="postgresql://test",
        JWT_SECRET_KEY="a" * 32,
        APP_ENV="prod",
        ALLOWED_ORIGINS="*"
    )

    with pytest.raises(ValueError, match="ALLOWED_ORIGINS"):
        settings.validate_production()


def test_prod_settings_rejects_short_jwt_secret():
    """Test that production settings reject short JWT secret"""
    settings = Settings(
        DATABASE_URL="postgresql://test",
        JWT_SECRET_KEY="short",
        APP_ENV="prod",
        ALLOWED_ORIGINS="https://example.com"
    )

    with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
        settings.validate_production()


def test_local_settings_allows_wildcard_origins():
    """Test that local settings allow wildcard origins"""
    settings = Settings(
        DATABASE_URL="postgresql://test",
        JWT_SECRET_KEY="test-key",
        APP_ENV="local",
        ALLOWED_ORIGINS="*"
    )

    settings.validate_production()
    assert settings.get_allowed_origins_list() == ["*"]


def test_get_allowed_origins_list():
    """Test parsing of ALLOWED_ORIGINS"""
    settings = Settings(
        DATABASE_URL="postgresql://test",
        JWT_SECRET_KEY="test-key",
        ALLOWED_ORIGINS="https://example.com, https://app.example.com"
    )
    origins = settings.get_allowed_origins_list()
    assert origins == ["https://example.com", "https://app.example.com"]


def test_device_defaults():
    """Terminal defaults match the ZK protocol conventions"""
    settings = Settings(DATABASE_URL="postgresql://test", JWT_SECRET_KEY="test-key")

    assert settings.DEVICE_DEFAULT_PORT == 4370
    assert settings.DEVICE_DEFAULT_INPORT == 5200
    assert settings.DEVICE_MIN_TIMEOUT_MS == 1000
    assert settings.SYNC_PREVIEW_LIMIT == 800
    assert settings.DEVICE_TIMEZONE == "Asia/Manila"


def test_unknown_device_timezone_rejected():
    """DEVICE_TIMEZONE must be a real IANA zone"""
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="postgresql://test", JWT_SECRET_KEY="test-key", DEVICE_TIMEZONE="Mars/Olympus")


def test_credential_secret_falls_back_to_jwt_secret():
    """Comm key encryption uses its own secret when set, else the JWT secret"""
    settings = Settings(DATABASE_URL="postgresql://test", JWT_SECRET_KEY="jwt-secret")
    assert settings.get_credential_secret() == "jwt-secret"

    settings = Settings(
        DATABASE_URL="postgresql://test",
        JWT_SECRET_KEY="jwt-secret",
        BIOMETRIC_CREDENTIAL_SECRET="device-secret"
    )
    assert settings.get_credential_secret() == "device-secret"
