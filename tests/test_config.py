import pytest

from app.core.config import Settings, get_settings


def test_settings_singleton():
    """get_settings returns the same cached instance"""
    assert get_settings() is get_settings()


def test_defaults():
    s = Settings(_env_file=None)
    assert s.API_PREFIX == "/api"
    assert s.CURRENCY == "MXN"
    assert s.MP_PROVIDER_TAG == "MP"
    assert s.MP_API_URL == "https://api.mercadopago.com"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db:5432/shop", "postgresql+asyncpg://u:p@db:5432/shop"),
        ("postgres://u:p@db/shop", "postgresql+asyncpg://u:p@db/shop"),
        ("postgresql+asyncpg://u:p@db/shop", "postgresql+asyncpg://u:p@db/shop"),
        ("sqlite:///./app.db", "sqlite+aiosqlite:///./app.db"),
    ],
)
def test_async_url_normalisation(url, expected):
    s = Settings(_env_file=None, DATABASE_URL=url)
    assert s.sqlalchemy_async_url == expected


def test_sqlite_fallback_without_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    s = Settings(_env_file=None)
    assert s.sqlalchemy_async_url.startswith("sqlite+aiosqlite:///")
    assert s.is_sqlite


def test_whatsapp_number_digits_only():
    s = Settings(_env_file=None, WHATSAPP_BUSINESS_NUMBER="+52 (55) 1234-5678")
    assert s.WHATSAPP_BUSINESS_NUMBER == "525512345678"


def test_cors_origins_from_csv(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test")
    s = Settings(_env_file=None)
    assert s.CORS_ORIGINS == ["https://a.test", "https://b.test"]


def test_dump_settings_safe_masks_secrets():
    s = Settings(_env_file=None, MP_ACCESS_TOKEN="APP_USR-123456789", ADMIN_API_KEY="supersecretkey")
    dumped = s.dump_settings_safe()
    assert dumped["MP_ACCESS_TOKEN"] != "APP_USR-123456789"
    assert "***" in dumped["MP_ACCESS_TOKEN"]
    assert dumped["ADMIN_API_KEY"] == "sup***key"


def test_production_rejects_sqlite():
    s = Settings(_env_file=None, ENVIRONMENT="production", DATABASE_URL="sqlite:///./app.db")
    with pytest.raises(ValueError):
        s.check_database_url()
