import pytest

from rendezvous.config import get_settings


def test_settings_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("DEFAULT_PAGE_SIZE", "20")
    monkeypatch.setenv("REALTIME_QUEUE_SIZE", "8")

    settings = get_settings()

    assert settings.testing is True
    assert settings.auth_disabled is True
    assert settings.default_page_size == 20
    assert settings.realtime_queue_size == 8


def test_production_settings_require_database_and_strong_secret(monkeypatch):
    monkeypatch.delenv("TESTING", raising=False)
    monkeypatch.delenv("AUTH_DISABLED", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("JWT_SECRET", "dev-secret")

    with pytest.raises(RuntimeError) as exc_info:
        get_settings()

    assert "DATABASE_URL" in str(exc_info.value)
    assert "JWT_SECRET" in str(exc_info.value)


def test_page_size_bounds_are_validated(monkeypatch):
    monkeypatch.setenv("TESTING", "0")
    monkeypatch.setenv("AUTH_DISABLED", "1")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./x.db")
    monkeypatch.setenv("DEFAULT_PAGE_SIZE", "500")
    monkeypatch.setenv("MAX_PAGE_SIZE", "100")

    with pytest.raises(RuntimeError, match="DEFAULT_PAGE_SIZE"):
        get_settings()
