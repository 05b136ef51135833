import pytest
from pydantic import ValidationError

from hzsite.config import Settings

STRONG_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


def build_settings(monkeypatch, **env) -> Settings:
    monkeypatch.setenv("SECRET_KEY", STRONG_KEY)
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return Settings(_env_file=None)


def test_missing_secret_key_fails_closed(monkeypatch):
    with pytest.raises(ValidationError, match="secret_key|SECRET_KEY"):
        build_settings(monkeypatch, SECRET_KEY="")


def test_weak_secret_key_fails_closed(monkeypatch):
    with pytest.raises(ValidationError, match="secret_key|SECRET_KEY"):
        build_settings(monkeypatch, SECRET_KEY="changeme-in-production")


def test_low_entropy_secret_key_fails_closed(monkeypatch):
    with pytest.raises(ValidationError, match="entropy"):
        build_settings(monkeypatch, SECRET_KEY="ab" * 32)


def test_strong_secret_key_passes(monkeypatch):
    settings = build_settings(monkeypatch)

    assert settings.secret_key == STRONG_KEY
    assert settings.algorithm == "HS256"
    assert settings.session_cookie_secure is True
    assert settings.session_cookie_samesite == "lax"


@pytest.mark.parametrize("algorithm", ["none", "RS256", "ES256"])
def test_non_hmac_algorithm_fails_closed(monkeypatch, algorithm):
    with pytest.raises(ValidationError, match="ALGORITHM"):
        build_settings(monkeypatch, ALGORITHM=algorithm)


def test_algorithm_is_normalized(monkeypatch):
    assert build_settings(monkeypatch, ALGORITHM="hs512").algorithm == "HS512"


def test_invalid_samesite_is_rejected(monkeypatch):
    with pytest.raises(ValidationError, match="SAMESITE"):
        build_settings(monkeypatch, SESSION_COOKIE_SAMESITE="sometimes")


def test_admin_email_is_case_folded(monkeypatch):
    assert build_settings(monkeypatch, ADMIN_EMAIL=" Owner@Example.COM ").admin_email == "owner@example.com"


def test_blank_provider_settings_mean_unconfigured(monkeypatch):
    settings = build_settings(monkeypatch, GOOGLE_CLIENT_ID="", SUPABASE_URL="  ", SMTP_HOST="")

    assert settings.google_client_id is None
    assert settings.supabase_url is None
    assert settings.smtp_host is None
