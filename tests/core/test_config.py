"""Tests for application settings (trustdesk/core/config.py)."""

from __future__ import annotations

import pytest

from trustdesk.core.config import Settings, get_settings


class TestSettings:
    """Tests for Settings defaults and validators."""

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.app_name == "TrustDesk"
        assert settings.session_cookie_name == "trustdesk_session"
        assert settings.session_cookie_secure is True
        assert settings.dsr_dual_control is True

    def test_database_url_built_from_components(self) -> None:
        settings = Settings(
            database_url=None,
            postgres_user="u",
            postgres_password="p",
            postgres_host="db",
            postgres_port=6543,
            postgres_db="crm",
        )
        assert settings.database_url == "postgresql+asyncpg://u:p@db:6543/crm"

    def test_explicit_database_url_kept(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite://")
        assert settings.database_url == "sqlite+aiosqlite://"

    def test_cors_origins_from_json_string(self) -> None:
        settings = Settings(cors_origins='["https://a.example", "https://b.example"]')
        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_cors_origins_from_comma_string(self) -> None:
        settings = Settings(cors_origins="https://a.example, https://b.example")
        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_dual_control_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DSR_DUAL_CONTROL", "false")
        assert Settings().dsr_dual_control is False


class TestJwtVerificationKeys:
    """Tests for key rotation support."""

    def test_single_key(self) -> None:
        settings = Settings(jwt_secret_key="only", jwt_secret_keys="")
        assert settings.jwt_verification_keys == ["only"]

    def test_rotation_list(self) -> None:
        settings = Settings(jwt_secret_key="ignored", jwt_secret_keys="new, old ,")
        assert settings.jwt_verification_keys == ["new", "old"]

    def test_blank_rotation_list_falls_back(self) -> None:
        settings = Settings(jwt_secret_key="only", jwt_secret_keys=" , ")
        assert settings.jwt_verification_keys == ["only"]


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
