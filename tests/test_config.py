"""Tests for configuration helpers."""

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover
    sys.path.insert(0, str(ROOT))

from action_flows import config  # noqa: E402


def _seed_env(monkeypatch):
    monkeypatch.setenv("ADMIN_USER_IDS", "A1, A2 ,A3")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///local.db")
    monkeypatch.delenv("DEADLINE_WARNING_DAYS", raising=False)
    monkeypatch.delenv("DASHBOARD_LIMIT", raising=False)
    config.get_settings.cache_clear()


def test_get_settings_parses_expected_fields(monkeypatch):
    _seed_env(monkeypatch)

    settings = config.get_settings()

    assert settings.admin_user_ids == ["A1", "A2", "A3"]
    assert settings.database_url == "sqlite:///local.db"
    assert settings.deadline_warning_days == 3
    assert settings.dashboard_limit == 20
    config.get_settings.cache_clear()


def test_optional_settings_are_read_from_environment(monkeypatch):
    _seed_env(monkeypatch)
    monkeypatch.setenv("DEADLINE_WARNING_DAYS", "7")
    monkeypatch.setenv("DASHBOARD_LIMIT", "5")

    settings = config.get_settings()

    assert settings.deadline_warning_days == 7
    assert settings.dashboard_limit == 5
    config.get_settings.cache_clear()


def test_empty_admin_list_is_allowed(monkeypatch):
    _seed_env(monkeypatch)
    monkeypatch.setenv("ADMIN_USER_IDS", " , ")

    assert config.get_settings().admin_user_ids == []
    config.get_settings.cache_clear()


def test_missing_environment_variables_raise_runtime_error(monkeypatch):
    for var in ("ADMIN_USER_IDS", "DATABASE_URL"):
        monkeypatch.delenv(var, raising=False)
    config.get_settings.cache_clear()

    with pytest.raises(RuntimeError) as err:
        config.get_settings()

    message = str(err.value)
    assert "ADMIN_USER_IDS" in message
    assert "DATABASE_URL" in message
    config.get_settings.cache_clear()


def test_non_positive_warning_window_is_rejected(monkeypatch):
    _seed_env(monkeypatch)
    monkeypatch.setenv("DEADLINE_WARNING_DAYS", "0")

    with pytest.raises(RuntimeError) as err:
        config.get_settings()

    assert "Invalid configuration" in str(err.value)
    config.get_settings.cache_clear()
