"""Tests for settings loading."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from app.config import AppSettings, get_config, load_settings, reset_config, set_config


def test_defaults_when_file_missing(tmp_path):
    settings = load_settings(tmp_path / "missing.yaml")

    assert settings.messaging.default_page_size == 20
    assert settings.messaging.max_page_size == 50
    assert settings.identity.header_name == "X-User-Id"
    assert settings.identity.query_param == "userId"
    assert settings.logging.level == "info"


def test_load_from_yaml(tmp_path):
    path = tmp_path / "chat.settings.yaml"
    path.write_text(
        "server:\n"
        "  port: 9000\n"
        "messaging:\n"
        "  db_path: ':memory:'\n"
        "  max_page_size: 30\n"
        "logging:\n"
        "  level: DEBUG\n"
    )

    settings = load_settings(path)

    assert settings.server.port == 9000
    assert settings.messaging.db_path == ":memory:"
    assert settings.messaging.max_page_size == 30
    assert settings.logging.level == "debug"
    # Untouched sections keep defaults.
    assert settings.media.upload_dir == "uploads"


def test_empty_yaml_file(tmp_path):
    path = tmp_path / "chat.settings.yaml"
    path.write_text("")

    assert load_settings(path) == AppSettings()


def test_env_var_overrides_path(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("client:\n  page_size: 5\n")
    monkeypatch.setenv("CHAT_SETTINGS_FILE", str(path))

    assert load_settings().client.page_size == 5


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "chat.settings.yaml"
    path.write_text("messaging:\n  default_page_size: 0\n")

    with pytest.raises(PydanticValidationError):
        load_settings(path)


def test_invalid_log_level_rejected():
    with pytest.raises(PydanticValidationError):
        AppSettings(logging={"level": "verbose"})


def test_set_and_reset_config(tmp_path, monkeypatch):
    custom = AppSettings(server={"port": 1234})
    set_config(custom)
    assert get_config() is custom

    monkeypatch.setenv("CHAT_SETTINGS_FILE", str(tmp_path / "missing.yaml"))
    reset_config()
    assert get_config().server.port == 8000
