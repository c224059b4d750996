import logging
import os

import pytest
import structlog

from chatsync.config import get_settings
from chatsync.services.sync_engine import LoginOptions
from chatsync.services.sync_engine import LogoutOptions
from chatsync.utils.log import configure_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CHATSYNC_ENV_FILE", str(tmp_path / "missing.env"))
    for name in (
        "CHATSYNC_DATABASE_URL",
        "CHATSYNC_BACKEND_URL",
        "CHATSYNC_HTTP_TIMEOUT",
        "CHATSYNC_SYNC_INTERVAL_SECONDS",
        "CHATSYNC_PAGE_SIZE",
        "CHATSYNC_EXCLUDE_DELETED",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = get_settings()

    assert settings.testing is True
    assert settings.database_url == "sqlite:///./chatsync.db"
    assert settings.backend_url == "http://localhost:3000"
    assert settings.sync_interval_seconds == 60
    assert settings.page_size == 200
    assert settings.exclude_deleted is True
    assert settings.http_timeout_seconds == 30
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CHATSYNC_BACKEND_URL", "https://chat.example.com")
    monkeypatch.setenv("CHATSYNC_PAGE_SIZE", "50")
    monkeypatch.setenv("CHATSYNC_SYNC_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("CHATSYNC_EXCLUDE_DELETED", "no")

    settings = get_settings()

    assert settings.backend_url == "https://chat.example.com"
    assert settings.page_size == 50
    assert settings.sync_interval_seconds == 2.5
    assert settings.exclude_deleted is False


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    env_file = tmp_path / "chatsync.env"
    env_file.write_text("CHATSYNC_PAGE_SIZE=25\n")
    monkeypatch.setenv("CHATSYNC_ENV_FILE", str(env_file))

    try:
        assert get_settings().page_size == 25
    finally:
        os.environ.pop("CHATSYNC_PAGE_SIZE", None)


@pytest.mark.parametrize("raw", ["0", "-3", "lots"])
def test_invalid_page_size(monkeypatch, raw):
    monkeypatch.setenv("CHATSYNC_PAGE_SIZE", raw)
    with pytest.raises(RuntimeError, match="CHATSYNC_PAGE_SIZE"):
        get_settings()


def test_override_rejects_unknown_fields():
    settings = get_settings()
    settings.override(page_size=10)
    assert settings.page_size == 10

    with pytest.raises(AttributeError):
        settings.override(page_sise=10)


def test_options_from_settings(monkeypatch):
    monkeypatch.setenv("CHATSYNC_PAGE_SIZE", "75")

    login = LoginOptions.from_settings("u1", credential="token")
    logout = LogoutOptions.from_settings("u1")

    assert login.page_size == 75
    assert login.sync_interval_seconds == 60
    assert login.credential == "token"
    assert login.migrations == {}
    assert logout.page_size == 75


def test_configure_logging_sets_levels():
    try:
        configure_logging("WARNING", json=False)
        assert logging.getLogger("chatsync").level == logging.WARNING

        with pytest.raises(ValueError):
            configure_logging("LOUD")
    finally:
        structlog.reset_defaults()
        logging.getLogger("chatsync").setLevel(logging.NOTSET)


def test_configure_logging_defaults_to_log_level_setting(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "error")
    try:
        configure_logging(json=False)
        assert logging.getLogger("chatsync").level == logging.ERROR
    finally:
        structlog.reset_defaults()
        logging.getLogger("chatsync").setLevel(logging.NOTSET)
