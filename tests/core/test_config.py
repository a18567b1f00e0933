from __future__ import annotations

import pytest

from spendr.core.config import (
    DEFAULT_DATABASE_URL,
    MAX_SYNC_PAGE_SIZE,
    AppConfig,
    load_app_config_from_env,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATABASE_URL", "SPENDR_LOG_LEVEL", "SPENDR_SYNC_PAGE_SIZE"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_env_is_empty() -> None:
    config = load_app_config_from_env()

    assert config == AppConfig(
        database_url=DEFAULT_DATABASE_URL,
        log_level="INFO",
        sync_page_size=MAX_SYNC_PAGE_SIZE,
    )


def test_reads_values_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://localhost/spendr")
    monkeypatch.setenv("SPENDR_LOG_LEVEL", "debug")
    monkeypatch.setenv("SPENDR_SYNC_PAGE_SIZE", " 100 ")

    # act
    config = load_app_config_from_env()

    # assert
    assert config.database_url == "postgresql+psycopg://localhost/spendr"
    assert config.log_level == "DEBUG"
    assert config.sync_page_size == 100


def test_blank_database_url_falls_back_to_default(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DATABASE_URL", "   ")

    assert load_app_config_from_env().database_url == DEFAULT_DATABASE_URL


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("SPENDR_LOG_LEVEL", "chatty", "SPENDR_LOG_LEVEL"),
        ("SPENDR_SYNC_PAGE_SIZE", "lots", "must be an integer"),
        ("SPENDR_SYNC_PAGE_SIZE", "0", "between 1 and 500"),
        ("SPENDR_SYNC_PAGE_SIZE", "501", "between 1 and 500"),
    ],
)
def test_invalid_values_raise(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        load_app_config_from_env()
