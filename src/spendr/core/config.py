from __future__ import annotations

from dataclasses import dataclass
import os

DEFAULT_DATABASE_URL = "sqlite:///spendr.db"
LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
MAX_SYNC_PAGE_SIZE = 500


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Process configuration loaded at startup."""

    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    sync_page_size: int = MAX_SYNC_PAGE_SIZE


def load_app_config_from_env() -> AppConfig:
    """Load app config from env and validate startup requirements."""
    database_url = os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL

    log_level = os.environ.get("SPENDR_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(
            "SPENDR_LOG_LEVEL must be one of: " + ", ".join(sorted(LOG_LEVELS))
        )

    page_size_raw = os.environ.get("SPENDR_SYNC_PAGE_SIZE", str(MAX_SYNC_PAGE_SIZE))
    try:
        sync_page_size = int(page_size_raw.strip())
    except ValueError as e:
        raise ValueError(
            f"SPENDR_SYNC_PAGE_SIZE must be an integer, got {page_size_raw!r}"
        ) from e
    if not 1 <= sync_page_size <= MAX_SYNC_PAGE_SIZE:
        raise ValueError(
            f"SPENDR_SYNC_PAGE_SIZE must be between 1 and {MAX_SYNC_PAGE_SIZE}"
        )

    return AppConfig(
        database_url=database_url,
        log_level=log_level,
        sync_page_size=sync_page_size,
    )
