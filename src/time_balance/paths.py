"""Helpers for locating application directories."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "TimeBalance"
APP_AUTHOR = "TimeBalance"


def get_data_dir() -> Path:
    """Return the base directory for persistent data."""
    dirs = PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)
    path = Path(dirs.user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / "account.sqlite3"


def get_defaults_override_path(variant: str) -> Path:
    """User file that replaces the packaged default meters when present."""
    return get_data_dir() / f"{variant}s.json"


def get_sync_dir() -> Path:
    path = get_data_dir() / "sync"
    path.mkdir(parents=True, exist_ok=True)
    return path
