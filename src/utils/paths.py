"""File path resolution using platformdirs.

Server and field client keep their state under one data directory:
  CARGOPULSE_HOME when set (tests, containers)
  otherwise the platform user data dir:
    macOS: ~/Library/Application Support/cargopulse/
    Linux: ~/.local/share/cargopulse/
    Windows: %LOCALAPPDATA%/CargoPulse/cargopulse/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "cargopulse"
APP_AUTHOR = "CargoPulse"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, blobs, outbox)."""
    override = os.environ.get("CARGOPULSE_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=APP_AUTHOR))


def get_blob_dir() -> Path:
    """Return the directory for locally stored shipment assets."""
    return get_data_dir() / "blobs"


def get_default_db_path() -> Path:
    """Return the default server SQLite database file path."""
    return get_data_dir() / "cargopulse.db"


def get_outbox_db_path() -> Path:
    """Return the default on-device outbox database file path."""
    return get_data_dir() / "outbox.db"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    for d in [get_data_dir(), get_blob_dir()]:
        d.mkdir(parents=True, exist_ok=True)
