"""
Canonical path resolution for face-match.

Single source of truth for where config and local state files live.
Supports both dev mode (running from repo root) and installed mode (pip install).

All user-writable state goes under ~/.face-match/ (overridable via
$FACE_MATCH_DATA_HOME). In dev mode, config falls back to <repo>/config/.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _is_dev_mode() -> bool:
    """Detect whether we're running from a repo checkout vs pip install.

    In a pip install, face_match lives in site-packages and the frontend/ dir
    won't be a sibling of the package root.
    """
    # backend/src/face_match/paths.py -> backend/src/face_match -> backend/src -> backend -> repo root
    repo_root = Path(__file__).resolve().parent.parent.parent.parent
    return (repo_root / "frontend" / "app.py").is_file()


def get_repo_root() -> Optional[Path]:
    """Return the repo root path in dev mode, None in installed mode."""
    if not _is_dev_mode():
        return None
    return Path(__file__).resolve().parent.parent.parent.parent


def get_data_home() -> Path:
    """Return the base directory for all face-match user data.

    Default: ~/.face-match/
    Override: $FACE_MATCH_DATA_HOME
    """
    env = os.environ.get("FACE_MATCH_DATA_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".face-match"


def get_config_path() -> Path:
    """Return the path to config.json.

    Search order:
    1. $FACE_MATCH_CONFIG (if set)
    2. $FACE_MATCH_DATA_HOME/config.json or ~/.face-match/config.json (if exists)
    3. <repo>/config/config.json (dev mode, if exists)
    4. Falls back to the data home config.json (will be created by init)
    """
    explicit = os.environ.get("FACE_MATCH_CONFIG")
    if explicit:
        return Path(explicit).expanduser()

    data_home_config = get_data_home() / "config.json"
    if data_home_config.is_file():
        return data_home_config

    repo_root = get_repo_root()
    if repo_root is not None:
        repo_config = repo_root / "config" / "config.json"
        if repo_config.is_file():
            return repo_config

    return data_home_config


def get_default_database_url() -> str:
    """Return the SQLite URL used when no database is configured."""
    return f"sqlite:///{get_data_home() / 'face_match.db'}"


def get_default_storage_dir() -> Path:
    """Return the local photo storage directory."""
    repo_root = get_repo_root()
    if repo_root is not None:
        return repo_root / "data" / "photos"
    return get_data_home() / "data" / "photos"


def ensure_data_home() -> Path:
    """Create the data home directory structure if it doesn't exist.

    Returns the data home path.
    """
    data_home = get_data_home()
    data_home.mkdir(parents=True, exist_ok=True)
    (data_home / "data" / "photos").mkdir(parents=True, exist_ok=True)
    return data_home
