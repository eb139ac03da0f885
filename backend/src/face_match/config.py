"""
Configuration loader for face-match.

Loads config.json (see paths.get_config_path), merges it over the built-in
defaults and applies environment variable overrides.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_config_path, get_default_database_url, get_default_storage_dir

logger = logging.getLogger(__name__)


def get_default_config() -> Dict[str, Any]:
    """
    Return default configuration.
    """
    return {
        "database": {
            "url": "",
        },
        "storage": {
            "backend": "local",
            "bucket": "",
            "region": "",
            "local_root": "",
            "public_base_url": "",
        },
        "vision": {
            "region": "",
            "collection_prefix": "event-",
            "max_retries": 2,
            "backoff_base": 0.2,
            "index_max_faces": 15,
            "index_quality_filter": "NONE",
            "search_quality_filter": "AUTO",
            "image_max_dim": 3072,
            "max_image_bytes": 5 * 1024 * 1024,
        },
        "indexing": {
            "batch_size": 50,
            "concurrency": 5,
        },
        "worker": {
            "event_id": None,
            "idle_backoff": 30.0,
            "error_backoff": 5.0,
            "max_error_backoff": 60.0,
        },
        "search": {
            "threshold": 80.0,
            "max_results": 100,
        },
        "server": {
            "host": "0.0.0.0",
            "port": 5050,
            "debug": False,
        },
        "logging": {
            "level": "INFO",
        },
    }


# Environment variable -> (section, key, type)
ENV_MAP = {
    'FACE_MATCH_DATABASE_URL': ('database', 'url', str),
    'DATABASE_URL': ('database', 'url', str),
    'FACE_MATCH_STORAGE_BACKEND': ('storage', 'backend', str),
    'FACE_MATCH_BUCKET': ('storage', 'bucket', str),
    'FACE_MATCH_STORAGE_ROOT': ('storage', 'local_root', str),
    'FACE_MATCH_PUBLIC_BASE_URL': ('storage', 'public_base_url', str),
    'AWS_REGION': ('vision', 'region', str),
    'FACE_MATCH_COLLECTION_PREFIX': ('vision', 'collection_prefix', str),
    'FACE_MATCH_MAX_RETRIES': ('vision', 'max_retries', int),
    'FACE_MATCH_BATCH_SIZE': ('indexing', 'batch_size', int),
    'FACE_MATCH_CONCURRENCY': ('indexing', 'concurrency', int),
    'FACE_MATCH_WORKER_EVENT_ID': ('worker', 'event_id', str),
    'FACE_MATCH_IDLE_BACKOFF': ('worker', 'idle_backoff', float),
    'FACE_MATCH_ERROR_BACKOFF': ('worker', 'error_backoff', float),
    'FACE_MATCH_SEARCH_THRESHOLD': ('search', 'threshold', float),
    'FACE_MATCH_SEARCH_MAX_RESULTS': ('search', 'max_results', int),
    'FACE_MATCH_HOST': ('server', 'host', str),
    'FACE_MATCH_PORT': ('server', 'port', int),
    'FACE_MATCH_DEBUG': ('server', 'debug', bool),
    'FACE_MATCH_LOG_LEVEL': ('logging', 'level', str),
}


def _convert(value: str, kind: type) -> Any:
    if kind is bool:
        return value.lower() in ('1', 'true', 'yes')
    return kind(value)


def get_env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Get configuration overrides from environment variables.

    FACE_MATCH_DATABASE_URL takes precedence over DATABASE_URL.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Dict[str, Any]] = {}

    for env_var, (section, key, kind) in ENV_MAP.items():
        value = environ.get(env_var)
        if value is None or value == "":
            continue
        if env_var == 'DATABASE_URL' and environ.get('FACE_MATCH_DATABASE_URL'):
            continue

        try:
            converted = _convert(value, kind)
        except ValueError:
            logger.warning(f"Ignoring invalid {env_var}={value!r} (expected {kind.__name__})")
            continue

        overrides.setdefault(section, {})[key] = converted
        logger.debug(f"Environment override: {env_var} -> {section}.{key}")

    return overrides


def _merge(config: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    for section, values in updates.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values
    return config


def _apply_fallbacks(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in path-dependent defaults and expand user paths."""
    if not config["database"].get("url"):
        config["database"]["url"] = get_default_database_url()

    storage = config["storage"]
    if storage.get("local_root"):
        storage["local_root"] = os.path.expanduser(os.path.expandvars(storage["local_root"]))
    else:
        storage["local_root"] = str(get_default_storage_dir())

    if not config["vision"].get("region"):
        config["vision"]["region"] = storage.get("region") or None
    if not storage.get("region"):
        storage["region"] = config["vision"]["region"]

    return config


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Load configuration from a JSON file merged over the defaults, then
    apply environment overrides.

    Args:
        path: Config file (default: paths.get_config_path())
        environ: Environment mapping (default: os.environ)

    Returns:
        Configuration dictionary
    """
    config = copy.deepcopy(get_default_config())
    config_path = Path(path) if path is not None else get_config_path()

    if config_path.is_file():
        with open(config_path, 'r', encoding='utf-8') as f:
            _merge(config, json.load(f))
        logger.info(f"Loaded config from: {config_path}")
    else:
        logger.debug(f"No config file at {config_path}, using defaults")

    _merge(config, get_env_overrides(environ))
    return _apply_fallbacks(config)


_config: Optional[Dict[str, Any]] = None


def get_config() -> Dict[str, Any]:
    """
    Return the process-wide configuration, loading it on first use.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Dict[str, Any]:
    """
    Force the configuration to be reloaded (useful for tests).
    """
    global _config
    _config = None
    return get_config()
