"""Configuration loading for newsmirror."""
import copy
import os
from pathlib import Path

import yaml

DEFAULT_CONFIG = {
    "entity_type": "actu",
    "database": {"path": "data/newsmirror.db"},
    "logging": {"retention_days": 30},
    "api": {
        "request_timeout": 30,
        "user_agent": "newsmirror/0.1",
        "max_pages": 10,
    },
    "subtitles": {"enabled": False, "meta_key": "wps_subtitle"},
    "translations": {"enabled": False},
}


class ConfigError(Exception):
    """Raised when the configuration file cannot be used."""


def get_project_dir() -> Path:
    """Root directory of the project (parent of the package)."""
    return Path(__file__).resolve().parent.parent


def get_config_path() -> Path:
    env_path = os.environ.get("NEWSMIRROR_CONFIG")
    if env_path:
        return Path(env_path)
    return get_project_dir() / "config" / "config.yaml"


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load the YAML config and fill in defaults.

    A missing file is not an error: the defaults are returned.
    """
    path = path or get_config_path()
    if not path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return _merge(DEFAULT_CONFIG, data)


def get_db_path(config: dict) -> Path:
    """Database path; relative paths are resolved against the project dir."""
    db_path = Path(config["database"]["path"]).expanduser()
    if not db_path.is_absolute():
        db_path = get_project_dir() / db_path
    return db_path
