"""
Configuration Management Module

Loads config.yaml once per process and layers it over built-in defaults, so
every section the session reads is always present even when the file only
overrides a few keys.

The file is looked up in this order:
    1. The path in the FACE_LOGIN_CONFIG environment variable
    2. config.yaml in the project root (the first parent directory of this
       package that contains one)

Usage:
    from core.config import get_config, get_session_config
    config = get_config()
    threshold = config["matching"]["threshold"]
    login_delay = get_session_config()["login_delay_sec"]
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

import yaml


CONFIG_ENV_VAR = "FACE_LOGIN_CONFIG"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "extractor": {
        "backend": "auto",
        "model": "buffalo_l",
        "embedding_dim": 512,
        "device": "cpu",
        "det_size": [640, 640],
    },
    "camera": {"device_id": 0, "width": 640, "height": 480, "fps": 30},
    "matching": {
        "threshold": 0.55,
        "model_thresholds": {"buffalo_l": 1.1, "vggface2": 1.0},
    },
    "storage": {
        "db_path": "storage/enrollment.sqlite",
        "key": "face_descriptor_demo",
    },
    "session": {
        "register_delay_sec": 0.5,
        "login_delay_sec": 1.5,
        "max_log_entries": 200,
        "subscriber_queue_size": 64,
        "auto_initialize": True,
        "auto_start_camera": True,
    },
    "api": {"base_url": "http://localhost:8000"},
    "logging": {"level": "INFO"},
}

_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory (the one holding config.yaml).

    Raises:
        FileNotFoundError: If no parent directory contains config.yaml.
    """
    for directory in Path(__file__).resolve().parents:
        if (directory / "config.yaml").exists():
            return directory

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        f"Run from within the project directory or set {CONFIG_ENV_VAR}."
    )


def resolve_path(path: Union[str, Path]) -> Path:
    """Resolve a config-relative path against the project root."""
    path = Path(path).expanduser()
    if path.is_absolute():
        return path
    return get_project_root() / path


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file, without defaults applied.

    Args:
        config_path: Path to the config file. Defaults to $FACE_LOGIN_CONFIG,
                     then config.yaml in the project root.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the top level is not a mapping.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or get_project_root() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"{config_path}: expected a mapping at the top level")
    return config


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton (file values over DEFAULTS).

    Args:
        reload: If True, re-read the file.
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = _merge(DEFAULTS, load_config())

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get one top-level section of the configuration.

    Raises:
        KeyError: If the section is neither in the file nor in DEFAULTS.
    """
    config = get_config()
    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {sorted(config)}"
        )
    return config[section_name]


def get_extractor_config() -> Dict[str, Any]:
    return get_section("extractor")


def get_camera_config() -> Dict[str, Any]:
    return get_section("camera")


def get_matching_config() -> Dict[str, Any]:
    return get_section("matching")


def get_storage_config() -> Dict[str, Any]:
    return get_section("storage")


def get_session_config() -> Dict[str, Any]:
    return get_section("session")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def get_logging_config() -> Dict[str, Any]:
    return get_section("logging")


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for uvicorn, parsed from ``api.base_url``.

    A localhost base URL binds to all interfaces.
    """
    parts = urlsplit(get_api_config().get("base_url", "http://localhost:8000"))
    host = parts.hostname or "localhost"
    if host in ("localhost", "127.0.0.1"):
        host = "0.0.0.0"
    return {"host": host, "port": parts.port or 8000}
