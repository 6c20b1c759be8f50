"""Site configuration loading for inkpress.

Key functions:
- load_config: Loads inkpress.yaml from the project root, applying defaults.
- load_data: Loads YAML files from the data directory for site.data.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "inkpress.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "",
    "description": "",
    "url": "",
    "baseurl": "",
    "permalink": "pretty",
    "output_dir": "output",
    "port": 4000,
    "exclude": [],
    "defaults": {},
    "check_references": True,
}


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" (line {mark.line + 1})" if mark is not None else ""
        raise ConfigError(path, f"Invalid YAML{where}: {exc}") from exc


def normalize_baseurl(value: Any) -> str:
    """Return the base path without a trailing slash ("" for the root).

    Raises:
        ValueError: If the value is not a string starting with '/'.
    """
    if value in (None, "", "/"):
        return ""
    if not isinstance(value, str) or not value.startswith("/"):
        raise ValueError(f"baseurl must be empty or start with '/': {value!r}")
    return value.rstrip("/")


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from inkpress.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    config["exclude"] = []
    config["defaults"] = {}
    if config_path.exists():
        loaded = _read_yaml(config_path) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(config_path, "Configuration must be a mapping")
        config.update(loaded)
        logger.debug("Loaded configuration from %s", config_path)
    try:
        config["baseurl"] = normalize_baseurl(config.get("baseurl"))
    except ValueError as exc:
        raise ConfigError(config_path, str(exc)) from exc
    config["url"] = str(config.get("url") or "").rstrip("/")
    if not isinstance(config.get("exclude"), list):
        raise ConfigError(config_path, "exclude must be a list of glob patterns")
    if not isinstance(config.get("defaults"), dict):
        raise ConfigError(config_path, "defaults must be a mapping")
    return config


def load_data(project_root: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing merged data from all YAML files. The contents
        of site.yaml are merged at the top level; every other file is keyed
        by its stem.
    """
    data_dir = project_root / "data"
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.glob("*.y*ml")):
        payload = _read_yaml(path)
        if payload is None:
            continue
        if path.stem == "site":
            if not isinstance(payload, dict):
                raise ConfigError(path, "site data must be a mapping")
            data.update(payload)
        else:
            data[path.stem] = payload
    return data
