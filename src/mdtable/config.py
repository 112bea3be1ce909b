"""Configuration loading for mdtable.

Settings come from ``DEFAULT_CONFIG`` overlaid with a YAML file: either an
explicit ``--config`` path or ``mdtable.yaml`` in the working directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "mdtable.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "precision": 28,  # significant digits for decimal arithmetic
    "inline_errors": True,
    "error_marker": "md-table-error",
    "log_dir": None,
    "logging_fsync": False,
}


class ConfigError(Exception):
    """Invalid configuration file or value."""


def load_config(path: Path | None = None, base_dir: Path | None = None) -> dict[str, Any]:
    """Load configuration, with defaults.

    Args:
        path: Explicit config file; it must exist.
        base_dir: Directory searched for ``mdtable.yaml`` when *path* is
            not given.  Defaults to the current directory.

    Returns:
        Merged configuration dict.

    Raises:
        ConfigError: If the file is not a YAML mapping, has unknown keys,
            or has values of the wrong type.
    """
    config = dict(DEFAULT_CONFIG)

    if path is None:
        candidate = (base_dir or Path.cwd()) / CONFIG_FILENAME
        if not candidate.exists():
            return config
        path = candidate
    elif not path.exists():
        raise ConfigError(f"config file not found: {path}")

    try:
        user_config = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if not isinstance(user_config, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")

    unknown = sorted(set(user_config) - set(DEFAULT_CONFIG))
    if unknown:
        raise ConfigError(f"{path}: unknown config keys: {', '.join(unknown)}")

    config.update(user_config)
    _validate(config, path)
    return config


def _validate(config: dict[str, Any], path: Path) -> None:
    precision = config["precision"]
    if isinstance(precision, bool) or not isinstance(precision, int) or precision < 1:
        raise ConfigError(f"{path}: precision must be a positive integer")
    for key in ("inline_errors", "logging_fsync"):
        if not isinstance(config[key], bool):
            raise ConfigError(f"{path}: {key} must be true or false")
    if not isinstance(config["error_marker"], str) or not config["error_marker"].strip():
        raise ConfigError(f"{path}: error_marker must be a non-empty string")
