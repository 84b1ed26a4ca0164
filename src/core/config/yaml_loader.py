# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""YAML loader for the persona roster and the curriculum catalog.

Both configuration sets are plain YAML mappings with a single top-level
section (``persona:`` in each persona file, ``tasks:`` in the catalog).

Example:
    >>> from pathlib import Path
    >>> from src.core.config.yaml_loader import load_yaml, load_yaml_directory
    >>> catalog = load_yaml(Path("config/curriculum/tasks.yaml"))
    >>> personas = load_yaml_directory(Path("config/personas"))
"""

from pathlib import Path
from typing import Any

import yaml


class YAMLLoadError(Exception):
    """Raised when a YAML file cannot be read or parsed.

    Attributes:
        path: File that failed to load.
        reason: Why it failed.
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load YAML file '{path}': {reason}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Parse a YAML file whose root is a mapping.

    Args:
        path: File to load.

    Returns:
        The parsed mapping, empty for an empty file.

    Raises:
        YAMLLoadError: If the file is missing, unreadable, invalid YAML or
            not a mapping at the root.
    """
    if not path.is_file():
        raise YAMLLoadError(path, "File does not exist")

    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise YAMLLoadError(path, f"Cannot read file: {e}") from e
    except yaml.YAMLError as e:
        raise YAMLLoadError(path, f"Invalid YAML syntax: {e}") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise YAMLLoadError(path, f"YAML root must be a mapping, got {type(parsed).__name__}")
    return parsed


def load_yaml_directory(path: Path) -> dict[str, dict[str, Any]]:
    """Load every ``.yaml`` and ``.yml`` file of a directory.

    Returns:
        Parsed mappings keyed by file stem, in file-name order.

    Raises:
        YAMLLoadError: If the directory is missing or a file fails to load.
    """
    if not path.is_dir():
        raise YAMLLoadError(path, "Directory does not exist")

    files = sorted([*path.glob("*.yaml"), *path.glob("*.yml")])
    return {f.stem: load_yaml(f) for f in files if f.is_file()}


def section(data: dict[str, Any], name: str) -> Any:
    """Return a top-level section, or the whole mapping when it is absent."""
    return data[name] if name in data else data
