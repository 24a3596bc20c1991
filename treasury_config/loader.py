"""
YAML loading for treasury configuration.

Internal to ``treasury_config``; runtime callers go through
``treasury_config.get_active_config()``.
"""

from pathlib import Path
from typing import Any

import yaml

from treasury_config.schema import LedgerConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def load_config(path: Path | str) -> LedgerConfig:
    """
    Parse a configuration file into a validated ``LedgerConfig``.

    The settings may sit at the top level or under a ``treasury:`` key.
    """
    data = load_yaml_file(Path(path))
    if "treasury" in data:
        section = data["treasury"] or {}
        if not isinstance(section, dict):
            raise ValueError(f"{path}: 'treasury' section must be a mapping")
        data = section
    return LedgerConfig.from_dict(data)
