"""
treasury_config -- single public entrypoint for treasury configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    Services and the CLI never read files or environment variables
    themselves.

Resolution order:
    1. An explicit ``path`` argument.
    2. The file named by the ``TREASURY_CONFIG`` environment variable.
    3. The packaged ``sets/default.yaml``.
    ``TREASURY_DATABASE_URL``, when set, overrides ``database_url``.

Audit relevance:
    Every call emits a ``treasury_config_loaded`` log entry naming the
    source file and the settings that govern overdraft and retry behavior.
"""

import os
from dataclasses import replace
from pathlib import Path

from treasury_config.loader import load_config, load_yaml_file
from treasury_config.schema import LedgerConfig
from treasury_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "TREASURY_CONFIG"
DATABASE_URL_ENV_VAR = "TREASURY_DATABASE_URL"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Resolve, load and validate the active configuration.

    Raises:
        FileNotFoundError: If the chosen file does not exist.
        ValueError: If validation fails.
    """
    source = Path(path) if path is not None else None
    if source is None and os.environ.get(CONFIG_ENV_VAR):
        source = Path(os.environ[CONFIG_ENV_VAR])
    if source is None:
        source = _DEFAULT_CONFIG_FILE

    config = load_config(source)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, database_url=database_url)

    _logger.info(
        "treasury_config_loaded",
        extra={
            "source": str(source),
            "base_currency": config.base_currency,
            "allow_overdraft": config.allow_overdraft,
            "max_conflict_retries": config.max_conflict_retries,
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "LedgerConfig",
    "get_active_config",
    "load_config",
    "load_yaml_file",
]
