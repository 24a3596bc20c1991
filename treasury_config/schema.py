"""
treasury_config.schema
======================

Responsibility:
    The validated shape of treasury-engine configuration.  Values come from
    a YAML file (see ``loader.py``) and are checked once, in
    ``__post_init__``; services receive an already-valid ``LedgerConfig``.

Invariants enforced:
    - ``base_currency`` is a supported currency code.
    - ``money_decimal_places`` is between 0 and 9 (the stored precision).
    - ``max_conflict_retries`` is non-negative.
    - ``log_level`` is a standard logging level name.

Failure modes:
    - Invalid values -> ``ValueError`` from ``__post_init__``.
    - Unknown keys -> ``ValueError`` from ``from_dict``.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Self

from treasury_kernel.db.types import MONEY_DECIMAL_PLACES
from treasury_kernel.domain.currency import CurrencyRegistry
from treasury_kernel.logging_config import get_logger

logger = get_logger("config.schema")

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(frozen=True)
class LedgerConfig:
    """
    Treasury engine settings.

    ``money_decimal_places`` defaults to the base currency's minor unit
    (3 for LYD) and is the precision at which foreign amounts are converted
    to base currency.

    Example::

        config = LedgerConfig(base_currency="LYD", allow_overdraft=False)
    """

    base_currency: str = "LYD"
    money_decimal_places: int | None = None

    # Withdrawals below zero are permitted unless this is False
    allow_overdraft: bool = True

    # Bounded internal retries on concurrency conflicts
    max_conflict_retries: int = 3

    database_url: str = "sqlite+pysqlite:///:memory:"
    log_level: str = "INFO"
    default_payment_method: str = "CASH"

    def __post_init__(self):
        info = CurrencyRegistry.get_info(self.base_currency)
        if info is None:
            raise ValueError(f"base_currency {self.base_currency!r} is not supported")
        object.__setattr__(self, "base_currency", info.code)

        if self.money_decimal_places is None:
            object.__setattr__(self, "money_decimal_places", info.decimal_places)
        if not 0 <= self.money_decimal_places <= MONEY_DECIMAL_PLACES:
            raise ValueError(
                f"money_decimal_places must be between 0 and {MONEY_DECIMAL_PLACES}"
            )

        if self.max_conflict_retries < 0:
            raise ValueError("max_conflict_retries cannot be negative")

        if not self.database_url:
            raise ValueError("database_url is required")

        level = str(self.log_level).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        object.__setattr__(self, "log_level", level)

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a mapping, rejecting keys this schema does not define."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        logger.debug(
            "ledger_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
