"""
Pure domain layer.

DTOs, enumerations, ledger arithmetic, currency conversion, the clock
abstraction and the in-process event bus.  Nothing here touches the ORM
or the database.
"""

from treasury_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from treasury_kernel.domain.currency import (
    CurrencyInfo,
    CurrencyRegistry,
    resolve_rate,
    to_base,
    validate_currency,
)
from treasury_kernel.domain.events import DomainEvent, EventBus

__all__ = [
    "Clock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "DomainEvent",
    "EventBus",
    "SystemClock",
    "resolve_rate",
    "to_base",
    "validate_currency",
]
