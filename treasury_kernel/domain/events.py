"""
In-process domain events.

Outer modules (sales, purchasing, dashboards) react to settlement outcomes
such as ``receipt.paid`` without the kernel knowing about them.  Events are
published by the settlement facade only after the unit of work commits, so
a subscriber never observes an event for a rolled-back change.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any

from treasury_kernel.logging_config import get_logger

logger = get_logger("domain.events")

RECEIPT_CREATED = "receipt.created"
RECEIPT_PAID = "receipt.paid"
RECEIPT_CANCELLED = "receipt.cancelled"
INSTALLMENT_ADDED = "installment.added"
TREASURY_OPENED = "treasury.opened"
TREASURY_MOVED = "treasury.moved"
TRANSFER_COMPLETED = "treasury.transfer_completed"
GENERAL_RECEIPT_RECORDED = "general_receipt.recorded"
CUSTOMER_SALE_POSTED = "customer.sale_posted"
CUSTOMER_PAYMENT_COLLECTED = "customer.payment_collected"

Handler = Callable[["DomainEvent"], None]


@dataclass(frozen=True)
class DomainEvent:
    name: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Minimal publish/subscribe hub.

    Handlers subscribe per event name, or to ``"*"`` for every event.  A
    handler that raises does not stop delivery to the others; the failure
    is logged with the event name.
    """

    WILDCARD = "*"

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = RLock()

    def subscribe(self, name: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(name, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> int:
        """Deliver ``event``; return the number of handlers that succeeded."""
        with self._lock:
            handlers = list(self._handlers.get(event.name, ()))
            handlers += [
                h for h in self._handlers.get(self.WILDCARD, ()) if h not in handlers
            ]
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={"event_name": event.name},
                )
                continue
            delivered += 1
        return delivered
