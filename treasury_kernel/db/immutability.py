"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Treasury balances are caches of an append-only log.  If a log row could be
edited, or a balance assigned directly, the replay that proves a balance
correct would prove nothing.  These listeners stop such writes before the
SQL reaches the database:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The kernel's own balance writes use compare-and-swap UPDATE statements
(services/base.py), which do not pass through the unit of work and
therefore do not trigger these listeners.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|---------------------------------------------------
TreasuryTransaction    | Never updated, never deleted
PaymentInstallment     | Never updated, never deleted
AccountLedgerEntry     | Never updated, never deleted (use ADJUSTMENT)
GeneralReceipt         | Never updated, never deleted
ContactLedgerEntry     | Never updated, never deleted
Treasury               | balance/opening_balance/last_sequence/version never
                       | assigned through the ORM; no delete once it has
                       | transactions
PaymentReceipt         | Settlement fields never assigned through the ORM;
                       | never deleted

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Audit metadata (updated_at, updated_by) may change on any row.
2. Change detection uses SQLAlchemy attribute history, so loading and
   re-saving an unchanged row is not a violation.
3. register/unregister are explicit so tests can disable the listeners to
   seed deliberately corrupted data for the reconciliation checks.
"""

from sqlalchemy import event, func, inspect, select

from treasury_kernel.exceptions import (
    ImmutabilityViolationError,
    TreasuryHasTransactionsError,
)
from treasury_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by"})

_TREASURY_LEDGER_FIELDS = ("balance", "opening_balance", "last_sequence", "version")

_RECEIPT_SETTLEMENT_FIELDS = (
    "counterparty_id",
    "total",
    "paid",
    "remaining",
    "currency",
    "exchange_rate",
    "base_total",
    "status",
    "paid_at",
    "cancelled_at",
    "version",
)


def _changed_fields(target, fields=None) -> list[str]:
    changed = []
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if fields is not None and attr.key not in fields:
            continue
        if attr.history.has_changes():
            changed.append(attr.key)
    return changed


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        name = type(target).__name__
        _block(
            name,
            target,
            "UPDATE",
            f"{name} rows are append-only (attempted to change {', '.join(changed)})",
        )


def _check_append_only_delete(mapper, connection, target):
    name = type(target).__name__
    _block(name, target, "DELETE", f"{name} rows are append-only")


def _check_treasury_update(mapper, connection, target):
    changed = _changed_fields(target, _TREASURY_LEDGER_FIELDS)
    if changed:
        _block(
            "Treasury",
            target,
            "UPDATE",
            "Treasury balances change only through the treasury ledger "
            f"(attempted to assign {', '.join(changed)})",
        )


def _check_treasury_delete(mapper, connection, target):
    from treasury_kernel.models.treasury import TreasuryTransaction

    count = connection.execute(
        select(func.count())
        .select_from(TreasuryTransaction)
        .where(TreasuryTransaction.treasury_id == target.id)
    ).scalar_one()
    if count:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Treasury",
                "entity_id": str(target.id),
                "operation": "DELETE",
                "transaction_count": count,
            },
        )
        raise TreasuryHasTransactionsError(str(target.id))


def _check_receipt_update(mapper, connection, target):
    changed = _changed_fields(target, _RECEIPT_SETTLEMENT_FIELDS)
    if changed:
        _block(
            "PaymentReceipt",
            target,
            "UPDATE",
            "Receipt settlement state changes only through the receipt service "
            f"(attempted to assign {', '.join(changed)})",
        )


def _check_receipt_delete(mapper, connection, target):
    _block("PaymentReceipt", target, "DELETE", "Receipts are cancelled, never deleted")


def _listeners():
    from treasury_kernel.models.account_ledger import AccountLedgerEntry
    from treasury_kernel.models.contact import ContactLedgerEntry, GeneralReceipt
    from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
    from treasury_kernel.models.treasury import Treasury, TreasuryTransaction

    pairs = []
    for model in (
        TreasuryTransaction,
        PaymentInstallment,
        AccountLedgerEntry,
        GeneralReceipt,
        ContactLedgerEntry,
    ):
        pairs.append((model, "before_update", _check_append_only_update))
        pairs.append((model, "before_delete", _check_append_only_delete))
    pairs.extend(
        [
            (Treasury, "before_update", _check_treasury_update),
            (Treasury, "before_delete", _check_treasury_delete),
            (PaymentReceipt, "before_update", _check_receipt_update),
            (PaymentReceipt, "before_delete", _check_receipt_delete),
        ]
    )
    return pairs


def register_immutability_listeners() -> None:
    """
    Install all listeners.  Idempotent.

    Call once at application start, after the models are importable.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove all listeners.

    WARNING: Only for tests that must write corrupted rows on purpose.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
