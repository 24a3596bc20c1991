"""
Ledger arithmetic -- pure functions, no I/O.

Every balance the kernel stores is the previous balance plus a signed delta.
These functions decide the sign of that delta, so the services that write
rows and the reconciliation code that replays them agree by construction.
"""

from collections.abc import Iterable, Iterator
from decimal import Decimal

from treasury_kernel.db.types import ZERO
from treasury_kernel.domain.enums import (
    EntryDirection,
    GeneralReceiptType,
    PartyType,
    TransactionSource,
    TransactionType,
)


def treasury_delta(
    transaction_type: TransactionType,
    source: TransactionSource,
    amount: Decimal,
) -> Decimal:
    """
    Signed effect of one treasury transaction on the balance.

    DEPOSIT adds, WITHDRAWAL subtracts.  TRANSFER rows take their sign from
    the leg: TRANSFER_IN adds, TRANSFER_OUT subtracts.
    """
    transaction_type = TransactionType(transaction_type)
    source = TransactionSource(source)
    if transaction_type == TransactionType.DEPOSIT:
        return amount
    if transaction_type == TransactionType.WITHDRAWAL:
        return -amount
    if source == TransactionSource.TRANSFER_IN:
        return amount
    if source == TransactionSource.TRANSFER_OUT:
        return -amount
    raise ValueError(f"TRANSFER transaction with non-transfer source {source.value}")


def account_delta(
    role: PartyType,
    direction: EntryDirection,
    amount: Decimal,
) -> Decimal:
    """
    Signed effect of one account-ledger posting on the running balance.

    A supplier's balance is what we owe them: CREDIT raises it, DEBIT
    lowers it.  A customer's balance is what they owe us: DEBIT raises it,
    CREDIT lowers it.
    """
    role = PartyType(role)
    direction = EntryDirection(direction)
    increases = (
        EntryDirection.CREDIT if role == PartyType.SUPPLIER else EntryDirection.DEBIT
    )
    return amount if direction == increases else -amount


def contact_delta(entry_type: GeneralReceiptType, amount: Decimal) -> Decimal:
    """Deposits raise a contact's balance, withdrawals lower it."""
    if GeneralReceiptType(entry_type) == GeneralReceiptType.DEPOSIT:
        return amount
    return -amount


def running_balances(
    deltas: Iterable[Decimal],
    start: Decimal = ZERO,
) -> Iterator[Decimal]:
    """Yield the balance after each delta, in order."""
    balance = start
    for delta in deltas:
        balance += delta
        yield balance
