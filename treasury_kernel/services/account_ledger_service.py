"""
AccountLedgerService -- running-balance postings for suppliers and customers.

Responsibility:
    ``append_entry`` is the only writer of AccountLedgerEntry rows.  The new
    balance is always the previous stored row's balance plus the signed
    amount (domain/ledger_math.account_delta); there is no separate
    "current balance" field that could drift from the entries.

Serialization:
    The counterparty's Party row is locked before the last entry is read,
    so concurrent postings for one counterparty are linearized.  The
    (counterparty_id, sequence) unique constraint is the backstop.

Receipts, installments and cancellations call this service from inside
their own unit of work; the ledger is never written independently of the
action that caused the posting, except for explicit ADJUSTMENT entries.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import require_positive
from treasury_kernel.domain.dtos import LedgerEntryInfo
from treasury_kernel.domain.enums import EntryDirection, LedgerReferenceKind, PartyType
from treasury_kernel.domain.ledger_math import account_delta
from treasury_kernel.exceptions import (
    BackdatedEntryError,
    CounterpartyInactiveError,
    CounterpartyNotFoundError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.models.party import Party
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService

logger = get_logger("services.account_ledger")


class AccountLedgerService(BaseService[AccountLedgerEntry]):
    """
    Append-only supplier and customer postings.

    Entries are ordered by sequence, and their transaction dates never go
    backwards, so a date window over a statement is also a sequence range.

    Args:
        session: Caller-owned session.
        clock: Time source for default transaction dates.
        money_decimal_places: Decimals a posted amount may carry.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        money_decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self.money_decimal_places = money_decimal_places

    def append_entry(
        self,
        counterparty_id: UUID,
        direction: EntryDirection,
        amount: Decimal,
        reference_kind: LedgerReferenceKind,
        reference_id: str | UUID | None = None,
        description: str | None = None,
        *,
        transaction_date: datetime | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> LedgerEntryInfo:
        """
        Append one posting and return it with its running balance.

        Raises:
            CounterpartyNotFoundError: Unknown counterparty.
            CounterpartyInactiveError: Deactivated counterparty (ADJUSTMENT
                entries are still accepted).
            NonPositiveAmountError: amount <= 0.
            InvalidAmountError: amount finer than ``money_decimal_places``.
            BackdatedEntryError: transaction_date earlier than the
                counterparty's latest entry.
        """
        direction = EntryDirection(direction)
        reference_kind = LedgerReferenceKind(reference_kind)
        amount = require_positive(amount, decimal_places=self.money_decimal_places)

        party = self._lock_row(Party, counterparty_id)
        if party is None:
            raise CounterpartyNotFoundError(str(counterparty_id))
        if not party.is_active and reference_kind != LedgerReferenceKind.ADJUSTMENT:
            raise CounterpartyInactiveError(str(counterparty_id))

        role = PartyType(party.party_type)
        last = self._last_entry(party.id)
        when = transaction_date or self.clock.now()
        if last is not None and _as_utc(when) < _as_utc(last.transaction_date):
            raise BackdatedEntryError(when, last.transaction_date)
        previous_balance = last.balance if last is not None else ZERO
        sequence = last.sequence + 1 if last is not None else 1
        balance = previous_balance + account_delta(role, direction, amount)

        entry = AccountLedgerEntry(
            counterparty_id=party.id,
            counterparty_role=role.value,
            sequence=sequence,
            direction=direction.value,
            amount=amount,
            balance=balance,
            reference_kind=reference_kind.value,
            reference_id=str(reference_id) if reference_id is not None else None,
            description=description,
            transaction_date=when,
            created_by=actor,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "account_ledger_entry_appended",
            extra={
                "counterparty_id": str(party.id),
                "counterparty_role": role.value,
                "sequence": sequence,
                "direction": direction.value,
                "amount": str(amount),
                "balance": str(balance),
                "reference_kind": reference_kind.value,
            },
        )
        return entry.to_dto()

    def record_adjustment(
        self,
        counterparty_id: UUID,
        direction: EntryDirection,
        amount: Decimal,
        description: str,
        *,
        reference_id: str | UUID | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> LedgerEntryInfo:
        """Correct a counterparty balance with a new ADJUSTMENT entry."""
        return self.append_entry(
            counterparty_id,
            direction,
            amount,
            LedgerReferenceKind.ADJUSTMENT,
            reference_id,
            description,
            actor=actor,
        )

    def _last_entry(self, counterparty_id: UUID) -> AccountLedgerEntry | None:
        return self.session.execute(
            select(AccountLedgerEntry)
            .where(AccountLedgerEntry.counterparty_id == counterparty_id)
            .order_by(AccountLedgerEntry.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
