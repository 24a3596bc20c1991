"""
Module: treasury_kernel.selectors.ledger_selector
Responsibility: Read-only queries over supplier and customer account
    ledgers: current balance, statements and the all-parties summary.
Architecture position: Kernel > Selectors.

The current balance of a counterparty is the ``balance`` of its entry with
the highest sequence.  Statements are lazy and restartable (KeysetPages)
so a long history is never loaded at once.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, case, func, select

from treasury_kernel.db.types import ZERO, money_from_aggregate
from treasury_kernel.domain.dtos import LedgerEntryInfo, LedgerSummaryRow
from treasury_kernel.domain.enums import EntryDirection, LedgerReferenceKind, PartyType
from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector, KeysetPages


class LedgerSelector(BaseSelector[AccountLedgerEntry]):

    def get_balance(self, counterparty_id: UUID) -> Decimal:
        """Running balance after the latest entry; zero with no entries."""
        balance = self.session.execute(
            select(AccountLedgerEntry.balance)
            .where(AccountLedgerEntry.counterparty_id == counterparty_id)
            .order_by(AccountLedgerEntry.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return balance if balance is not None else ZERO

    def get_statement(
        self,
        counterparty_id: UUID,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> KeysetPages[LedgerEntryInfo]:
        """
        Entries of one counterparty in sequence order.

        ``since`` is inclusive and ``until`` exclusive, both on
        ``transaction_date``.  Each entry carries the running balance as
        stored, so a windowed statement still shows true balances.
        """
        stmt = select(AccountLedgerEntry).where(
            AccountLedgerEntry.counterparty_id == counterparty_id
        )
        if since is not None:
            stmt = stmt.where(AccountLedgerEntry.transaction_date >= since)
        if until is not None:
            stmt = stmt.where(AccountLedgerEntry.transaction_date < until)
        return KeysetPages(
            self.session,
            stmt,
            AccountLedgerEntry.sequence,
            AccountLedgerEntry.to_dto,
            page_size,
        )

    def get_opening_balance(self, counterparty_id: UUID, since: datetime) -> Decimal:
        """Balance carried into a statement window starting at ``since``."""
        balance = self.session.execute(
            select(AccountLedgerEntry.balance)
            .where(
                AccountLedgerEntry.counterparty_id == counterparty_id,
                AccountLedgerEntry.transaction_date < since,
            )
            .order_by(AccountLedgerEntry.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return balance if balance is not None else ZERO

    def entries_for_reference(
        self,
        reference_id: str | UUID,
        reference_kind: LedgerReferenceKind | None = None,
    ) -> list[LedgerEntryInfo]:
        stmt = select(AccountLedgerEntry).where(
            AccountLedgerEntry.reference_id == str(reference_id)
        )
        if reference_kind is not None:
            stmt = stmt.where(
                AccountLedgerEntry.reference_kind
                == LedgerReferenceKind(reference_kind).value
            )
        stmt = stmt.order_by(AccountLedgerEntry.counterparty_id, AccountLedgerEntry.sequence)
        return [e.to_dto() for e in self.session.execute(stmt).scalars()]

    def get_summary_for_all(
        self, role: PartyType | None = None
    ) -> list[LedgerSummaryRow]:
        """One row per counterparty with debit and credit totals and balance."""
        debit = case(
            (AccountLedgerEntry.direction == EntryDirection.DEBIT.value, AccountLedgerEntry.amount),
            else_=0,
        )
        credit = case(
            (AccountLedgerEntry.direction == EntryDirection.CREDIT.value, AccountLedgerEntry.amount),
            else_=0,
        )
        totals = select(
            AccountLedgerEntry.counterparty_id,
            AccountLedgerEntry.counterparty_role,
            func.sum(debit).label("total_debit"),
            func.sum(credit).label("total_credit"),
            func.count(AccountLedgerEntry.id).label("entry_count"),
            func.max(AccountLedgerEntry.sequence).label("last_sequence"),
        ).group_by(AccountLedgerEntry.counterparty_id, AccountLedgerEntry.counterparty_role)
        if role is not None:
            totals = totals.where(
                AccountLedgerEntry.counterparty_role == PartyType(role).value
            )
        totals = totals.subquery()

        stmt = (
            select(
                totals.c.counterparty_id,
                totals.c.counterparty_role,
                totals.c.total_debit,
                totals.c.total_credit,
                totals.c.entry_count,
                AccountLedgerEntry.balance,
                AccountLedgerEntry.transaction_date,
            )
            .join(
                AccountLedgerEntry,
                and_(
                    AccountLedgerEntry.counterparty_id == totals.c.counterparty_id,
                    AccountLedgerEntry.sequence == totals.c.last_sequence,
                ),
            )
            .order_by(totals.c.counterparty_role, totals.c.counterparty_id)
        )

        return [
            LedgerSummaryRow(
                counterparty_id=row.counterparty_id,
                counterparty_role=PartyType(row.counterparty_role),
                total_debit=money_from_aggregate(row.total_debit),
                total_credit=money_from_aggregate(row.total_credit),
                balance=row.balance,
                entry_count=row.entry_count,
                last_transaction_date=row.transaction_date,
            )
            for row in self.session.execute(stmt)
        ]
