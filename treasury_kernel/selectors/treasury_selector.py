"""
Module: treasury_kernel.selectors.treasury_selector
Responsibility: Read-only treasury queries: accounts, transaction history
    and log replay.
Architecture position: Kernel > Selectors.

``replay_balance`` recomputes a treasury balance from its log alone.  The
reconciliation service compares it with the cached ``Treasury.balance``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from treasury_kernel.db.types import ZERO, money_from_aggregate
from treasury_kernel.domain.dtos import TreasuryInfo, TreasuryTransactionInfo
from treasury_kernel.domain.enums import TransactionSource, TreasuryType
from treasury_kernel.domain.ledger_math import treasury_delta
from treasury_kernel.exceptions import TreasuryNotFoundError
from treasury_kernel.models.treasury import Treasury, TreasuryTransaction
from treasury_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector, KeysetPages


class TreasurySelector(BaseSelector[Treasury]):

    def get_treasury(self, treasury_id: UUID) -> TreasuryInfo:
        """
        Raises:
            TreasuryNotFoundError: Unknown id.
        """
        treasury = self.session.get(Treasury, treasury_id)
        if treasury is None:
            raise TreasuryNotFoundError(str(treasury_id))
        return treasury.to_dto()

    def list_treasuries(
        self,
        *,
        treasury_type: TreasuryType | None = None,
        company_id: str | None = None,
        active_only: bool = False,
    ) -> list[TreasuryInfo]:
        stmt = select(Treasury)
        if treasury_type is not None:
            stmt = stmt.where(Treasury.treasury_type == TreasuryType(treasury_type).value)
        if company_id is not None:
            stmt = stmt.where(Treasury.company_id == company_id)
        if active_only:
            stmt = stmt.where(Treasury.is_active.is_(True))
        stmt = stmt.order_by(Treasury.name, Treasury.id)
        return [t.to_dto() for t in self.session.execute(stmt).scalars()]

    def total_balance(self, *, active_only: bool = True) -> Decimal:
        """Sum of cached balances across treasuries."""
        stmt = select(func.coalesce(func.sum(Treasury.balance), 0))
        if active_only:
            stmt = stmt.where(Treasury.is_active.is_(True))
        return money_from_aggregate(self.session.execute(stmt).scalar_one())

    def transactions(
        self,
        treasury_id: UUID,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        source: TransactionSource | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> KeysetPages[TreasuryTransactionInfo]:
        """
        Transactions of one treasury in sequence order.

        The result is lazy and can be iterated more than once; each pass
        re-reads from the database.  ``since`` is inclusive, ``until`` is
        exclusive.
        """
        stmt = select(TreasuryTransaction).where(
            TreasuryTransaction.treasury_id == treasury_id
        )
        if since is not None:
            stmt = stmt.where(TreasuryTransaction.created_at >= since)
        if until is not None:
            stmt = stmt.where(TreasuryTransaction.created_at < until)
        if source is not None:
            stmt = stmt.where(
                TreasuryTransaction.source == TransactionSource(source).value
            )
        return KeysetPages(
            self.session,
            stmt,
            TreasuryTransaction.sequence,
            TreasuryTransaction.to_dto,
            page_size,
        )

    def transfer_legs(self, transfer_id: UUID) -> list[TreasuryTransactionInfo]:
        """Both legs of one transfer, outgoing first."""
        rows = self.session.execute(
            select(TreasuryTransaction).where(TreasuryTransaction.transfer_id == transfer_id)
        ).scalars().all()
        return sorted(
            (r.to_dto() for r in rows),
            key=lambda t: t.source != TransactionSource.TRANSFER_OUT,
        )

    def transactions_for_reference(self, reference_id: UUID) -> list[TreasuryTransactionInfo]:
        rows = self.session.execute(
            select(TreasuryTransaction)
            .where(TreasuryTransaction.reference_id == reference_id)
            .order_by(TreasuryTransaction.treasury_id, TreasuryTransaction.sequence)
        ).scalars()
        return [r.to_dto() for r in rows]

    def replay_balance(self, treasury_id: UUID) -> Decimal:
        """Balance obtained by summing the signed log from zero."""
        balance = ZERO
        for txn in self.transactions(treasury_id):
            balance += treasury_delta(txn.transaction_type, txn.source, txn.amount)
        return balance
