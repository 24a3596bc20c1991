"""
Module: treasury_kernel.models.treasury
Responsibility: Treasury accounts and their append-only transaction log.
Architecture position: Kernel > Models.  Imports db/ and domain/ only.

Invariants enforced:
    - Treasury.balance == replay of its transactions in sequence order.
      The balance column is a cache; the log is the source of truth.
    - (treasury_id, sequence) is unique, so two writers that raced past
      the row lock cannot both append the "next" transaction.
    - TreasuryTransaction rows are immutable (db/immutability.py).
    - Treasury.version is bumped by every balance change and compared on
      write (services/treasury_ledger.py).

Failure modes:
    - IntegrityError on duplicate (treasury_id, sequence).
    - ImmutabilityViolationError on UPDATE/DELETE of a transaction row.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.dtos import TreasuryInfo, TreasuryTransactionInfo
from treasury_kernel.domain.enums import (
    TransactionReferenceKind,
    TransactionSource,
    TransactionType,
    TreasuryType,
)


class Treasury(TrackedBase):
    """
    A named money pool: cash drawer, company safe or bank account.

    Balances are in the base currency.  A treasury is deactivated, never
    deleted, once it has transactions.
    """

    __tablename__ = "treasuries"

    __table_args__ = (
        Index("idx_treasury_type", "treasury_type"),
        Index("idx_treasury_company", "company_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    treasury_type: Mapped[str] = mapped_column(String(20), nullable=False)

    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    account_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False)

    balance: Mapped[Decimal] = mapped_column(nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Optimistic lock counter, bumped on every balance change
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Sequence of the latest transaction row
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dto(self) -> TreasuryInfo:
        return TreasuryInfo(
            id=self.id,
            name=self.name,
            treasury_type=TreasuryType(self.treasury_type),
            company_id=self.company_id,
            bank_name=self.bank_name,
            account_number=self.account_number,
            currency=self.currency,
            opening_balance=self.opening_balance,
            balance=self.balance,
            is_active=self.is_active,
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<Treasury(id={self.id!r}, name={self.name!r}, "
            f"balance={self.balance!r}, version={self.version!r})>"
        )


class TreasuryTransaction(TrackedBase):
    """
    One immutable movement of a treasury balance.

    ``amount`` is unsigned; the sign follows from (transaction_type,
    source), see domain/ledger_math.treasury_delta.  ``balance_before`` and
    ``balance_after`` snapshot the treasury row around this movement.
    """

    __tablename__ = "treasury_transactions"

    __table_args__ = (
        UniqueConstraint("treasury_id", "sequence", name="uq_treasury_txn_sequence"),
        Index("idx_treasury_txn_source", "source"),
        Index("idx_treasury_txn_reference", "reference_kind", "reference_id"),
        Index("idx_treasury_txn_transfer", "transfer_id"),
        Index("idx_treasury_txn_created", "treasury_id", "created_at"),
    )

    treasury_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("treasuries.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    source: Mapped[str] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reference_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)

    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Transfers: the other leg's treasury and the id shared by both legs
    counterpart_treasury_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("treasuries.id"),
        nullable=True,
    )

    transfer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> TreasuryTransactionInfo:
        return TreasuryTransactionInfo(
            id=self.id,
            treasury_id=self.treasury_id,
            sequence=self.sequence,
            transaction_type=TransactionType(self.transaction_type),
            source=TransactionSource(self.source),
            amount=self.amount,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
            description=self.description,
            reference_kind=(
                TransactionReferenceKind(self.reference_kind)
                if self.reference_kind
                else None
            ),
            reference_id=self.reference_id,
            counterpart_treasury_id=self.counterpart_treasury_id,
            transfer_id=self.transfer_id,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<TreasuryTransaction(treasury_id={self.treasury_id!r}, "
            f"seq={self.sequence!r}, {self.transaction_type}/{self.source} "
            f"{self.amount} -> {self.balance_after})>"
        )


