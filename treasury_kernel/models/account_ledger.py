"""
Module: treasury_kernel.models.account_ledger
Responsibility: Running-balance account of a supplier or customer.
Architecture position: Kernel > Models.  Imports db/ and domain/ only.

Invariants enforced:
    - Prefix sum: for consecutive entries of one counterparty,
      e[i].balance == e[i-1].balance + account_delta(role, e[i].direction,
      e[i].amount).  The balance is computed from the previous stored row,
      never from a separate counter.
    - (counterparty_id, sequence) is unique.
    - Entries are append-only (db/immutability.py); corrections are new
      ADJUSTMENT entries.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.dtos import LedgerEntryInfo
from treasury_kernel.domain.enums import EntryDirection, LedgerReferenceKind, PartyType


class AccountLedgerEntry(TrackedBase):
    """One posting in a counterparty's running account."""

    __tablename__ = "account_ledger_entries"

    __table_args__ = (
        UniqueConstraint(
            "counterparty_id", "sequence", name="uq_account_ledger_sequence"
        ),
        CheckConstraint("amount >= 0", name="ck_account_ledger_amount"),
        Index("idx_account_ledger_reference", "reference_kind", "reference_id"),
        Index("idx_account_ledger_date", "counterparty_id", "transaction_date"),
        Index("idx_account_ledger_role", "counterparty_role"),
    )

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    counterparty_role: Mapped[str] = mapped_column(String(20), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    direction: Mapped[str] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance: Mapped[Decimal] = mapped_column(nullable=False)

    reference_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Receipt/installment UUIDs, or opaque sale/purchase ids from other modules
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> LedgerEntryInfo:
        return LedgerEntryInfo(
            id=self.id,
            counterparty_id=self.counterparty_id,
            counterparty_role=PartyType(self.counterparty_role),
            sequence=self.sequence,
            direction=EntryDirection(self.direction),
            amount=self.amount,
            balance=self.balance,
            reference_kind=LedgerReferenceKind(self.reference_kind),
            reference_id=self.reference_id,
            description=self.description,
            transaction_date=self.transaction_date,
        )

    def __repr__(self) -> str:
        return (
            f"<AccountLedgerEntry(counterparty_id={self.counterparty_id!r}, "
            f"seq={self.sequence!r}, {self.direction} {self.amount} "
            f"-> {self.balance})>"
        )
