"""
Module: treasury_kernel.models.contact
Responsibility: Financial contacts (ad-hoc external parties that are not
    suppliers or customers), their general receipts, and their running
    balance ledger.
Architecture position: Kernel > Models.  Imports db/ and domain/ only.

A general receipt is a settled deposit or withdrawal: it moves a treasury
and the contact's balance in the same unit of work and has no partial
state.  GeneralReceipt and ContactLedgerEntry rows are immutable.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.dtos import (
    ContactLedgerEntryInfo,
    FinancialContactInfo,
    GeneralReceiptInfo,
)
from treasury_kernel.domain.enums import GeneralReceiptType


class FinancialContact(TrackedBase):
    """An external party with deposits and withdrawals but no documents."""

    __tablename__ = "financial_contacts"

    __table_args__ = (
        Index("idx_financial_contact_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    note: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Sequence of the latest ContactLedgerEntry
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dto(
        self,
        total_deposit: Decimal = Decimal("0"),
        total_withdrawal: Decimal = Decimal("0"),
        current_balance: Decimal = Decimal("0"),
    ) -> FinancialContactInfo:
        return FinancialContactInfo(
            id=self.id,
            name=self.name,
            phone=self.phone,
            note=self.note,
            is_active=self.is_active,
            total_deposit=total_deposit,
            total_withdrawal=total_withdrawal,
            current_balance=current_balance,
        )

    def __repr__(self) -> str:
        return f"<FinancialContact(id={self.id!r}, name={self.name!r})>"


class GeneralReceipt(TrackedBase):
    """A deposit or withdrawal against a contact and a treasury at once."""

    __tablename__ = "general_receipts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_general_receipt_amount"),
        Index("idx_general_receipt_contact", "contact_id"),
        Index("idx_general_receipt_treasury", "treasury_id"),
        Index("idx_general_receipt_date", "payment_date"),
    )

    contact_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_contacts.id"),
        nullable=False,
    )

    treasury_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("treasuries.id"),
        nullable=False,
    )

    treasury_transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("treasury_transactions.id"),
        nullable=False,
    )

    receipt_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    payment_date: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> GeneralReceiptInfo:
        return GeneralReceiptInfo(
            id=self.id,
            contact_id=self.contact_id,
            treasury_id=self.treasury_id,
            treasury_transaction_id=self.treasury_transaction_id,
            receipt_type=GeneralReceiptType(self.receipt_type),
            amount=self.amount,
            description=self.description,
            notes=self.notes,
            payment_date=self.payment_date,
            created_by=self.created_by,
        )

    def __repr__(self) -> str:
        return (
            f"<GeneralReceipt(contact_id={self.contact_id!r}, "
            f"{self.receipt_type} {self.amount})>"
        )


class ContactLedgerEntry(TrackedBase):
    """Running-balance row written by every general receipt."""

    __tablename__ = "contact_ledger_entries"

    __table_args__ = (
        UniqueConstraint("contact_id", "sequence", name="uq_contact_ledger_sequence"),
        Index("idx_contact_ledger_date", "contact_id", "transaction_date"),
    )

    contact_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("financial_contacts.id"),
        nullable=False,
    )

    general_receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("general_receipts.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ContactLedgerEntryInfo:
        return ContactLedgerEntryInfo(
            id=self.id,
            contact_id=self.contact_id,
            general_receipt_id=self.general_receipt_id,
            sequence=self.sequence,
            entry_type=GeneralReceiptType(self.entry_type),
            amount=self.amount,
            balance=self.balance,
            description=self.description,
            transaction_date=self.transaction_date,
        )

    def __repr__(self) -> str:
        return (
            f"<ContactLedgerEntry(contact_id={self.contact_id!r}, "
            f"seq={self.sequence!r}, balance={self.balance!r})>"
        )
