"""
Module: treasury_kernel.models.receipt
Responsibility: Payment receipts (obligations owed to a counterparty) and
    the installments that settle them.
Architecture position: Kernel > Models.  Imports db/ and domain/ only.

Invariants enforced:
    - paid + remaining == total, asserted by services/receipt_service.py
      on every write.
    - status == PAID iff remaining == 0.
    - CANCELLED receipts accept no installments.
    - PaymentInstallment rows are immutable (db/immutability.py).

Amounts on the receipt and on each installment are in the receipt's own
currency.  ``base_total`` is the nominal base-currency value at the
receipt's rate; ``PaymentInstallment.base_amount`` is what actually left the
treasury at the installment's rate.  The two sums may differ when the rate
moves between installments.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasury_kernel.db.base import TrackedBase, UUIDString
from treasury_kernel.domain.dtos import PaymentInstallmentInfo, PaymentReceiptInfo
from treasury_kernel.domain.enums import ReceiptStatus, ReceiptType


class PaymentReceipt(TrackedBase):
    """An obligation denominated in an original currency."""

    __tablename__ = "payment_receipts"

    __table_args__ = (
        CheckConstraint("total > 0", name="ck_receipt_total_positive"),
        Index("idx_receipt_counterparty", "counterparty_id"),
        Index("idx_receipt_purchase", "purchase_id"),
        Index("idx_receipt_status", "status"),
        Index("idx_receipt_type", "receipt_type"),
    )

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    # Opaque id of the purchase document in the purchasing module
    purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    receipt_type: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReceiptStatus.PENDING.value,
    )

    total: Mapped[Decimal] = mapped_column(nullable=False)

    paid: Mapped[Decimal] = mapped_column(nullable=False)

    remaining: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 12),
        nullable=True,
    )

    # Foreign amount as entered, when it differs from ``total``
    amount_foreign: Mapped[Decimal | None] = mapped_column(nullable=True)

    base_total: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    category_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    installments: Mapped[list["PaymentInstallment"]] = relationship(
        back_populates="receipt",
        order_by="PaymentInstallment.created_at",
        viewonly=True,
    )

    def to_dto(self) -> PaymentReceiptInfo:
        return PaymentReceiptInfo(
            id=self.id,
            counterparty_id=self.counterparty_id,
            purchase_id=self.purchase_id,
            receipt_type=ReceiptType(self.receipt_type),
            status=ReceiptStatus(self.status),
            total=self.total,
            paid=self.paid,
            remaining=self.remaining,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            amount_foreign=self.amount_foreign,
            base_total=self.base_total,
            description=self.description,
            category_name=self.category_name,
            notes=self.notes,
            created_at=self.created_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
            cancel_reason=self.cancel_reason,
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentReceipt(id={self.id!r}, status={self.status!r}, "
            f"paid={self.paid!r}/{self.total!r} {self.currency})>"
        )


class PaymentInstallment(TrackedBase):
    """One partial settlement of a receipt, tied to one treasury movement."""

    __tablename__ = "payment_installments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_installment_amount_positive"),
        Index("idx_installment_receipt", "receipt_id"),
        Index("idx_installment_treasury", "treasury_id"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payment_receipts.id"),
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

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 12), nullable=False)

    base_amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    receipt: Mapped["PaymentReceipt"] = relationship(
        back_populates="installments",
        viewonly=True,
    )

    def to_dto(self) -> PaymentInstallmentInfo:
        return PaymentInstallmentInfo(
            id=self.id,
            receipt_id=self.receipt_id,
            treasury_id=self.treasury_id,
            treasury_transaction_id=self.treasury_transaction_id,
            amount=self.amount,
            exchange_rate=self.exchange_rate,
            base_amount=self.base_amount,
            payment_method=self.payment_method,
            reference_number=self.reference_number,
            notes=self.notes,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentInstallment(receipt_id={self.receipt_id!r}, "
            f"amount={self.amount!r} @ {self.exchange_rate!r})>"
        )
