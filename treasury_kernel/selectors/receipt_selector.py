"""
Module: treasury_kernel.selectors.receipt_selector
Responsibility: Read-only queries over payment receipts and installments,
    including the per-status dashboard figures.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, or_, select

from treasury_kernel.db.types import ZERO, money_from_aggregate
from treasury_kernel.domain.dtos import (
    PaymentInstallmentInfo,
    PaymentReceiptInfo,
    ReceiptStats,
)
from treasury_kernel.domain.enums import ReceiptStatus, ReceiptType
from treasury_kernel.exceptions import InstallmentNotFoundError, ReceiptNotFoundError
from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
from treasury_kernel.selectors.base import BaseSelector


class ReceiptSelector(BaseSelector[PaymentReceipt]):

    def get_receipt(self, receipt_id: UUID) -> PaymentReceiptInfo:
        receipt = self.session.get(PaymentReceipt, receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(str(receipt_id))
        return receipt.to_dto()

    def list_receipts(
        self,
        *,
        counterparty_id: UUID | None = None,
        purchase_id: str | None = None,
        status: ReceiptStatus | None = None,
        receipt_type: ReceiptType | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PaymentReceiptInfo]:
        """
        Receipts newest first.

        ``search`` is a case-insensitive substring match on description,
        category name and notes.
        """
        stmt = select(PaymentReceipt)
        if counterparty_id is not None:
            stmt = stmt.where(PaymentReceipt.counterparty_id == counterparty_id)
        if purchase_id is not None:
            stmt = stmt.where(PaymentReceipt.purchase_id == purchase_id)
        if status is not None:
            stmt = stmt.where(PaymentReceipt.status == ReceiptStatus(status).value)
        if receipt_type is not None:
            stmt = stmt.where(
                PaymentReceipt.receipt_type == ReceiptType(receipt_type).value
            )
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(PaymentReceipt.description).like(pattern),
                    func.lower(PaymentReceipt.category_name).like(pattern),
                    func.lower(PaymentReceipt.notes).like(pattern),
                )
            )
        stmt = stmt.order_by(PaymentReceipt.created_at.desc(), PaymentReceipt.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    def get_receipt_stats(self, counterparty_id: UUID | None = None) -> ReceiptStats:
        stmt = select(
            PaymentReceipt.status,
            func.count(PaymentReceipt.id),
            func.coalesce(func.sum(PaymentReceipt.total), 0),
            func.coalesce(func.sum(PaymentReceipt.remaining), 0),
        ).group_by(PaymentReceipt.status)
        if counterparty_id is not None:
            stmt = stmt.where(PaymentReceipt.counterparty_id == counterparty_id)

        counts = {s: 0 for s in ReceiptStatus}
        totals = {s: ZERO for s in ReceiptStatus}
        remaining = {s: ZERO for s in ReceiptStatus}
        for status, count, total, left in self.session.execute(stmt):
            key = ReceiptStatus(status)
            counts[key] = count
            totals[key] = money_from_aggregate(total)
            remaining[key] = money_from_aggregate(left)

        return ReceiptStats(
            total_count=sum(counts.values()),
            pending_count=counts[ReceiptStatus.PENDING],
            paid_count=counts[ReceiptStatus.PAID],
            cancelled_count=counts[ReceiptStatus.CANCELLED],
            pending_remaining=remaining[ReceiptStatus.PENDING],
            paid_total=totals[ReceiptStatus.PAID],
            total_amount=sum(totals.values(), ZERO),
        )

    def installments(self, receipt_id: UUID) -> list[PaymentInstallmentInfo]:
        """Installments of one receipt in the order they were made."""
        rows = self.session.execute(
            select(PaymentInstallment)
            .where(PaymentInstallment.receipt_id == receipt_id)
            .order_by(PaymentInstallment.created_at, PaymentInstallment.id)
        ).scalars()
        return [i.to_dto() for i in rows]

    def get_installment(self, installment_id: UUID) -> PaymentInstallmentInfo:
        installment = self.session.get(PaymentInstallment, installment_id)
        if installment is None:
            raise InstallmentNotFoundError(str(installment_id))
        return installment.to_dto()
