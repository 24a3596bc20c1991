"""
Module: treasury_kernel.selectors.contact_selector
Responsibility: Read-only queries over financial contacts, their general
    receipts and their running-balance ledger.
Architecture position: Kernel > Selectors.

Contact totals are derived from GeneralReceipt rows; the current balance
is the balance of the latest ContactLedgerEntry.  Nothing is cached on the
contact row except the last sequence number.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from treasury_kernel.db.types import ZERO, money_from_aggregate
from treasury_kernel.domain.dtos import (
    ContactLedgerEntryInfo,
    FinancialContactInfo,
    GeneralReceiptInfo,
)
from treasury_kernel.domain.enums import GeneralReceiptType
from treasury_kernel.exceptions import ContactNotFoundError
from treasury_kernel.models.contact import (
    ContactLedgerEntry,
    FinancialContact,
    GeneralReceipt,
)
from treasury_kernel.selectors.base import DEFAULT_PAGE_SIZE, BaseSelector, KeysetPages


class ContactSelector(BaseSelector[FinancialContact]):

    def get_contact(self, contact_id: UUID) -> FinancialContactInfo:
        """Contact with deposit/withdrawal totals and current balance."""
        contact = self.session.get(FinancialContact, contact_id)
        if contact is None:
            raise ContactNotFoundError(str(contact_id))
        deposits, withdrawals = self._totals(contact.id)
        return contact.to_dto(deposits, withdrawals, self.get_balance(contact.id))

    def list_contacts(
        self,
        *,
        active_only: bool = False,
        search: str | None = None,
    ) -> list[FinancialContactInfo]:
        stmt = select(FinancialContact)
        if active_only:
            stmt = stmt.where(FinancialContact.is_active.is_(True))
        if search:
            stmt = stmt.where(func.lower(FinancialContact.name).like(f"%{search.lower()}%"))
        stmt = stmt.order_by(FinancialContact.name, FinancialContact.id)
        contacts = self.session.execute(stmt).scalars().all()
        result = []
        for contact in contacts:
            deposits, withdrawals = self._totals(contact.id)
            result.append(
                contact.to_dto(deposits, withdrawals, self.get_balance(contact.id))
            )
        return result

    def get_balance(self, contact_id: UUID) -> Decimal:
        balance = self.session.execute(
            select(ContactLedgerEntry.balance)
            .where(ContactLedgerEntry.contact_id == contact_id)
            .order_by(ContactLedgerEntry.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return balance if balance is not None else ZERO

    def get_statement(
        self,
        contact_id: UUID,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> KeysetPages[ContactLedgerEntryInfo]:
        """Ledger entries in sequence order; ``until`` is exclusive."""
        stmt = select(ContactLedgerEntry).where(ContactLedgerEntry.contact_id == contact_id)
        if since is not None:
            stmt = stmt.where(ContactLedgerEntry.transaction_date >= since)
        if until is not None:
            stmt = stmt.where(ContactLedgerEntry.transaction_date < until)
        return KeysetPages(
            self.session,
            stmt,
            ContactLedgerEntry.sequence,
            ContactLedgerEntry.to_dto,
            page_size,
        )

    def general_receipts(
        self,
        *,
        contact_id: UUID | None = None,
        treasury_id: UUID | None = None,
        receipt_type: GeneralReceiptType | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[GeneralReceiptInfo]:
        stmt = select(GeneralReceipt)
        if contact_id is not None:
            stmt = stmt.where(GeneralReceipt.contact_id == contact_id)
        if treasury_id is not None:
            stmt = stmt.where(GeneralReceipt.treasury_id == treasury_id)
        if receipt_type is not None:
            stmt = stmt.where(
                GeneralReceipt.receipt_type == GeneralReceiptType(receipt_type).value
            )
        if since is not None:
            stmt = stmt.where(GeneralReceipt.payment_date >= since)
        if until is not None:
            stmt = stmt.where(GeneralReceipt.payment_date < until)
        stmt = stmt.order_by(GeneralReceipt.payment_date.desc(), GeneralReceipt.id)
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    def _totals(self, contact_id: UUID) -> tuple[Decimal, Decimal]:
        deposit = GeneralReceiptType.DEPOSIT.value
        withdrawal = GeneralReceiptType.WITHDRAWAL.value
        row = self.session.execute(
            select(
                func.sum(case((GeneralReceipt.receipt_type == deposit, GeneralReceipt.amount), else_=0)),
                func.sum(case((GeneralReceipt.receipt_type == withdrawal, GeneralReceipt.amount), else_=0)),
            ).where(GeneralReceipt.contact_id == contact_id)
        ).one()
        return money_from_aggregate(row[0]), money_from_aggregate(row[1])
