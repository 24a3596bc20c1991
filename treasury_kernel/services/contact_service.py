"""
ContactService -- financial contacts and their general receipts.

A general receipt moves a treasury and a contact balance together:

    DEPOSIT     treasury += amount, contact balance += amount
    WITHDRAWAL  treasury -= amount, contact balance -= amount

Both sides are written in the caller's transaction.  The treasury is
locked first (through TreasuryLedger), then the contact row, which
serializes the contact's ledger sequence.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import ZERO
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import require_positive
from treasury_kernel.domain.dtos import FinancialContactInfo, GeneralReceiptResult
from treasury_kernel.domain.enums import (
    GeneralReceiptType,
    TransactionReferenceKind,
    TransactionSource,
)
from treasury_kernel.domain.ledger_math import contact_delta
from treasury_kernel.exceptions import ContactNotFoundError, MissingFieldError
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.contact import (
    ContactLedgerEntry,
    FinancialContact,
    GeneralReceipt,
)
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService
from treasury_kernel.services.treasury_ledger import TreasuryLedger

logger = get_logger("services.contact")


class ContactService(BaseService[FinancialContact]):

    def __init__(
        self,
        session: Session,
        ledger: TreasuryLedger,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock or ledger.clock)
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def create_contact(
        self,
        name: str,
        phone: str | None = None,
        note: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> FinancialContactInfo:
        if not name or not name.strip():
            raise MissingFieldError("name")
        contact = FinancialContact(
            name=name.strip(),
            phone=phone,
            note=note,
            is_active=True,
            last_sequence=0,
            created_by=actor,
        )
        self.session.add(contact)
        self.session.flush()
        logger.info("contact_created", extra={"contact_id": str(contact.id)})
        return contact.to_dto()

    def update_contact(
        self,
        contact_id: UUID,
        *,
        name: str | None = None,
        phone: str | None = None,
        note: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> FinancialContactInfo:
        """Edit contact details.  Balances come from the ledger, not here."""
        contact = self._get(contact_id)
        if name is not None:
            if not name.strip():
                raise MissingFieldError("name")
            contact.name = name.strip()
        if phone is not None:
            contact.phone = phone
        if note is not None:
            contact.note = note
        contact.updated_by = actor
        self.session.flush()
        return contact.to_dto()

    def deactivate_contact(
        self, contact_id: UUID, actor: str = DEFAULT_ACTOR
    ) -> FinancialContactInfo:
        contact = self._get(contact_id)
        contact.is_active = False
        contact.updated_by = actor
        self.session.flush()
        logger.info("contact_deactivated", extra={"contact_id": str(contact.id)})
        return contact.to_dto()

    def _get(self, contact_id: UUID) -> FinancialContact:
        contact = self.session.get(FinancialContact, contact_id)
        if contact is None:
            raise ContactNotFoundError(str(contact_id))
        return contact

    # ------------------------------------------------------------------
    # General receipts
    # ------------------------------------------------------------------

    def record_general_receipt(
        self,
        contact_id: UUID,
        treasury_id: UUID,
        receipt_type: GeneralReceiptType,
        amount: Decimal,
        description: str | None = None,
        notes: str | None = None,
        *,
        payment_date: datetime | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> GeneralReceiptResult:
        """
        Record a settled deposit or withdrawal for a contact.

        Raises:
            NonPositiveAmountError: amount <= 0.
            InvalidAmountError: amount finer than the base currency's minor unit.
            ContactNotFoundError: Unknown contact.
            TreasuryNotFoundError, TreasuryInactiveError,
            InsufficientFundsError: From the treasury posting.
        """
        receipt_type = GeneralReceiptType(receipt_type)
        amount = require_positive(amount, decimal_places=self.ledger.money_decimal_places)
        if self.session.get(FinancialContact, contact_id) is None:
            raise ContactNotFoundError(str(contact_id))

        receipt_id = uuid4()
        post = (
            self.ledger.deposit
            if receipt_type == GeneralReceiptType.DEPOSIT
            else self.ledger.withdraw
        )
        txn = post(
            treasury_id,
            amount,
            TransactionSource.GENERAL_RECEIPT,
            description or f"General receipt {receipt_type.value.lower()}",
            reference_kind=TransactionReferenceKind.GENERAL_RECEIPT,
            reference_id=receipt_id,
            actor=actor,
        )

        contact = self._lock_row(FinancialContact, contact_id)
        when = payment_date or self.clock.now()
        receipt = GeneralReceipt(
            id=receipt_id,
            contact_id=contact.id,
            treasury_id=txn.treasury_id,
            treasury_transaction_id=txn.id,
            receipt_type=receipt_type.value,
            amount=amount,
            description=description,
            notes=notes,
            payment_date=when,
            created_by=actor,
        )
        self.session.add(receipt)
        self.session.flush()

        last_balance = self._last_balance(contact)
        sequence = contact.last_sequence + 1
        entry = ContactLedgerEntry(
            contact_id=contact.id,
            general_receipt_id=receipt.id,
            sequence=sequence,
            entry_type=receipt_type.value,
            amount=amount,
            balance=last_balance + contact_delta(receipt_type, amount),
            description=description,
            transaction_date=when,
            created_by=actor,
        )
        contact.last_sequence = sequence
        contact.updated_by = actor
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "general_receipt_recorded",
            extra={
                "general_receipt_id": str(receipt.id),
                "contact_id": str(contact.id),
                "treasury_id": str(txn.treasury_id),
                "receipt_type": receipt_type.value,
                "amount": str(amount),
                "contact_balance": str(entry.balance),
            },
        )
        return GeneralReceiptResult(
            receipt=receipt.to_dto(),
            treasury_transaction=txn,
            ledger_entry=entry.to_dto(),
        )

    def _last_balance(self, contact: FinancialContact) -> Decimal:
        if contact.last_sequence == 0:
            return ZERO
        return self.session.execute(
            select(ContactLedgerEntry.balance).where(
                ContactLedgerEntry.contact_id == contact.id,
                ContactLedgerEntry.sequence == contact.last_sequence,
            )
        ).scalar_one()
