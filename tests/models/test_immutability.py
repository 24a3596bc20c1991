"""
ORM-level protection of append-only rows and ledger-owned fields.

Each test bypasses the services and touches a mapped instance directly,
the way careless application code would.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from treasury_kernel.domain.enums import EntryDirection, GeneralReceiptType, LedgerReferenceKind
from treasury_kernel.exceptions import ImmutabilityViolationError, TreasuryHasTransactionsError
from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.models.contact import ContactLedgerEntry, GeneralReceipt
from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
from treasury_kernel.models.treasury import Treasury, TreasuryTransaction


def _one(session, model):
    return session.execute(select(model).limit(1)).scalar_one()


@pytest.fixture
def settled(receipts, supplier, cash_treasury):
    receipt = receipts.create_receipt(supplier.id, Decimal("100"))
    return receipts.add_installment(receipt.id, Decimal("40"), cash_treasury.id)


class TestTreasuryProtection:

    def test_balance_assignment_blocked(self, session, cash_treasury):
        treasury = session.get(Treasury, cash_treasury.id)
        treasury.balance = Decimal("1")
        with pytest.raises(ImmutabilityViolationError, match="balance"):
            session.flush()

    def test_descriptive_update_allowed(self, session, cash_treasury):
        treasury = session.get(Treasury, cash_treasury.id)
        treasury.name = "Renamed"
        session.flush()

    def test_delete_with_history_blocked(self, session, cash_treasury):
        session.delete(session.get(Treasury, cash_treasury.id))
        with pytest.raises(TreasuryHasTransactionsError):
            session.flush()


class TestAppendOnlyRows:

    def test_transaction_update_blocked(self, session, cash_treasury):
        txn = _one(session, TreasuryTransaction)
        txn.description = "edited"
        with pytest.raises(ImmutabilityViolationError, match="append-only"):
            session.flush()

    def test_transaction_delete_blocked(self, session, cash_treasury):
        session.delete(_one(session, TreasuryTransaction))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_installment_update_blocked(self, session, settled):
        installment = _one(session, PaymentInstallment)
        installment.amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_account_entry_update_blocked(self, session, account_ledger, supplier):
        account_ledger.append_entry(
            supplier.id, EntryDirection.CREDIT, Decimal("5"), LedgerReferenceKind.PURCHASE
        )
        entry = _one(session, AccountLedgerEntry)
        entry.balance = Decimal("0")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_general_receipt_rows_blocked(self, session, contacts, cash_treasury):
        contact = contacts.create_contact("Nadia")
        contacts.record_general_receipt(
            contact.id, cash_treasury.id, GeneralReceiptType.DEPOSIT, Decimal("5")
        )
        session.delete(_one(session, GeneralReceipt))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_contact_entry_update_blocked(self, session, contacts, cash_treasury):
        contact = contacts.create_contact("Nadia")
        contacts.record_general_receipt(
            contact.id, cash_treasury.id, GeneralReceiptType.DEPOSIT, Decimal("5")
        )
        entry = _one(session, ContactLedgerEntry)
        entry.amount = Decimal("6")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestReceiptProtection:

    def test_settlement_fields_blocked(self, session, settled):
        receipt = session.get(PaymentReceipt, settled.receipt.id)
        receipt.remaining = Decimal("0")
        with pytest.raises(ImmutabilityViolationError, match="remaining"):
            session.flush()

    def test_delete_blocked(self, session, settled):
        session.delete(session.get(PaymentReceipt, settled.receipt.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_notes_editable(self, session, settled):
        receipt = session.get(PaymentReceipt, settled.receipt.id)
        receipt.notes = "Invoice attached"
        session.flush()
