"""
ReceiptService: receipt creation, installment settlement and cancellation.

Covers the worked settlement scenarios end to end:
- a base-currency receipt settled in two installments
- a foreign receipt settled at two different rates (divergence kept)
- an installment larger than the remaining amount (rejected, no trace)
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from treasury_kernel.domain.enums import (
    EntryDirection,
    LedgerReferenceKind,
    ReceiptStatus,
    ReceiptType,
    TransactionReferenceKind,
    TransactionSource,
)
from treasury_kernel.exceptions import (
    CounterpartyInactiveError,
    CounterpartyNotFoundError,
    ExchangeRateRequiredError,
    InstallmentExceedsRemainingError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidExchangeRateError,
    InvalidStateError,
    NonPositiveAmountError,
    ReceiptHasPaymentsError,
    ReceiptNotFoundError,
    ReceiptNotPendingError,
    TreasuryNotFoundError,
)
from treasury_kernel.models.receipt import PaymentInstallment
from treasury_kernel.models.treasury import TreasuryTransaction
from treasury_kernel.selectors import LedgerSelector, ReceiptSelector, TreasurySelector
from treasury_kernel.services import ReceiptService


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestCreateReceipt:

    def test_base_currency_receipt(self, receipts, supplier, clock):
        receipt = receipts.create_receipt(
            supplier.id,
            Decimal("900"),
            purchase_id="PO-17",
            description="Floor tiles",
            category_name="Stock",
        )

        assert receipt.status == ReceiptStatus.PENDING
        assert receipt.total == Decimal("900")
        assert receipt.paid == Decimal("0")
        assert receipt.remaining == Decimal("900")
        assert receipt.currency == "LYD"
        assert receipt.exchange_rate is None
        assert receipt.base_total == Decimal("900")
        assert receipt.purchase_id == "PO-17"
        assert receipt.created_at == clock.now()
        assert receipt.version == 1

    def test_posts_credit_to_supplier_account(self, session, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("250"))

        entries = LedgerSelector(session).entries_for_reference(receipt.id)
        assert len(entries) == 1
        assert entries[0].direction == EntryDirection.CREDIT
        assert entries[0].reference_kind == LedgerReferenceKind.PURCHASE
        assert entries[0].balance == Decimal("250")

    def test_return_receipt_posts_return_reference(self, session, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("40"), receipt_type=ReceiptType.RETURN)
        entries = LedgerSelector(session).entries_for_reference(receipt.id)
        assert entries[0].reference_kind == LedgerReferenceKind.RETURN

    def test_ledger_posting_can_be_skipped(self, session, receipts, supplier):
        receipt = receipts.create_receipt(
            supplier.id, Decimal("250"), post_to_account_ledger=False
        )
        assert LedgerSelector(session).entries_for_reference(receipt.id) == []
        assert LedgerSelector(session).get_balance(supplier.id) == Decimal("0")

    def test_foreign_receipt(self, receipts, supplier):
        receipt = receipts.create_receipt(
            supplier.id, Decimal("200"), "usd", Decimal("5.0"), amount_foreign=Decimal("200")
        )
        assert receipt.currency == "USD"
        assert receipt.exchange_rate == Decimal("5.0")
        assert receipt.base_total == Decimal("1000")
        assert receipt.amount_foreign == Decimal("200")

    def test_foreign_receipt_requires_rate(self, receipts, supplier):
        with pytest.raises(ExchangeRateRequiredError):
            receipts.create_receipt(supplier.id, Decimal("200"), "USD")

    def test_base_receipt_rejects_other_rate(self, receipts, supplier):
        with pytest.raises(InvalidExchangeRateError):
            receipts.create_receipt(supplier.id, Decimal("200"), "LYD", Decimal("2"))

    def test_unknown_currency(self, receipts, supplier):
        with pytest.raises(InvalidCurrencyError):
            receipts.create_receipt(supplier.id, Decimal("1"), "ZZZ", Decimal("1"))

    def test_total_must_be_positive(self, receipts, supplier):
        with pytest.raises(NonPositiveAmountError):
            receipts.create_receipt(supplier.id, Decimal("0"))

    def test_unknown_counterparty(self, receipts):
        with pytest.raises(CounterpartyNotFoundError):
            receipts.create_receipt(uuid4(), Decimal("1"))

    def test_inactive_counterparty(self, receipts, parties, supplier):
        parties.deactivate_party(supplier.id)
        with pytest.raises(CounterpartyInactiveError):
            receipts.create_receipt(supplier.id, Decimal("1"))

    def test_creation_is_logged(self, receipts, supplier, captured_logs):
        receipt = receipts.create_receipt(supplier.id, Decimal("10"))
        created = [r for r in captured_logs() if r["message"] == "receipt_created"]
        assert created[0]["receipt_id"] == str(receipt.id)
        assert created[0]["base_total"] == "10.000"


class TestInstallmentsInBaseCurrency:
    """Receipt of 900 settled by installments of 300 and 600."""

    def test_two_installments_settle_receipt(self, session, receipts, supplier, cash_treasury, clock):
        receipt = receipts.create_receipt(supplier.id, Decimal("900"))

        first = receipts.add_installment(receipt.id, Decimal("300"), cash_treasury.id)
        assert first.receipt.paid == Decimal("300")
        assert first.receipt.remaining == Decimal("600")
        assert first.receipt.status == ReceiptStatus.PENDING
        assert first.receipt.paid_at is None

        clock.advance(60)
        second = receipts.add_installment(receipt.id, Decimal("600"), cash_treasury.id)
        assert second.receipt.paid == Decimal("900")
        assert second.receipt.remaining == Decimal("0")
        assert second.receipt.status == ReceiptStatus.PAID
        assert second.receipt.is_settled
        assert second.receipt.paid_at == clock.now()

        treasury = TreasurySelector(session).get_treasury(cash_treasury.id)
        assert cash_treasury.balance - treasury.balance == Decimal("900")

    def test_installment_links_treasury_transaction(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("100"))
        result = receipts.add_installment(
            receipt.id,
            Decimal("40"),
            cash_treasury.id,
            payment_method="BANK_TRANSFER",
            reference_number="CHQ-9",
            actor="cashier",
        )

        txn = result.treasury_transaction
        assert txn.source == TransactionSource.PAYMENT
        assert txn.amount == Decimal("40")
        assert txn.reference_kind == TransactionReferenceKind.INSTALLMENT
        assert txn.reference_id == result.installment.id
        assert result.installment.treasury_transaction_id == txn.id
        assert result.installment.payment_method == "BANK_TRANSFER"
        assert result.installment.reference_number == "CHQ-9"
        assert result.installment.created_by == "cashier"
        assert result.rate_divergence == Decimal("0")

    def test_installment_debits_supplier_account(self, session, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("100"))
        result = receipts.add_installment(receipt.id, Decimal("40"), cash_treasury.id)

        assert result.ledger_entry.direction == EntryDirection.DEBIT
        assert result.ledger_entry.reference_kind == LedgerReferenceKind.PAYMENT
        assert result.ledger_entry.reference_id == str(result.installment.id)
        assert LedgerSelector(session).get_balance(supplier.id) == Decimal("60")

    def test_pay_receipt_settles_remaining(self, session, receipts, supplier, cash_treasury, clock):
        receipt = receipts.create_receipt(supplier.id, Decimal("100"))
        receipts.add_installment(receipt.id, Decimal("30"), cash_treasury.id)
        clock.advance(5)

        result = receipts.pay_receipt(receipt.id, cash_treasury.id)
        assert result.installment.amount == Decimal("70")
        assert result.installment.notes == "Full settlement"
        assert result.receipt.status == ReceiptStatus.PAID
        assert len(ReceiptSelector(session).installments(receipt.id)) == 2

    def test_default_payment_method(self, session, ledger, account_ledger, clock, supplier, cash_treasury):
        service = ReceiptService(
            session, ledger, account_ledger, clock, default_payment_method="CASH"
        )
        receipt = service.create_receipt(supplier.id, Decimal("10"))
        result = service.add_installment(receipt.id, Decimal("10"), cash_treasury.id)
        assert result.installment.payment_method == "CASH"

    def test_paid_receipt_accepts_no_more_installments(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("10"))
        receipts.pay_receipt(receipt.id, cash_treasury.id)
        with pytest.raises(ReceiptNotPendingError):
            receipts.add_installment(receipt.id, Decimal("1"), cash_treasury.id)

    def test_unknown_receipt(self, receipts, cash_treasury):
        with pytest.raises(ReceiptNotFoundError):
            receipts.add_installment(uuid4(), Decimal("1"), cash_treasury.id)

    def test_unknown_treasury(self, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("10"))
        with pytest.raises(TreasuryNotFoundError):
            receipts.add_installment(receipt.id, Decimal("1"), uuid4())

    def test_non_positive_installment(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("10"))
        with pytest.raises(NonPositiveAmountError):
            receipts.add_installment(receipt.id, Decimal("-1"), cash_treasury.id)

    def test_strict_ledger_rejects_overdraft(self, session, strict_ledger, account_ledger, clock, supplier):
        service = ReceiptService(session, strict_ledger, account_ledger, clock)
        treasury = strict_ledger.open_treasury("Strict", opening_balance=Decimal("50"))
        receipt = service.create_receipt(supplier.id, Decimal("80"))
        with pytest.raises(InsufficientFundsError):
            service.add_installment(receipt.id, Decimal("60"), treasury.id)


class TestForeignInstallments:
    """Receipt of 200 USD at nominal 5.0, settled at 5.0 and 5.2."""

    def test_each_installment_uses_its_own_rate(self, session, receipts, supplier, cash_treasury, clock):
        receipt = receipts.create_receipt(supplier.id, Decimal("200"), "USD", Decimal("5.0"))

        first = receipts.add_installment(receipt.id, Decimal("100"), cash_treasury.id, Decimal("5.0"))
        assert first.installment.base_amount == Decimal("500")
        assert first.treasury_transaction.amount == Decimal("500")
        assert first.rate_divergence == Decimal("0")

        clock.advance(60)
        second = receipts.add_installment(receipt.id, Decimal("100"), cash_treasury.id, Decimal("5.2"))
        assert second.installment.base_amount == Decimal("520")
        assert second.installment.exchange_rate == Decimal("5.2")
        assert second.rate_divergence == Decimal("20")

        assert second.receipt.remaining == Decimal("0")
        assert second.receipt.status == ReceiptStatus.PAID
        assert second.receipt.base_total == Decimal("1000")

        treasury = TreasurySelector(session).get_treasury(cash_treasury.id)
        assert cash_treasury.balance - treasury.balance == Decimal("1020")

    def test_divergence_is_logged(self, receipts, supplier, cash_treasury, captured_logs):
        receipt = receipts.create_receipt(supplier.id, Decimal("200"), "USD", Decimal("5.0"))
        receipts.add_installment(receipt.id, Decimal("100"), cash_treasury.id, Decimal("4.9"))

        flagged = [r for r in captured_logs() if r["message"] == "installment_rate_divergence"]
        assert flagged[0]["level"] == "WARNING"
        assert flagged[0]["divergence"] == "-10.000"

    def test_installment_requires_rate(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("200"), "USD", Decimal("5.0"))
        with pytest.raises(ExchangeRateRequiredError):
            receipts.add_installment(receipt.id, Decimal("100"), cash_treasury.id)

    def test_base_amount_rounded_to_currency(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("10"), "USD", Decimal("4.8"))
        result = receipts.add_installment(receipt.id, Decimal("3.33"), cash_treasury.id, Decimal("4.8125"))
        assert result.installment.base_amount == Decimal("16.026")


class TestMinorUnitPrecision:
    """Receipt amounts carry at most the receipt currency's decimals."""

    def test_minor_unit_receipt_settles_exactly(self, session, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("0.001"))
        result = receipts.add_installment(receipt.id, Decimal("0.001"), cash_treasury.id)

        assert result.receipt.status == ReceiptStatus.PAID
        assert result.receipt.paid == Decimal("0.001")
        assert result.installment.base_amount == Decimal("0.001")
        assert result.treasury_transaction.amount == Decimal("0.001")
        balance = TreasurySelector(session).get_treasury(cash_treasury.id).balance
        assert cash_treasury.balance - balance == Decimal("0.001")

    def test_half_minor_unit_installment_rejected(self, session, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("0.001"))
        txns_before = _count(session, TreasuryTransaction)

        with pytest.raises(InvalidAmountError):
            receipts.add_installment(receipt.id, Decimal("0.0005"), cash_treasury.id)
        assert _count(session, TreasuryTransaction) == txns_before
        assert ReceiptSelector(session).get_receipt(receipt.id).paid == Decimal("0")

    def test_installment_rounding_to_zero_is_non_positive(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("1"))
        with pytest.raises(NonPositiveAmountError):
            receipts.add_installment(receipt.id, Decimal("0.0004"), cash_treasury.id)

    def test_total_finer_than_minor_unit_rejected(self, session, receipts, supplier):
        with pytest.raises(InvalidAmountError) as exc_info:
            receipts.create_receipt(supplier.id, Decimal("100.0004"))
        assert exc_info.value.field == "total"
        assert LedgerSelector(session).get_balance(supplier.id) == Decimal("0")

    def test_total_below_minor_unit_is_non_positive(self, receipts, supplier):
        with pytest.raises(NonPositiveAmountError):
            receipts.create_receipt(supplier.id, Decimal("0.0004"))

    def test_full_settlement_debits_what_was_paid(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("100.001"))
        result = receipts.pay_receipt(receipt.id, cash_treasury.id)
        assert result.receipt.paid == Decimal("100.001")
        assert result.treasury_transaction.amount == result.receipt.paid
        assert result.ledger_entry.amount == result.receipt.paid

    def test_foreign_total_uses_its_own_minor_unit(self, receipts, supplier, cash_treasury):
        with pytest.raises(InvalidAmountError) as exc_info:
            receipts.create_receipt(supplier.id, Decimal("10.005"), "USD", Decimal("5"))
        assert exc_info.value.decimal_places == 2

        receipt = receipts.create_receipt(supplier.id, Decimal("10.01"), "USD", Decimal("5"))
        with pytest.raises(InvalidAmountError):
            receipts.add_installment(receipt.id, Decimal("0.001"), cash_treasury.id, Decimal("5"))
        result = receipts.add_installment(receipt.id, Decimal("0.01"), cash_treasury.id, Decimal("5"))
        assert result.installment.base_amount == Decimal("0.05")


class TestInstallmentExceedsRemaining:
    """Installment of 50 against a remaining 30."""

    def test_rejected_without_trace(self, session, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("100"))
        receipts.add_installment(receipt.id, Decimal("70"), cash_treasury.id)

        installments_before = _count(session, PaymentInstallment)
        txns_before = _count(session, TreasuryTransaction)
        balance_before = TreasurySelector(session).get_treasury(cash_treasury.id).balance
        ledger_before = LedgerSelector(session).get_balance(supplier.id)

        with pytest.raises(InstallmentExceedsRemainingError) as exc_info:
            receipts.add_installment(receipt.id, Decimal("50"), cash_treasury.id)
        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.code == "INSTALLMENT_EXCEEDS_REMAINING"

        assert _count(session, PaymentInstallment) == installments_before
        assert _count(session, TreasuryTransaction) == txns_before
        assert TreasurySelector(session).get_treasury(cash_treasury.id).balance == balance_before
        assert LedgerSelector(session).get_balance(supplier.id) == ledger_before
        stored = ReceiptSelector(session).get_receipt(receipt.id)
        assert stored.remaining == Decimal("30")
        assert stored.status == ReceiptStatus.PENDING


class TestCancelReceipt:

    def test_cancel_unpaid(self, session, receipts, supplier, clock):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"))
        cancelled = receipts.cancel_receipt(receipt.id, "Order withdrawn", actor="manager")

        assert cancelled.status == ReceiptStatus.CANCELLED
        assert cancelled.cancel_reason == "Order withdrawn"
        assert cancelled.cancelled_at == clock.now()
        assert cancelled.version == 2

    def test_cancel_offsets_account_posting(self, session, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"))
        receipts.cancel_receipt(receipt.id)

        entries = LedgerSelector(session).entries_for_reference(receipt.id)
        kinds = [(e.direction, e.reference_kind) for e in entries]
        assert (EntryDirection.DEBIT, LedgerReferenceKind.ADJUSTMENT) in kinds
        assert LedgerSelector(session).get_balance(supplier.id) == Decimal("0")

    def test_cancel_without_posting_adds_no_adjustment(self, session, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"), post_to_account_ledger=False)
        receipts.cancel_receipt(receipt.id)
        assert LedgerSelector(session).entries_for_reference(receipt.id) == []

    def test_partially_paid_cannot_be_cancelled(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"))
        receipts.add_installment(receipt.id, Decimal("100"), cash_treasury.id)

        with pytest.raises(ReceiptHasPaymentsError) as exc_info:
            receipts.cancel_receipt(receipt.id)
        assert exc_info.value.code == "RECEIPT_HAS_PAYMENTS"

    def test_cancelled_cannot_be_paid(self, receipts, supplier, cash_treasury):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"))
        receipts.cancel_receipt(receipt.id)
        with pytest.raises(ReceiptNotPendingError):
            receipts.pay_receipt(receipt.id, cash_treasury.id)

    def test_cancel_twice(self, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"))
        receipts.cancel_receipt(receipt.id)
        with pytest.raises(ReceiptNotPendingError):
            receipts.cancel_receipt(receipt.id)


class TestUpdateDetails:

    def test_descriptive_fields(self, receipts, supplier):
        receipt = receipts.create_receipt(supplier.id, Decimal("300"), description="old")
        updated = receipts.update_details(
            receipt.id, description="new", category_name="Fuel", notes="check invoice"
        )
        assert updated.description == "new"
        assert updated.category_name == "Fuel"
        assert updated.notes == "check invoice"
        assert updated.total == Decimal("300")

    def test_unknown(self, receipts):
        with pytest.raises(ReceiptNotFoundError):
            receipts.update_details(uuid4(), notes="x")
