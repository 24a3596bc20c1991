"""
ReconciliationService -- replay the logs and compare them with the caches.

Responsibility:
    Every stored balance in the kernel is a cache over an append-only log:

        Treasury.balance             <- TreasuryTransaction rows
        PaymentReceipt.paid          <- PaymentInstallment rows
        AccountLedgerEntry.balance   <- previous entry + signed amount
        ContactLedgerEntry.balance   <- previous entry + signed amount

    The ``verify_*`` methods replay a log from zero and return a report
    describing every disagreement found.  The ``assert_*`` variants raise
    LedgerIntegrityError on the first inconsistent report instead.

Architecture position:
    Kernel > Services, read-only.  Used by the settlement facade, the
    ``reconcile_treasuries`` script and the test suite.  Never flushes.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import ZERO
from treasury_kernel.domain.currency import CurrencyRegistry, to_base
from treasury_kernel.domain.enums import PartyType, ReceiptStatus
from treasury_kernel.domain.ledger_math import account_delta, contact_delta, treasury_delta
from treasury_kernel.exceptions import (
    ContactNotFoundError,
    CounterpartyNotFoundError,
    LedgerIntegrityError,
    ReceiptNotFoundError,
    TreasuryNotFoundError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.models.contact import ContactLedgerEntry, FinancialContact
from treasury_kernel.models.party import Party
from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
from treasury_kernel.models.treasury import Treasury, TreasuryTransaction
from treasury_kernel.selectors.base import KeysetPages

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class TreasuryReconciliation:
    """Replay of one treasury's transaction log."""

    treasury_id: UUID
    name: str
    cached_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    last_sequence: int
    issues: tuple[str, ...]

    @property
    def drift(self) -> Decimal:
        return self.cached_balance - self.replayed_balance

    @property
    def is_consistent(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class ReceiptSettlementReport:
    """
    Installments of one receipt against its paid/remaining counters.

    ``rate_divergence`` is the base currency withdrawn beyond (positive) or
    short of (negative) what the receipt's nominal rate implies.  It is
    reported, not treated as an inconsistency.
    """

    receipt_id: UUID
    status: ReceiptStatus
    total: Decimal
    paid: Decimal
    remaining: Decimal
    installment_count: int
    installment_total: Decimal
    base_total: Decimal
    base_paid: Decimal
    rate_divergence: Decimal
    issues: tuple[str, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class LedgerReconciliation:
    """Replay of one running-balance ledger (counterparty or contact)."""

    owner_id: UUID
    entry_count: int
    stored_balance: Decimal
    replayed_balance: Decimal
    issues: tuple[str, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.issues


class ReconciliationService:

    def __init__(
        self,
        session: Session,
        *,
        base_currency: str = "LYD",
        money_decimal_places: int | None = None,
    ):
        self.session = session
        if money_decimal_places is None:
            money_decimal_places = CurrencyRegistry.get_info(base_currency).decimal_places
        self.money_decimal_places = money_decimal_places

    # ------------------------------------------------------------------
    # Treasuries
    # ------------------------------------------------------------------

    def verify_treasury(self, treasury_id: UUID) -> TreasuryReconciliation:
        treasury = self.session.get(Treasury, treasury_id)
        if treasury is None:
            raise TreasuryNotFoundError(str(treasury_id))

        issues: list[str] = []
        running = ZERO
        replayed = ZERO
        count = 0
        log = KeysetPages(
            self.session,
            select(TreasuryTransaction).where(TreasuryTransaction.treasury_id == treasury.id),
            TreasuryTransaction.sequence,
            TreasuryTransaction.to_dto,
        )
        for txn in log:
            count += 1
            if txn.sequence != count:
                issues.append(f"sequence {txn.sequence} found where {count} expected")
            delta = treasury_delta(txn.transaction_type, txn.source, txn.amount)
            replayed += delta
            if txn.balance_before != running:
                issues.append(
                    f"sequence {txn.sequence}: balance_before {txn.balance_before} "
                    f"!= previous balance_after {running}"
                )
            if txn.balance_after != txn.balance_before + delta:
                issues.append(
                    f"sequence {txn.sequence}: balance_after {txn.balance_after} "
                    f"!= balance_before + {delta}"
                )
            # resync so one bad row is reported once
            running = txn.balance_after

        if treasury.last_sequence != count:
            issues.append(
                f"last_sequence {treasury.last_sequence} but {count} transactions logged"
            )
        if treasury.balance != replayed:
            issues.append(f"cached balance {treasury.balance} != replayed {replayed}")

        report = TreasuryReconciliation(
            treasury_id=treasury.id,
            name=treasury.name,
            cached_balance=treasury.balance,
            replayed_balance=replayed,
            transaction_count=count,
            last_sequence=treasury.last_sequence,
            issues=tuple(issues),
        )
        self._log_report("treasury", treasury.id, report.is_consistent, issues)
        return report

    def verify_all_treasuries(self) -> list[TreasuryReconciliation]:
        ids = self.session.execute(
            select(Treasury.id).order_by(Treasury.name, Treasury.id)
        ).scalars().all()
        return [self.verify_treasury(treasury_id) for treasury_id in ids]

    def assert_treasury(self, treasury_id: UUID) -> TreasuryReconciliation:
        report = self.verify_treasury(treasury_id)
        if not report.is_consistent:
            raise LedgerIntegrityError(
                "Treasury",
                str(report.treasury_id),
                expected=report.replayed_balance,
                actual=report.cached_balance,
                detail="; ".join(report.issues),
            )
        return report

    def assert_all_treasuries(self) -> list[TreasuryReconciliation]:
        reports = self.verify_all_treasuries()
        broken = [r for r in reports if not r.is_consistent]
        if broken:
            first = broken[0]
            raise LedgerIntegrityError(
                "Treasury",
                str(first.treasury_id),
                expected=first.replayed_balance,
                actual=first.cached_balance,
                detail=f"{len(broken)} inconsistent treasuries; " + "; ".join(first.issues),
            )
        return reports

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def verify_receipt(self, receipt_id: UUID) -> ReceiptSettlementReport:
        receipt = self.session.get(PaymentReceipt, receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(str(receipt_id))

        rows = self.session.execute(
            select(PaymentInstallment, TreasuryTransaction)
            .join(
                TreasuryTransaction,
                TreasuryTransaction.id == PaymentInstallment.treasury_transaction_id,
            )
            .where(PaymentInstallment.receipt_id == receipt.id)
        ).all()

        issues: list[str] = []
        installment_total = ZERO
        base_paid = ZERO
        divergence = ZERO
        nominal_rate = receipt.exchange_rate if receipt.exchange_rate is not None else Decimal(1)
        for installment, txn in rows:
            installment_total += installment.amount
            base_paid += installment.base_amount
            divergence += installment.base_amount - to_base(
                installment.amount, nominal_rate, self.money_decimal_places
            )
            if txn.amount != installment.base_amount:
                issues.append(
                    f"installment {installment.id}: treasury amount {txn.amount} "
                    f"!= base_amount {installment.base_amount}"
                )
            if txn.reference_id != installment.id:
                issues.append(f"installment {installment.id}: treasury reference mismatch")

        if installment_total != receipt.paid:
            issues.append(f"installments sum {installment_total} != paid {receipt.paid}")
        if receipt.paid + receipt.remaining != receipt.total:
            issues.append(
                f"paid {receipt.paid} + remaining {receipt.remaining} != total {receipt.total}"
            )
        status = ReceiptStatus(receipt.status)
        if status == ReceiptStatus.PAID and receipt.remaining != ZERO:
            issues.append(f"PAID with remaining {receipt.remaining}")
        if status == ReceiptStatus.PENDING and receipt.remaining == ZERO:
            issues.append("PENDING with nothing remaining")
        if status == ReceiptStatus.CANCELLED and rows:
            issues.append(f"CANCELLED with {len(rows)} installments")

        report = ReceiptSettlementReport(
            receipt_id=receipt.id,
            status=status,
            total=receipt.total,
            paid=receipt.paid,
            remaining=receipt.remaining,
            installment_count=len(rows),
            installment_total=installment_total,
            base_total=receipt.base_total,
            base_paid=base_paid,
            rate_divergence=divergence,
            issues=tuple(issues),
        )
        self._log_report("receipt", receipt.id, report.is_consistent, issues)
        return report

    def assert_receipt(self, receipt_id: UUID) -> ReceiptSettlementReport:
        report = self.verify_receipt(receipt_id)
        if not report.is_consistent:
            raise LedgerIntegrityError(
                "PaymentReceipt",
                str(report.receipt_id),
                expected=report.installment_total,
                actual=report.paid,
                detail="; ".join(report.issues),
            )
        return report

    # ------------------------------------------------------------------
    # Running-balance ledgers
    # ------------------------------------------------------------------

    def verify_ledger(self, counterparty_id: UUID) -> LedgerReconciliation:
        """Replay a supplier or customer account from its first entry."""
        party = self.session.get(Party, counterparty_id)
        if party is None:
            raise CounterpartyNotFoundError(str(counterparty_id))
        role = PartyType(party.party_type)
        entries = KeysetPages(
            self.session,
            select(AccountLedgerEntry).where(AccountLedgerEntry.counterparty_id == party.id),
            AccountLedgerEntry.sequence,
            AccountLedgerEntry.to_dto,
        )
        return self._replay(
            party.id,
            "ledger",
            ((e.sequence, account_delta(role, e.direction, e.amount), e.balance) for e in entries),
        )

    def verify_contact(self, contact_id: UUID) -> LedgerReconciliation:
        contact = self.session.get(FinancialContact, contact_id)
        if contact is None:
            raise ContactNotFoundError(str(contact_id))
        entries = KeysetPages(
            self.session,
            select(ContactLedgerEntry).where(ContactLedgerEntry.contact_id == contact.id),
            ContactLedgerEntry.sequence,
            ContactLedgerEntry.to_dto,
        )
        return self._replay(
            contact.id,
            "contact",
            ((e.sequence, contact_delta(e.entry_type, e.amount), e.balance) for e in entries),
        )

    def assert_ledger(self, counterparty_id: UUID) -> LedgerReconciliation:
        return self._assert_replay(self.verify_ledger(counterparty_id), "AccountLedger")

    def assert_contact(self, contact_id: UUID) -> LedgerReconciliation:
        return self._assert_replay(self.verify_contact(contact_id), "ContactLedger")

    def _replay(self, owner_id: UUID, kind: str, rows) -> LedgerReconciliation:
        issues: list[str] = []
        replayed = ZERO
        stored = ZERO
        count = 0
        for sequence, delta, balance in rows:
            count += 1
            if sequence != count:
                issues.append(f"sequence {sequence} found where {count} expected")
            replayed += delta
            stored = balance
            if balance != replayed:
                issues.append(f"sequence {sequence}: balance {balance} != replayed {replayed}")
        report = LedgerReconciliation(
            owner_id=owner_id,
            entry_count=count,
            stored_balance=stored,
            replayed_balance=replayed,
            issues=tuple(issues),
        )
        self._log_report(kind, owner_id, report.is_consistent, issues)
        return report

    @staticmethod
    def _assert_replay(report: LedgerReconciliation, entity_type: str) -> LedgerReconciliation:
        if not report.is_consistent:
            raise LedgerIntegrityError(
                entity_type,
                str(report.owner_id),
                expected=report.replayed_balance,
                actual=report.stored_balance,
                detail="; ".join(report.issues),
            )
        return report

    @staticmethod
    def _log_report(kind: str, entity_id: UUID, consistent: bool, issues: list[str]) -> None:
        if consistent:
            logger.debug(
                "reconciliation_passed",
                extra={"kind": kind, "entity_id": str(entity_id)},
            )
        else:
            logger.error(
                "reconciliation_failed",
                extra={"kind": kind, "entity_id": str(entity_id), "issues": issues},
            )
