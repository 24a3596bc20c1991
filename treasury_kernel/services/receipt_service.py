"""
ReceiptService -- payment receipts and installment settlement.

Responsibility:
    Creates receipts (obligations owed to a counterparty), settles them by
    installments, and cancels unpaid ones.  Every installment is one atomic
    unit inside the caller's transaction:

        1. lock the receipt; it must be PENDING
        2. 0 < amount <= remaining (receipt currency)
        3. resolve this installment's rate; base_amount = amount * rate
        4. TreasuryLedger.withdraw(base_amount, source=PAYMENT)
        5. insert the installment; paid += amount, remaining -= amount,
           PAID + paid_at when remaining reaches zero
        6. DEBIT/PAYMENT entry on the counterparty's account ledger

    Nothing is committed here.  A failure at any step propagates and the
    caller's rollback discards every earlier step.

Exchange rates:
    Each installment converts at its own rate.  When that rate differs
    from the receipt's nominal rate, the base currency actually withdrawn
    diverges from ``base_total``.  The divergence is kept as-is, logged as
    ``installment_rate_divergence`` and returned on the SettlementResult.

Lock order:
    receipt -> treasury -> party.  Every settlement path takes locks in
    this order.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import ZERO
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import (
    CurrencyRegistry,
    require_positive,
    resolve_rate,
    to_base,
    validate_currency,
)
from treasury_kernel.domain.dtos import PaymentReceiptInfo, SettlementResult
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
    InstallmentExceedsRemainingError,
    LedgerIntegrityError,
    ReceiptHasPaymentsError,
    ReceiptNotFoundError,
    ReceiptNotPendingError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.models.party import Party
from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
from treasury_kernel.services.account_ledger_service import AccountLedgerService
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService
from treasury_kernel.services.treasury_ledger import TreasuryLedger

logger = get_logger("services.receipt")


class ReceiptService(BaseService[PaymentReceipt]):
    """
    Args:
        session: Caller-owned session.
        ledger: Treasury ledger used for installment withdrawals; its base
            currency is the receipt service's base currency.
        account_ledger: Counterparty ledger; built on the same session
            when omitted.
        money_decimal_places: Precision of base-currency amounts.  Defaults
            to the ledger's, which must accept every converted amount.
    """

    def __init__(
        self,
        session: Session,
        ledger: TreasuryLedger,
        account_ledger: AccountLedgerService | None = None,
        clock: Clock | None = None,
        *,
        money_decimal_places: int | None = None,
        default_payment_method: str | None = None,
    ):
        super().__init__(session, clock or ledger.clock)
        self.ledger = ledger
        self.base_currency = ledger.base_currency
        if money_decimal_places is None:
            money_decimal_places = ledger.money_decimal_places
        self.money_decimal_places = money_decimal_places
        self.account_ledger = account_ledger or AccountLedgerService(
            session, self.clock, money_decimal_places=money_decimal_places
        )
        self.default_payment_method = default_payment_method

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_receipt(
        self,
        counterparty_id: UUID,
        total: Decimal,
        currency: str | None = None,
        exchange_rate: Decimal | None = None,
        receipt_type: ReceiptType = ReceiptType.MAIN_PURCHASE,
        *,
        purchase_id: str | None = None,
        amount_foreign: Decimal | None = None,
        description: str | None = None,
        category_name: str | None = None,
        notes: str | None = None,
        post_to_account_ledger: bool = True,
        actor: str = DEFAULT_ACTOR,
    ) -> PaymentReceiptInfo:
        """
        Record an obligation.  No treasury movement happens here.

        The obligation is posted to the counterparty's account as a CREDIT
        (reference PURCHASE, or RETURN for return receipts) unless
        ``post_to_account_ledger`` is False, e.g. when the purchasing
        module has already posted the purchase itself.

        ``total`` may not carry more decimals than the receipt currency's
        minor unit.

        Raises:
            NonPositiveAmountError, InvalidAmountError, InvalidCurrencyError,
            ExchangeRateRequiredError, InvalidExchangeRateError,
            CounterpartyNotFoundError, CounterpartyInactiveError.
        """
        receipt_type = ReceiptType(receipt_type)
        currency = validate_currency(currency or self.base_currency)
        total = require_positive(total, "total", self._places(currency))
        if amount_foreign is not None:
            amount_foreign = require_positive(amount_foreign, "amount_foreign")
        rate = resolve_rate(currency, self.base_currency, exchange_rate)
        base_total = self._to_base(total, currency, rate)

        party = self.session.get(Party, counterparty_id)
        if party is None:
            raise CounterpartyNotFoundError(str(counterparty_id))
        if not party.is_active:
            raise CounterpartyInactiveError(str(counterparty_id))

        receipt = PaymentReceipt(
            counterparty_id=party.id,
            purchase_id=purchase_id,
            receipt_type=receipt_type.value,
            status=ReceiptStatus.PENDING.value,
            total=total,
            paid=ZERO,
            remaining=total,
            currency=currency,
            exchange_rate=None if currency == self.base_currency else rate,
            amount_foreign=amount_foreign,
            base_total=base_total,
            description=description,
            category_name=category_name,
            notes=notes,
            version=1,
            created_by=actor,
            created_at=self.clock.now(),
        )
        self.session.add(receipt)
        self.session.flush()

        if post_to_account_ledger:
            self.account_ledger.append_entry(
                party.id,
                EntryDirection.CREDIT,
                base_total,
                (
                    LedgerReferenceKind.RETURN
                    if receipt_type == ReceiptType.RETURN
                    else LedgerReferenceKind.PURCHASE
                ),
                receipt.id,
                description or f"Payment receipt {receipt_type.value}",
                actor=actor,
            )

        logger.info(
            "receipt_created",
            extra={
                "receipt_id": str(receipt.id),
                "counterparty_id": str(party.id),
                "receipt_type": receipt_type.value,
                "total": str(total),
                "currency": currency,
                "base_total": str(base_total),
            },
        )
        return receipt.to_dto()

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def add_installment(
        self,
        receipt_id: UUID,
        amount: Decimal,
        treasury_id: UUID,
        exchange_rate: Decimal | None = None,
        payment_method: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> SettlementResult:
        """
        Settle part (or all) of a receipt from one treasury.

        Raises:
            ReceiptNotFoundError: Unknown receipt.
            ReceiptNotPendingError: Receipt is PAID or CANCELLED.
            NonPositiveAmountError: amount <= 0, or below the minor unit.
            InvalidAmountError: amount finer than the receipt currency's
                minor unit.
            InstallmentExceedsRemainingError: amount > remaining.
            ExchangeRateRequiredError: Foreign receipt without a rate.
            TreasuryNotFoundError, TreasuryInactiveError,
            InsufficientFundsError: From the treasury withdrawal.
        """
        receipt = self._lock_pending(receipt_id)
        return self._settle(
            receipt,
            amount,
            treasury_id,
            exchange_rate,
            payment_method,
            reference_number,
            notes,
            actor,
        )

    def pay_receipt(
        self,
        receipt_id: UUID,
        treasury_id: UUID,
        exchange_rate: Decimal | None = None,
        payment_method: str | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> SettlementResult:
        """Settle the full remaining amount as a single installment."""
        receipt = self._lock_pending(receipt_id)
        return self._settle(
            receipt,
            receipt.remaining,
            treasury_id,
            exchange_rate,
            payment_method,
            reference_number,
            notes or "Full settlement",
            actor,
        )

    def _settle(
        self,
        receipt: PaymentReceipt,
        amount: Decimal,
        treasury_id: UUID,
        exchange_rate: Decimal | None,
        payment_method: str | None,
        reference_number: str | None,
        notes: str | None,
        actor: str,
    ) -> SettlementResult:
        amount = require_positive(amount, decimal_places=self._places(receipt.currency))
        if amount > receipt.remaining:
            raise InstallmentExceedsRemainingError(
                str(receipt.id), amount, receipt.remaining
            )

        rate = resolve_rate(receipt.currency, self.base_currency, exchange_rate)
        base_amount = self._to_base(amount, receipt.currency, rate)

        installment_id = uuid4()
        txn = self.ledger.withdraw(
            treasury_id,
            base_amount,
            TransactionSource.PAYMENT,
            f"Installment on receipt {receipt.id}",
            reference_kind=TransactionReferenceKind.INSTALLMENT,
            reference_id=installment_id,
            actor=actor,
        )

        installment = PaymentInstallment(
            id=installment_id,
            receipt_id=receipt.id,
            treasury_id=txn.treasury_id,
            treasury_transaction_id=txn.id,
            amount=amount,
            exchange_rate=rate,
            base_amount=base_amount,
            payment_method=payment_method or self.default_payment_method,
            reference_number=reference_number,
            notes=notes,
            created_by=actor,
            created_at=self.clock.now(),
        )
        self.session.add(installment)
        self.session.flush()

        paid = receipt.paid + amount
        remaining = receipt.remaining - amount
        values = {"paid": paid, "remaining": remaining}
        if remaining == ZERO:
            values["status"] = ReceiptStatus.PAID.value
            values["paid_at"] = self.clock.now()
        self._compare_and_swap(receipt, values, actor)
        self._assert_amounts_balance(receipt)

        entry = self.account_ledger.append_entry(
            receipt.counterparty_id,
            EntryDirection.DEBIT,
            base_amount,
            LedgerReferenceKind.PAYMENT,
            installment_id,
            f"Payment on receipt {receipt.id}",
            actor=actor,
        )

        divergence = self._rate_divergence(receipt, amount, rate, base_amount)

        logger.info(
            "installment_added",
            extra={
                "receipt_id": str(receipt.id),
                "installment_id": str(installment_id),
                "treasury_id": str(txn.treasury_id),
                "amount": str(amount),
                "exchange_rate": str(rate),
                "base_amount": str(base_amount),
                "remaining": str(remaining),
                "status": receipt.status,
            },
        )
        if receipt.status == ReceiptStatus.PAID.value:
            logger.info(
                "receipt_paid",
                extra={"receipt_id": str(receipt.id), "total": str(receipt.total)},
            )

        return SettlementResult(
            receipt=receipt.to_dto(),
            installment=installment.to_dto(),
            treasury_transaction=txn,
            ledger_entry=entry,
            rate_divergence=divergence,
        )

    def _rate_divergence(
        self,
        receipt: PaymentReceipt,
        amount: Decimal,
        rate: Decimal,
        base_amount: Decimal,
    ) -> Decimal:
        """Base currency paid beyond (or short of) the receipt's nominal rate."""
        if receipt.exchange_rate is None or rate == receipt.exchange_rate:
            return ZERO
        nominal = to_base(amount, receipt.exchange_rate, self.money_decimal_places)
        divergence = base_amount - nominal
        if divergence != ZERO:
            logger.warning(
                "installment_rate_divergence",
                extra={
                    "receipt_id": str(receipt.id),
                    "nominal_rate": str(receipt.exchange_rate),
                    "installment_rate": str(rate),
                    "amount": str(amount),
                    "divergence": str(divergence),
                },
            )
        return divergence

    # ------------------------------------------------------------------
    # Cancellation and edits
    # ------------------------------------------------------------------

    def cancel_receipt(
        self,
        receipt_id: UUID,
        reason: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> PaymentReceiptInfo:
        """
        Cancel a PENDING receipt that has no installments.

        The CREDIT posted at creation, if any, is offset by a DEBIT
        ADJUSTMENT; ledger entries are never deleted.

        Raises:
            ReceiptNotFoundError, ReceiptNotPendingError,
            ReceiptHasPaymentsError.
        """
        receipt = self._lock_pending(receipt_id)
        if receipt.paid > ZERO:
            raise ReceiptHasPaymentsError(str(receipt.id), receipt.paid)

        self._compare_and_swap(
            receipt,
            {
                "status": ReceiptStatus.CANCELLED.value,
                "cancelled_at": self.clock.now(),
                "cancel_reason": reason,
            },
            actor,
        )

        posted = self.session.execute(
            select(AccountLedgerEntry.amount).where(
                AccountLedgerEntry.reference_id == str(receipt.id),
                AccountLedgerEntry.reference_kind.in_(
                    [LedgerReferenceKind.PURCHASE.value, LedgerReferenceKind.RETURN.value]
                ),
            )
        ).scalars().all()
        if posted:
            self.account_ledger.record_adjustment(
                receipt.counterparty_id,
                EntryDirection.DEBIT,
                sum(posted, ZERO),
                reason or f"Cancellation of receipt {receipt.id}",
                reference_id=receipt.id,
                actor=actor,
            )

        logger.info(
            "receipt_cancelled",
            extra={"receipt_id": str(receipt.id), "reason": reason},
        )
        return receipt.to_dto()

    def update_details(
        self,
        receipt_id: UUID,
        *,
        description: str | None = None,
        category_name: str | None = None,
        notes: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PaymentReceiptInfo:
        """Edit descriptive fields; amounts and status are not editable."""
        receipt = self._get(receipt_id)
        if description is not None:
            receipt.description = description
        if category_name is not None:
            receipt.category_name = category_name
        if notes is not None:
            receipt.notes = notes
        receipt.updated_by = actor
        self.session.flush()
        return receipt.to_dto()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _places(self, currency: str) -> int:
        """Decimals an amount in ``currency`` may carry."""
        if currency == self.base_currency:
            return self.money_decimal_places
        return CurrencyRegistry.get_info(currency).decimal_places

    def _to_base(self, amount: Decimal, currency: str, rate: Decimal) -> Decimal:
        # base-currency amounts are already at base precision
        if currency == self.base_currency:
            return amount
        return to_base(amount, rate, self.money_decimal_places)

    def _get(self, receipt_id: UUID) -> PaymentReceipt:
        receipt = self.session.get(PaymentReceipt, receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(str(receipt_id))
        return receipt

    def _lock_pending(self, receipt_id: UUID) -> PaymentReceipt:
        receipt = self._lock_row(PaymentReceipt, receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(str(receipt_id))
        if receipt.status != ReceiptStatus.PENDING.value:
            raise ReceiptNotPendingError(str(receipt.id), receipt.status)
        return receipt

    def _assert_amounts_balance(self, receipt: PaymentReceipt) -> None:
        settled = receipt.remaining == ZERO
        if (
            receipt.paid + receipt.remaining != receipt.total
            or receipt.remaining < ZERO
            or settled != (receipt.status == ReceiptStatus.PAID.value)
        ):
            raise LedgerIntegrityError(
                "PaymentReceipt",
                str(receipt.id),
                expected=receipt.total,
                actual=receipt.paid + receipt.remaining,
                detail=f"status {receipt.status}",
            )
