"""
Settlement Module Service (``treasury_modules.settlement.service``).

Responsibility
--------------
``SettlementService`` is the public entry point for every treasury action:
opening and moving treasuries, transfers, receipts and installments,
counterparties, customer sales and payments, financial contacts and
general receipts.  Each public
method is one unit of work over the caller's session:

* kernel services run flush-only inside it,
* the session is committed once on success,
* any failure rolls the whole unit back before the exception leaves,
* domain events are published only after the commit.

Architecture position
---------------------
**Modules layer** -- thin glue over ``treasury_kernel``.  The kernel never
commits; this module never computes balances.

Failure modes
-------------
* Validation and state errors (``InvalidArgumentError``,
  ``InvalidStateError``, ``NotFoundError``) -> rolled back, re-raised
  unchanged, never retried.
* ``ConcurrencyConflictError`` or a deadlock / serialization failure from
  the database -> rolled back and retried up to
  ``LedgerConfig.max_conflict_retries`` times, then
  ``ConflictRetriesExhaustedError``.
* Any other ``SQLAlchemyError`` -> rolled back, raised as
  ``PersistenceError``.

Usage::

    service = SettlementService(session, config=get_active_config())
    cash = service.open_treasury("Main cash", opening_balance=Decimal("1000"))
    receipt = service.create_receipt(supplier.id, Decimal("300"))
    result = service.add_installment(receipt.id, Decimal("100"), cash.id)
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from treasury_config import LedgerConfig
from treasury_kernel.db.types import ZERO
from treasury_kernel.domain import events
from treasury_kernel.domain.clock import Clock, SystemClock
from treasury_kernel.domain.dtos import (
    CustomerPaymentResult,
    FinancialContactInfo,
    GeneralReceiptResult,
    LedgerEntryInfo,
    PartyInfo,
    PaymentReceiptInfo,
    SettlementResult,
    TransferResult,
    TreasuryInfo,
    TreasuryTransactionInfo,
)
from treasury_kernel.domain.enums import (
    EntryDirection,
    GeneralReceiptType,
    PartyType,
    ReceiptStatus,
    ReceiptType,
    TransactionSource,
    TreasuryType,
)
from treasury_kernel.domain.events import DomainEvent, EventBus
from treasury_kernel.exceptions import (
    ConcurrencyConflictError,
    ConflictRetriesExhaustedError,
    PersistenceError,
)
from treasury_kernel.logging_config import LogContext, get_logger
from treasury_kernel.selectors import (
    ContactSelector,
    LedgerSelector,
    ReceiptSelector,
    TreasurySelector,
)
from treasury_kernel.services import (
    DEFAULT_ACTOR,
    AccountLedgerService,
    ContactService,
    CustomerAccountService,
    PartyService,
    ReceiptService,
    ReconciliationService,
    TransferService,
    TreasuryLedger,
    TreasuryReconciliation,
)

logger = get_logger("modules.settlement")

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


def is_retryable_db_error(exc: BaseException) -> bool:
    """True for database errors that a fresh attempt may not hit again."""
    if not isinstance(exc, OperationalError):
        return False
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig).lower()


@dataclass
class _Kernel:
    """Kernel services bound to one session for one unit of work."""

    ledger: TreasuryLedger
    transfers: TransferService
    account_ledger: AccountLedgerService
    receipts: ReceiptService
    parties: PartyService
    contacts: ContactService
    customers: CustomerAccountService


class SettlementService:
    """
    Transactional facade over the treasury kernel.

    Args:
        session: Session this service commits and rolls back.
        config: Validated settings; defaults to ``LedgerConfig()``.
        clock: Time source shared by every kernel service.
        event_bus: Receives domain events after each commit.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ):
        self._session = session
        self._config = config or LedgerConfig()
        self._clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()

        ledger = TreasuryLedger(
            session,
            self._clock,
            allow_overdraft=self._config.allow_overdraft,
            base_currency=self._config.base_currency,
            money_decimal_places=self._config.money_decimal_places,
        )
        account_ledger = AccountLedgerService(
            session, self._clock, money_decimal_places=self._config.money_decimal_places
        )
        self._kernel = _Kernel(
            ledger=ledger,
            transfers=TransferService(session, ledger, self._clock),
            account_ledger=account_ledger,
            receipts=ReceiptService(
                session,
                ledger,
                account_ledger,
                self._clock,
                default_payment_method=self._config.default_payment_method,
            ),
            parties=PartyService(session, self._clock),
            contacts=ContactService(session, ledger, self._clock),
            customers=CustomerAccountService(session, ledger, account_ledger, self._clock),
        )

        self.treasuries = TreasurySelector(session)
        self.receipts = ReceiptSelector(session)
        self.ledgers = LedgerSelector(session)
        self.contacts = ContactSelector(session)
        self.reconciliation = ReconciliationService(
            session,
            base_currency=self._config.base_currency,
            money_decimal_places=self._config.money_decimal_places,
        )

    @property
    def config(self) -> LedgerConfig:
        return self._config

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _run(
        self,
        operation: str,
        work: Callable[[_Kernel], T],
        *,
        actor: str,
        events_for: Callable[[T], Iterable[DomainEvent]] | None = None,
        treasury_id: UUID | None = None,
        receipt_id: UUID | None = None,
    ) -> T:
        attempts = self._config.max_conflict_retries + 1
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=actor,
            treasury_id=treasury_id,
            receipt_id=receipt_id,
        ):
            last_error: Exception | None = None
            for attempt in range(1, attempts + 1):
                try:
                    result = work(self._kernel)
                    self._session.commit()
                except ConcurrencyConflictError as exc:
                    self._session.rollback()
                    last_error = exc
                except OperationalError as exc:
                    self._session.rollback()
                    if not is_retryable_db_error(exc):
                        raise PersistenceError(operation, str(exc.orig)) from exc
                    last_error = exc
                except SQLAlchemyError as exc:
                    self._session.rollback()
                    logger.error(
                        "settlement_persistence_failed",
                        extra={"operation": operation, "error": str(exc)},
                    )
                    raise PersistenceError(operation, str(exc)) from exc
                except Exception:
                    self._session.rollback()
                    raise
                else:
                    logger.debug(
                        "settlement_committed",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    if events_for is not None:
                        for event in events_for(result):
                            self.event_bus.publish(event)
                    return result

                logger.warning(
                    "settlement_conflict_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error": str(last_error),
                    },
                )

            logger.error(
                "settlement_conflict_retries_exhausted",
                extra={"operation": operation, "attempts": attempts},
            )
            raise ConflictRetriesExhaustedError(operation, attempts) from last_error

    def _event(self, name: str, **payload) -> DomainEvent:
        return DomainEvent(name=name, occurred_at=self._clock.now(), payload=payload)

    # =========================================================================
    # Treasuries
    # =========================================================================

    def open_treasury(
        self,
        name: str,
        treasury_type: TreasuryType = TreasuryType.GENERAL,
        opening_balance: Decimal = ZERO,
        *,
        company_id: str | None = None,
        bank_name: str | None = None,
        account_number: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryInfo:
        return self._run(
            "open_treasury",
            lambda k: k.ledger.open_treasury(
                name,
                treasury_type,
                opening_balance,
                company_id=company_id,
                bank_name=bank_name,
                account_number=account_number,
                actor=actor,
            ),
            actor=actor,
            events_for=lambda t: [
                self._event(
                    events.TREASURY_OPENED,
                    treasury_id=t.id,
                    opening_balance=t.opening_balance,
                )
            ],
        )

    def update_treasury(
        self,
        treasury_id: UUID,
        *,
        name: str | None = None,
        company_id: str | None = None,
        bank_name: str | None = None,
        account_number: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryInfo:
        return self._run(
            "update_treasury",
            lambda k: k.ledger.update_treasury(
                treasury_id,
                name=name,
                company_id=company_id,
                bank_name=bank_name,
                account_number=account_number,
                actor=actor,
            ),
            actor=actor,
            treasury_id=treasury_id,
        )

    def deactivate_treasury(self, treasury_id: UUID, *, actor: str = DEFAULT_ACTOR) -> TreasuryInfo:
        return self._run(
            "deactivate_treasury",
            lambda k: k.ledger.deactivate_treasury(treasury_id, actor),
            actor=actor,
            treasury_id=treasury_id,
        )

    def reactivate_treasury(self, treasury_id: UUID, *, actor: str = DEFAULT_ACTOR) -> TreasuryInfo:
        return self._run(
            "reactivate_treasury",
            lambda k: k.ledger.reactivate_treasury(treasury_id, actor),
            actor=actor,
            treasury_id=treasury_id,
        )

    def deposit(
        self,
        treasury_id: UUID,
        amount: Decimal,
        source: TransactionSource = TransactionSource.MANUAL,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransactionInfo:
        return self._run(
            "deposit",
            lambda k: k.ledger.deposit(treasury_id, amount, source, description, actor=actor),
            actor=actor,
            events_for=self._moved,
            treasury_id=treasury_id,
        )

    def withdraw(
        self,
        treasury_id: UUID,
        amount: Decimal,
        source: TransactionSource = TransactionSource.MANUAL,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransactionInfo:
        return self._run(
            "withdraw",
            lambda k: k.ledger.withdraw(treasury_id, amount, source, description, actor=actor),
            actor=actor,
            events_for=self._moved,
            treasury_id=treasury_id,
        )

    def _moved(self, txn: TreasuryTransactionInfo) -> list[DomainEvent]:
        return [
            self._event(
                events.TREASURY_MOVED,
                treasury_id=txn.treasury_id,
                transaction_id=txn.id,
                transaction_type=txn.transaction_type.value,
                source=txn.source.value,
                amount=txn.amount,
                balance_after=txn.balance_after,
            )
        ]

    def transfer(
        self,
        from_treasury_id: UUID,
        to_treasury_id: UUID,
        amount: Decimal,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> TransferResult:
        return self._run(
            "transfer",
            lambda k: k.transfers.transfer(
                from_treasury_id, to_treasury_id, amount, description, actor=actor
            ),
            actor=actor,
            events_for=lambda r: [
                self._event(
                    events.TRANSFER_COMPLETED,
                    transfer_id=r.transfer_id,
                    from_treasury_id=r.outgoing.treasury_id,
                    to_treasury_id=r.incoming.treasury_id,
                    amount=r.amount,
                )
            ],
        )

    # =========================================================================
    # Counterparties
    # =========================================================================

    def create_party(
        self,
        party_code: str,
        party_type: PartyType,
        name: str,
        *,
        phone: str | None = None,
        company_id: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PartyInfo:
        return self._run(
            "create_party",
            lambda k: k.parties.create_party(
                party_code, party_type, name, phone=phone, company_id=company_id, actor=actor
            ),
            actor=actor,
        )

    def update_party(
        self,
        party_id: UUID,
        *,
        name: str | None = None,
        phone: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PartyInfo:
        return self._run(
            "update_party",
            lambda k: k.parties.update_party(party_id, name=name, phone=phone, actor=actor),
            actor=actor,
        )

    def deactivate_party(self, party_id: UUID, *, actor: str = DEFAULT_ACTOR) -> PartyInfo:
        return self._run(
            "deactivate_party",
            lambda k: k.parties.deactivate_party(party_id, actor),
            actor=actor,
        )

    def get_party(self, party_id: UUID) -> PartyInfo:
        return self._kernel.parties.get_by_id(party_id)

    def list_parties(self, party_type: PartyType, active_only: bool = True) -> list[PartyInfo]:
        return self._kernel.parties.list_by_type(party_type, active_only)

    def record_ledger_adjustment(
        self,
        counterparty_id: UUID,
        direction: EntryDirection,
        amount: Decimal,
        description: str,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> LedgerEntryInfo:
        return self._run(
            "record_ledger_adjustment",
            lambda k: k.account_ledger.record_adjustment(
                counterparty_id, direction, amount, description, actor=actor
            ),
            actor=actor,
        )

    # =========================================================================
    # Customers
    # =========================================================================

    def record_sale_posting(
        self,
        customer_id: UUID,
        sale_id: str | UUID,
        total: Decimal,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> LedgerEntryInfo:
        """Debit a customer for a credit sale."""
        return self._run(
            "record_sale_posting",
            lambda k: k.customers.post_sale(
                customer_id, sale_id, total, description, actor=actor
            ),
            actor=actor,
            events_for=lambda e: [
                self._event(
                    events.CUSTOMER_SALE_POSTED,
                    counterparty_id=e.counterparty_id,
                    sale_id=e.reference_id,
                    total=e.amount,
                    balance=e.balance,
                )
            ],
        )

    def collect_customer_payment(
        self,
        customer_id: UUID,
        treasury_id: UUID,
        amount: Decimal,
        sale_id: str | UUID | None = None,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> CustomerPaymentResult:
        """Deposit a customer's payment and credit their account, together."""
        return self._run(
            "collect_customer_payment",
            lambda k: k.customers.collect_payment(
                customer_id, treasury_id, amount, sale_id, description, actor=actor
            ),
            actor=actor,
            events_for=lambda r: [
                self._event(
                    events.CUSTOMER_PAYMENT_COLLECTED,
                    payment_id=r.payment_id,
                    counterparty_id=r.ledger_entry.counterparty_id,
                    treasury_id=r.treasury_transaction.treasury_id,
                    sale_id=r.sale_id,
                    amount=r.treasury_transaction.amount,
                    balance=r.ledger_entry.balance,
                ),
                *self._moved(r.treasury_transaction),
            ],
            treasury_id=treasury_id,
        )

    # =========================================================================
    # Receipts
    # =========================================================================

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
        return self._run(
            "create_receipt",
            lambda k: k.receipts.create_receipt(
                counterparty_id,
                total,
                currency,
                exchange_rate,
                receipt_type,
                purchase_id=purchase_id,
                amount_foreign=amount_foreign,
                description=description,
                category_name=category_name,
                notes=notes,
                post_to_account_ledger=post_to_account_ledger,
                actor=actor,
            ),
            actor=actor,
            events_for=lambda r: [
                self._event(
                    events.RECEIPT_CREATED,
                    receipt_id=r.id,
                    counterparty_id=r.counterparty_id,
                    total=r.total,
                    currency=r.currency,
                )
            ],
        )

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
        return self._run(
            "add_installment",
            lambda k: k.receipts.add_installment(
                receipt_id,
                amount,
                treasury_id,
                exchange_rate,
                payment_method,
                reference_number,
                notes,
                actor=actor,
            ),
            actor=actor,
            events_for=self._settled,
            treasury_id=treasury_id,
            receipt_id=receipt_id,
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
        return self._run(
            "pay_receipt",
            lambda k: k.receipts.pay_receipt(
                receipt_id,
                treasury_id,
                exchange_rate,
                payment_method,
                reference_number,
                notes,
                actor=actor,
            ),
            actor=actor,
            events_for=self._settled,
            treasury_id=treasury_id,
            receipt_id=receipt_id,
        )

    def _settled(self, result: SettlementResult) -> list[DomainEvent]:
        receipt = result.receipt
        installment = result.installment
        published = [
            self._event(
                events.INSTALLMENT_ADDED,
                receipt_id=receipt.id,
                installment_id=installment.id,
                treasury_id=installment.treasury_id,
                amount=installment.amount,
                base_amount=installment.base_amount,
                remaining=receipt.remaining,
                rate_divergence=result.rate_divergence,
            )
        ]
        if receipt.status == ReceiptStatus.PAID:
            published.append(
                self._event(
                    events.RECEIPT_PAID,
                    receipt_id=receipt.id,
                    counterparty_id=receipt.counterparty_id,
                    total=receipt.total,
                    paid_at=receipt.paid_at,
                )
            )
        return published

    def cancel_receipt(
        self,
        receipt_id: UUID,
        reason: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> PaymentReceiptInfo:
        return self._run(
            "cancel_receipt",
            lambda k: k.receipts.cancel_receipt(receipt_id, reason, actor=actor),
            actor=actor,
            events_for=lambda r: [
                self._event(events.RECEIPT_CANCELLED, receipt_id=r.id, reason=r.cancel_reason)
            ],
            receipt_id=receipt_id,
        )

    def update_receipt_details(
        self,
        receipt_id: UUID,
        *,
        description: str | None = None,
        category_name: str | None = None,
        notes: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PaymentReceiptInfo:
        return self._run(
            "update_receipt_details",
            lambda k: k.receipts.update_details(
                receipt_id,
                description=description,
                category_name=category_name,
                notes=notes,
                actor=actor,
            ),
            actor=actor,
            receipt_id=receipt_id,
        )

    # =========================================================================
    # Financial contacts
    # =========================================================================

    def create_contact(
        self,
        name: str,
        phone: str | None = None,
        note: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> FinancialContactInfo:
        return self._run(
            "create_contact",
            lambda k: k.contacts.create_contact(name, phone, note, actor=actor),
            actor=actor,
        )

    def update_contact(
        self,
        contact_id: UUID,
        *,
        name: str | None = None,
        phone: str | None = None,
        note: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> FinancialContactInfo:
        return self._run(
            "update_contact",
            lambda k: k.contacts.update_contact(
                contact_id, name=name, phone=phone, note=note, actor=actor
            ),
            actor=actor,
        )

    def deactivate_contact(
        self, contact_id: UUID, *, actor: str = DEFAULT_ACTOR
    ) -> FinancialContactInfo:
        return self._run(
            "deactivate_contact",
            lambda k: k.contacts.deactivate_contact(contact_id, actor),
            actor=actor,
        )

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
        return self._run(
            "record_general_receipt",
            lambda k: k.contacts.record_general_receipt(
                contact_id,
                treasury_id,
                receipt_type,
                amount,
                description,
                notes,
                payment_date=payment_date,
                actor=actor,
            ),
            actor=actor,
            events_for=lambda r: [
                self._event(
                    events.GENERAL_RECEIPT_RECORDED,
                    general_receipt_id=r.receipt.id,
                    contact_id=r.receipt.contact_id,
                    treasury_id=r.receipt.treasury_id,
                    receipt_type=r.receipt.receipt_type.value,
                    amount=r.receipt.amount,
                )
            ],
            treasury_id=treasury_id,
        )

    # =========================================================================
    # Audit
    # =========================================================================

    def reconcile_treasuries(self) -> list[TreasuryReconciliation]:
        """Replay every treasury log; read-only."""
        reports = self.reconciliation.verify_all_treasuries()
        drifted = [r for r in reports if not r.is_consistent]
        logger.info(
            "treasury_reconciliation_completed",
            extra={"treasuries": len(reports), "inconsistent": len(drifted)},
        )
        return reports
