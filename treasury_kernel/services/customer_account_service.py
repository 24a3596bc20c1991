"""
CustomerAccountService -- the customer side of settlement.

A credit sale raises what the customer owes; a collected payment lowers it
and puts the cash in a treasury:

    post_sale        customer DEBIT  (reference SALE)
    collect_payment  treasury DEPOSIT (source RECEIPT)
                     customer CREDIT (reference PAYMENT)

Both postings of a payment share one payment id: the treasury transaction
references it as CUSTOMER_PAYMENT and the ledger entry as PAYMENT.  The
treasury is locked before the customer's Party row, the same order
installments use.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import require_positive
from treasury_kernel.domain.dtos import CustomerPaymentResult, LedgerEntryInfo
from treasury_kernel.domain.enums import (
    EntryDirection,
    LedgerReferenceKind,
    PartyType,
    TransactionReferenceKind,
    TransactionSource,
)
from treasury_kernel.exceptions import (
    CounterpartyInactiveError,
    CounterpartyNotFoundError,
    CounterpartyRoleError,
    MissingFieldError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.party import Party
from treasury_kernel.services.account_ledger_service import AccountLedgerService
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService
from treasury_kernel.services.treasury_ledger import TreasuryLedger

logger = get_logger("services.customer_account")


class CustomerAccountService(BaseService[Party]):

    def __init__(
        self,
        session: Session,
        ledger: TreasuryLedger,
        account_ledger: AccountLedgerService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock or ledger.clock)
        self.ledger = ledger
        self.account_ledger = account_ledger or AccountLedgerService(
            session, self.clock, money_decimal_places=ledger.money_decimal_places
        )

    def post_sale(
        self,
        customer_id: UUID,
        sale_id: str | UUID,
        total: Decimal,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> LedgerEntryInfo:
        """
        Debit a customer for a credit sale.  No treasury movement.

        Raises:
            MissingFieldError: Empty sale id.
            CounterpartyNotFoundError, CounterpartyInactiveError,
            CounterpartyRoleError: Not an active customer.
            NonPositiveAmountError, InvalidAmountError: Bad total.
        """
        if sale_id is None or not str(sale_id).strip():
            raise MissingFieldError("sale_id")
        total = require_positive(total, "total", self.ledger.money_decimal_places)
        customer = self._customer(customer_id)

        entry = self.account_ledger.append_entry(
            customer.id,
            EntryDirection.DEBIT,
            total,
            LedgerReferenceKind.SALE,
            sale_id,
            description or f"Credit sale {sale_id}",
            actor=actor,
        )
        logger.info(
            "customer_sale_posted",
            extra={
                "counterparty_id": str(customer.id),
                "sale_id": str(sale_id),
                "total": str(total),
                "balance": str(entry.balance),
            },
        )
        return entry

    def collect_payment(
        self,
        customer_id: UUID,
        treasury_id: UUID,
        amount: Decimal,
        sale_id: str | UUID | None = None,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> CustomerPaymentResult:
        """
        Deposit a customer's payment and credit their account.

        The amount may exceed what the customer owes; the balance then
        goes negative (an advance).

        Raises:
            CounterpartyNotFoundError, CounterpartyInactiveError,
            CounterpartyRoleError: Not an active customer.
            NonPositiveAmountError, InvalidAmountError: Bad amount.
            TreasuryNotFoundError, TreasuryInactiveError: From the deposit.
        """
        amount = require_positive(amount, decimal_places=self.ledger.money_decimal_places)
        customer = self._customer(customer_id)
        payment_id = uuid4()
        text = description or (
            f"Payment from {customer.name} for sale {sale_id}"
            if sale_id is not None
            else f"Payment from {customer.name}"
        )

        txn = self.ledger.deposit(
            treasury_id,
            amount,
            TransactionSource.RECEIPT,
            text,
            reference_kind=TransactionReferenceKind.CUSTOMER_PAYMENT,
            reference_id=payment_id,
            actor=actor,
        )
        entry = self.account_ledger.append_entry(
            customer.id,
            EntryDirection.CREDIT,
            amount,
            LedgerReferenceKind.PAYMENT,
            payment_id,
            text,
            actor=actor,
        )

        logger.info(
            "customer_payment_collected",
            extra={
                "payment_id": str(payment_id),
                "counterparty_id": str(customer.id),
                "treasury_id": str(txn.treasury_id),
                "sale_id": str(sale_id) if sale_id is not None else None,
                "amount": str(amount),
                "balance": str(entry.balance),
            },
        )
        return CustomerPaymentResult(
            payment_id=payment_id,
            sale_id=str(sale_id) if sale_id is not None else None,
            treasury_transaction=txn,
            ledger_entry=entry,
        )

    def _customer(self, customer_id: UUID) -> Party:
        party = self.session.get(Party, customer_id)
        if party is None:
            raise CounterpartyNotFoundError(str(customer_id))
        if party.party_type != PartyType.CUSTOMER.value:
            raise CounterpartyRoleError(
                str(customer_id), PartyType.CUSTOMER.value, party.party_type
            )
        if not party.is_active:
            raise CounterpartyInactiveError(str(customer_id))
        return party
