"""
Immutable DTOs returned by kernel services and selectors.

These are the persisted shapes the presentation layer reads.  They carry no
ORM state, so they stay valid after the session that produced them closes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from treasury_kernel.domain.enums import (
    EntryDirection,
    GeneralReceiptType,
    LedgerReferenceKind,
    PartyType,
    ReceiptStatus,
    ReceiptType,
    TransactionReferenceKind,
    TransactionSource,
    TransactionType,
    TreasuryType,
)


@dataclass(frozen=True)
class PartyInfo:
    id: UUID
    party_code: str
    party_type: PartyType
    name: str
    phone: str | None
    company_id: str | None
    is_active: bool


@dataclass(frozen=True)
class TreasuryInfo:
    id: UUID
    name: str
    treasury_type: TreasuryType
    company_id: str | None
    bank_name: str | None
    account_number: str | None
    currency: str
    opening_balance: Decimal
    balance: Decimal
    is_active: bool
    version: int


@dataclass(frozen=True)
class TreasuryTransactionInfo:
    """One row of a treasury's append-only log."""

    id: UUID
    treasury_id: UUID
    sequence: int
    transaction_type: TransactionType
    source: TransactionSource
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str | None
    reference_kind: TransactionReferenceKind | None
    reference_id: UUID | None
    counterpart_treasury_id: UUID | None
    transfer_id: UUID | None
    created_by: str
    created_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        return self.balance_after - self.balance_before


@dataclass(frozen=True)
class TransferResult:
    """Both legs of one transfer."""

    transfer_id: UUID
    outgoing: TreasuryTransactionInfo
    incoming: TreasuryTransactionInfo
    amount: Decimal


@dataclass(frozen=True)
class PaymentReceiptInfo:
    id: UUID
    counterparty_id: UUID
    purchase_id: str | None
    receipt_type: ReceiptType
    status: ReceiptStatus
    total: Decimal
    paid: Decimal
    remaining: Decimal
    currency: str
    exchange_rate: Decimal | None
    amount_foreign: Decimal | None
    base_total: Decimal
    description: str | None
    category_name: str | None
    notes: str | None
    created_at: datetime
    paid_at: datetime | None
    cancelled_at: datetime | None
    cancel_reason: str | None
    version: int

    @property
    def is_settled(self) -> bool:
        return self.status == ReceiptStatus.PAID


@dataclass(frozen=True)
class PaymentInstallmentInfo:
    id: UUID
    receipt_id: UUID
    treasury_id: UUID
    treasury_transaction_id: UUID
    amount: Decimal
    exchange_rate: Decimal
    base_amount: Decimal
    payment_method: str | None
    reference_number: str | None
    notes: str | None
    created_by: str
    created_at: datetime


@dataclass(frozen=True)
class LedgerEntryInfo:
    """One posting in a supplier or customer running account."""

    id: UUID
    counterparty_id: UUID
    counterparty_role: PartyType
    sequence: int
    direction: EntryDirection
    amount: Decimal
    balance: Decimal
    reference_kind: LedgerReferenceKind
    reference_id: str | None
    description: str | None
    transaction_date: datetime


@dataclass(frozen=True)
class LedgerSummaryRow:
    counterparty_id: UUID
    counterparty_role: PartyType
    total_debit: Decimal
    total_credit: Decimal
    balance: Decimal
    entry_count: int
    last_transaction_date: datetime | None


@dataclass(frozen=True)
class SettlementResult:
    """Everything one installment wrote, as a single value."""

    receipt: PaymentReceiptInfo
    installment: PaymentInstallmentInfo
    treasury_transaction: TreasuryTransactionInfo
    ledger_entry: LedgerEntryInfo | None
    rate_divergence: Decimal = field(default=Decimal("0"))


@dataclass(frozen=True)
class CustomerPaymentResult:
    """A collected customer payment: the deposit and the CREDIT it posted."""

    payment_id: UUID
    sale_id: str | None
    treasury_transaction: TreasuryTransactionInfo
    ledger_entry: LedgerEntryInfo


@dataclass(frozen=True)
class ReceiptStats:
    """Counts and sums per status for dashboards."""

    total_count: int
    pending_count: int
    paid_count: int
    cancelled_count: int
    pending_remaining: Decimal
    paid_total: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class FinancialContactInfo:
    id: UUID
    name: str
    phone: str | None
    note: str | None
    is_active: bool
    total_deposit: Decimal = Decimal("0")
    total_withdrawal: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class GeneralReceiptInfo:
    id: UUID
    contact_id: UUID
    treasury_id: UUID
    treasury_transaction_id: UUID
    receipt_type: GeneralReceiptType
    amount: Decimal
    description: str | None
    notes: str | None
    payment_date: datetime
    created_by: str


@dataclass(frozen=True)
class ContactLedgerEntryInfo:
    id: UUID
    contact_id: UUID
    general_receipt_id: UUID
    sequence: int
    entry_type: GeneralReceiptType
    amount: Decimal
    balance: Decimal
    description: str | None
    transaction_date: datetime


@dataclass(frozen=True)
class GeneralReceiptResult:
    """A recorded general receipt with the two rows it produced."""

    receipt: GeneralReceiptInfo
    treasury_transaction: TreasuryTransactionInfo
    ledger_entry: ContactLedgerEntryInfo
