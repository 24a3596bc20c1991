"""ORM models for the treasury kernel."""

from treasury_kernel.models.account_ledger import AccountLedgerEntry
from treasury_kernel.models.contact import (
    ContactLedgerEntry,
    FinancialContact,
    GeneralReceipt,
)
from treasury_kernel.models.party import Party
from treasury_kernel.models.receipt import PaymentInstallment, PaymentReceipt
from treasury_kernel.models.treasury import Treasury, TreasuryTransaction

__all__ = [
    "AccountLedgerEntry",
    "ContactLedgerEntry",
    "FinancialContact",
    "GeneralReceipt",
    "Party",
    "PaymentInstallment",
    "PaymentReceipt",
    "Treasury",
    "TreasuryTransaction",
]
