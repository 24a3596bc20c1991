"""
Write-side services.

Each service takes the caller's session and only flushes.  The settlement
facade in ``treasury_modules.settlement`` composes them into committed
units of work.
"""

from treasury_kernel.services.account_ledger_service import AccountLedgerService
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService
from treasury_kernel.services.contact_service import ContactService
from treasury_kernel.services.customer_account_service import CustomerAccountService
from treasury_kernel.services.party_service import PartyService
from treasury_kernel.services.receipt_service import ReceiptService
from treasury_kernel.services.reconciliation_service import (
    LedgerReconciliation,
    ReceiptSettlementReport,
    ReconciliationService,
    TreasuryReconciliation,
)
from treasury_kernel.services.transfer_service import TransferService
from treasury_kernel.services.treasury_ledger import TreasuryLedger

__all__ = [
    "DEFAULT_ACTOR",
    "AccountLedgerService",
    "BaseService",
    "ContactService",
    "CustomerAccountService",
    "LedgerReconciliation",
    "PartyService",
    "ReceiptService",
    "ReceiptSettlementReport",
    "ReconciliationService",
    "TransferService",
    "TreasuryLedger",
    "TreasuryReconciliation",
]
