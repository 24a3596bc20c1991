"""Read-only query layer.  Selectors return frozen DTOs and never write."""

from treasury_kernel.selectors.base import BaseSelector, KeysetPages
from treasury_kernel.selectors.contact_selector import ContactSelector
from treasury_kernel.selectors.ledger_selector import LedgerSelector
from treasury_kernel.selectors.receipt_selector import ReceiptSelector
from treasury_kernel.selectors.treasury_selector import TreasurySelector

__all__ = [
    "BaseSelector",
    "ContactSelector",
    "KeysetPages",
    "LedgerSelector",
    "ReceiptSelector",
    "TreasurySelector",
]
