"""Enumerations shared by models, DTOs and services.

Values are stored verbatim in String columns; they are also the values the
presentation layer displays and filters on.
"""

from enum import Enum


class TreasuryType(str, Enum):
    COMPANY = "COMPANY"
    GENERAL = "GENERAL"
    BANK = "BANK"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"


class TransactionSource(str, Enum):
    """Why a treasury balance moved."""

    RECEIPT = "RECEIPT"
    PAYMENT = "PAYMENT"
    MANUAL = "MANUAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    OPENING_BALANCE = "OPENING_BALANCE"
    GENERAL_RECEIPT = "GENERAL_RECEIPT"


class TransactionReferenceKind(str, Enum):
    """What a treasury transaction points back to."""

    RECEIPT = "RECEIPT"
    INSTALLMENT = "INSTALLMENT"
    TRANSFER = "TRANSFER"
    GENERAL_RECEIPT = "GENERAL_RECEIPT"
    CUSTOMER_PAYMENT = "CUSTOMER_PAYMENT"


class ReceiptType(str, Enum):
    MAIN_PURCHASE = "MAIN_PURCHASE"
    EXPENSE = "EXPENSE"
    RETURN = "RETURN"


class ReceiptStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PartyType(str, Enum):
    """Counterparty role; decides how ledger directions move the balance."""

    SUPPLIER = "SUPPLIER"
    CUSTOMER = "CUSTOMER"


class EntryDirection(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class LedgerReferenceKind(str, Enum):
    SALE = "SALE"
    PURCHASE = "PURCHASE"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    RETURN = "RETURN"


class GeneralReceiptType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
