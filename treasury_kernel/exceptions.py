"""
Typed Exception Hierarchy for the Treasury Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the settlement engine (HTTP handlers, batch jobs, the UI layer)
must be able to tell the user *why* an operation was refused -- "amount
exceeds remaining balance" rather than "something went wrong".  Parsing
message strings for that is fragile, so every failure is:

  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE class attribute (machine-readable, API-safe)
  3. Carrying structured DATA as attributes (not just a message string)

Example:
    try:
        engine.add_installment(receipt_id, amount, treasury_id)
    except InstallmentExceedsRemainingError as e:
        api_response(code=e.code, remaining=str(e.remaining))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from TreasuryKernelError:

    TreasuryKernelError (base)
    |
    +-- NotFoundError
    |   +-- TreasuryNotFoundError
    |   +-- ReceiptNotFoundError
    |   +-- InstallmentNotFoundError
    |   +-- CounterpartyNotFoundError
    |   +-- ContactNotFoundError
    |
    +-- InvalidArgumentError
    |   +-- NonPositiveAmountError
    |   +-- InvalidAmountError
    |   +-- ExchangeRateRequiredError
    |   +-- InvalidExchangeRateError
    |   +-- SameTreasuryTransferError
    |   +-- InvalidCurrencyError
    |   +-- InvalidSourceError
    |   +-- MissingFieldError
    |   +-- DuplicatePartyCodeError
    |   +-- CounterpartyRoleError
    |   +-- BackdatedEntryError
    |
    +-- InvalidStateError
    |   +-- ReceiptNotPendingError
    |   +-- InstallmentExceedsRemainingError
    |   +-- ReceiptHasPaymentsError
    |   +-- TreasuryInactiveError
    |   +-- InsufficientFundsError
    |   +-- TreasuryHasTransactionsError
    |   +-- CounterpartyInactiveError
    |
    +-- ConcurrencyConflictError
    |   +-- OptimisticLockError
    |   +-- ConflictRetriesExhaustedError
    |
    +-- PersistenceError
    |
    +-- ImmutabilityViolationError
    |
    +-- LedgerIntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Not found       | TREASURY_NOT_FOUND            | Treasury id doesn't exist
                | RECEIPT_NOT_FOUND             | Payment receipt id doesn't exist
                | INSTALLMENT_NOT_FOUND         | Installment id doesn't exist
                | COUNTERPARTY_NOT_FOUND        | Supplier/customer id doesn't exist
                | CONTACT_NOT_FOUND             | Financial contact id doesn't exist
----------------|-------------------------------|---------------------------------------
Argument        | NON_POSITIVE_AMOUNT           | amount <= 0
                | INVALID_AMOUNT                | Non-numeric, or finer than the minor unit
                | EXCHANGE_RATE_REQUIRED        | Foreign currency without a rate
                | INVALID_EXCHANGE_RATE         | Rate <= 0
                | SAME_TREASURY_TRANSFER        | Transfer from == to
                | INVALID_CURRENCY              | Unsupported currency code
                | INVALID_SOURCE                | Reserved source on deposit/withdraw
                | MISSING_FIELD                 | Required name/text left empty
                | DUPLICATE_PARTY_CODE          | Party code already in use
                | WRONG_COUNTERPARTY_ROLE       | Customer operation on a supplier
                | BACKDATED_ENTRY               | Account entry dated before the last one
----------------|-------------------------------|---------------------------------------
State           | RECEIPT_NOT_PENDING           | Installment on PAID/CANCELLED receipt
                | INSTALLMENT_EXCEEDS_REMAINING | Installment amount > remaining
                | RECEIPT_HAS_PAYMENTS          | Cancel with installments present
                | TREASURY_INACTIVE             | Posting to a deactivated treasury
                | INSUFFICIENT_FUNDS            | Overdraft while overdraft disabled
                | TREASURY_HAS_TRANSACTIONS     | Hard delete of a used treasury
                | COUNTERPARTY_INACTIVE         | Posting for a deactivated party
----------------|-------------------------------|---------------------------------------
Concurrency     | CONFLICT_RETRIES_EXHAUSTED    | Retries exhausted under contention
                | OPTIMISTIC_LOCK_CONFLICT      | Version compare-and-swap failed
----------------|-------------------------------|---------------------------------------
Persistence     | PERSISTENCE_ERROR             | Storage failure inside the unit
Immutability    | IMMUTABILITY_VIOLATION        | UPDATE/DELETE of an append-only row
Integrity       | LEDGER_INTEGRITY_VIOLATION    | Replay disagrees with stored balance

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation families (NotFoundError, InvalidArgumentError,
   InvalidStateError) are surfaced to the caller as-is: nothing was written.

2. ConcurrencyConflictError is retried by SettlementService up to the
   configured bound before it reaches the caller.

3. PersistenceError always wraps the underlying SQLAlchemy error
   (``__cause__``); the whole unit has been rolled back.

4. LedgerIntegrityError means a balance no longer matches its log --
   investigate before posting anything else to that treasury.
"""

from datetime import datetime
from decimal import Decimal


class TreasuryKernelError(Exception):
    """
    Base exception for all treasury kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "TREASURY_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(TreasuryKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class TreasuryNotFoundError(NotFoundError):
    """Treasury with given ID was not found."""

    code: str = "TREASURY_NOT_FOUND"

    def __init__(self, treasury_id: str):
        self.treasury_id = treasury_id
        super().__init__(f"Treasury not found: {treasury_id}")


class ReceiptNotFoundError(NotFoundError):
    """Payment receipt with given ID was not found."""

    code: str = "RECEIPT_NOT_FOUND"

    def __init__(self, receipt_id: str):
        self.receipt_id = receipt_id
        super().__init__(f"Payment receipt not found: {receipt_id}")


class InstallmentNotFoundError(NotFoundError):
    """Payment installment with given ID was not found."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_id: str):
        self.installment_id = installment_id
        super().__init__(f"Payment installment not found: {installment_id}")


class CounterpartyNotFoundError(NotFoundError):
    """Supplier or customer with given ID was not found."""

    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        super().__init__(f"Counterparty not found: {counterparty_id}")


class ContactNotFoundError(NotFoundError):
    """Financial contact with given ID was not found."""

    code: str = "CONTACT_NOT_FOUND"

    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Financial contact not found: {contact_id}")


# Argument exceptions


class InvalidArgumentError(TreasuryKernelError):
    """Base exception for caller-supplied values that can never succeed."""

    code: str = "INVALID_ARGUMENT"


class NonPositiveAmountError(InvalidArgumentError):
    """Amount must be strictly positive."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, amount: Decimal, field: str = "amount"):
        self.amount = amount
        self.field = field
        super().__init__(f"{field} must be greater than zero, got {amount}")


class InvalidAmountError(InvalidArgumentError):
    """Amount is not a number, or carries more decimals than its currency allows."""

    code: str = "INVALID_AMOUNT"

    def __init__(
        self,
        amount: object,
        field: str = "amount",
        decimal_places: int | None = None,
    ):
        self.amount = amount
        self.field = field
        self.decimal_places = decimal_places
        if decimal_places is None:
            message = f"{field} must be a Decimal or int, got {type(amount).__name__}"
        else:
            message = f"{field} has more than {decimal_places} decimal places: {amount}"
        super().__init__(message)


class ExchangeRateRequiredError(InvalidArgumentError):
    """A foreign-currency operation was attempted without an exchange rate."""

    code: str = "EXCHANGE_RATE_REQUIRED"

    def __init__(self, currency: str, base_currency: str):
        self.currency = currency
        self.base_currency = base_currency
        super().__init__(
            f"Exchange rate is required to convert {currency} to {base_currency}"
        )


class InvalidExchangeRateError(InvalidArgumentError):
    """Exchange rate is zero, negative, or not a number."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, rate: object):
        self.rate = rate
        super().__init__(f"Exchange rate must be greater than zero, got {rate}")


class SameTreasuryTransferError(InvalidArgumentError):
    """Transfer source and destination are the same treasury."""

    code: str = "SAME_TREASURY_TRANSFER"

    def __init__(self, treasury_id: str):
        self.treasury_id = treasury_id
        super().__init__(
            f"Cannot transfer from treasury {treasury_id} to itself"
        )


class InvalidCurrencyError(InvalidArgumentError):
    """Currency code is not a supported ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency!r}")


class InvalidSourceError(InvalidArgumentError):
    """Transaction source is reserved for another ledger operation."""

    code: str = "INVALID_SOURCE"

    def __init__(self, source: str, operation: str):
        self.source = source
        self.operation = operation
        super().__init__(f"Source {source} cannot be used with {operation}")


class MissingFieldError(InvalidArgumentError):
    """A required text field is empty."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class DuplicatePartyCodeError(InvalidArgumentError):
    """Another supplier or customer already uses this code."""

    code: str = "DUPLICATE_PARTY_CODE"

    def __init__(self, party_code: str):
        self.party_code = party_code
        super().__init__(f"Party code {party_code!r} is already in use")


class CounterpartyRoleError(InvalidArgumentError):
    """Operation needs a customer (or supplier) and got the other role."""

    code: str = "WRONG_COUNTERPARTY_ROLE"

    def __init__(self, counterparty_id: str, expected: str, actual: str):
        self.counterparty_id = counterparty_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Counterparty {counterparty_id} is a {actual}, expected {expected}"
        )


class BackdatedEntryError(InvalidArgumentError):
    """Ledger entry dated before the counterparty's latest entry."""

    code: str = "BACKDATED_ENTRY"

    def __init__(self, transaction_date: datetime, last_transaction_date: datetime):
        self.transaction_date = transaction_date
        self.last_transaction_date = last_transaction_date
        super().__init__(
            f"transaction_date {transaction_date.isoformat()} is earlier than the "
            f"last entry ({last_transaction_date.isoformat()})"
        )


# State exceptions


class InvalidStateError(TreasuryKernelError):
    """Base exception for operations the current record state forbids."""

    code: str = "INVALID_STATE"


class ReceiptNotPendingError(InvalidStateError):
    """Receipt is PAID or CANCELLED and accepts no further settlement."""

    code: str = "RECEIPT_NOT_PENDING"

    def __init__(self, receipt_id: str, status: str):
        self.receipt_id = receipt_id
        self.status = status
        super().__init__(
            f"Payment receipt {receipt_id} is {status}; only PENDING receipts "
            "can be settled or cancelled"
        )


class InstallmentExceedsRemainingError(InvalidStateError):
    """Installment amount is larger than what is still owed."""

    code: str = "INSTALLMENT_EXCEEDS_REMAINING"

    def __init__(self, receipt_id: str, amount: Decimal, remaining: Decimal):
        self.receipt_id = receipt_id
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Installment amount {amount} exceeds remaining balance "
            f"{remaining} on receipt {receipt_id}"
        )


class ReceiptHasPaymentsError(InvalidStateError):
    """Receipt already has installments and cannot be cancelled."""

    code: str = "RECEIPT_HAS_PAYMENTS"

    def __init__(self, receipt_id: str, paid: Decimal):
        self.receipt_id = receipt_id
        self.paid = paid
        super().__init__(
            f"Payment receipt {receipt_id} has {paid} already paid and "
            "cannot be cancelled"
        )


class TreasuryInactiveError(InvalidStateError):
    """Treasury is deactivated and cannot be posted to."""

    code: str = "TREASURY_INACTIVE"

    def __init__(self, treasury_id: str):
        self.treasury_id = treasury_id
        super().__init__(f"Treasury {treasury_id} is inactive")


class InsufficientFundsError(InvalidStateError):
    """Withdrawal would overdraw a treasury while overdraft is disabled."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, treasury_id: str, balance: Decimal, amount: Decimal):
        self.treasury_id = treasury_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Treasury {treasury_id} balance {balance} is insufficient "
            f"for withdrawal of {amount}"
        )


class TreasuryHasTransactionsError(InvalidStateError):
    """Treasury has transactions and can only be deactivated."""

    code: str = "TREASURY_HAS_TRANSACTIONS"

    def __init__(self, treasury_id: str):
        self.treasury_id = treasury_id
        super().__init__(
            f"Treasury {treasury_id} has transactions and cannot be deleted"
        )


class CounterpartyInactiveError(InvalidStateError):
    """Counterparty is deactivated and cannot receive new postings."""

    code: str = "COUNTERPARTY_INACTIVE"

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        super().__init__(f"Counterparty {counterparty_id} is inactive")


# Concurrency exceptions


class ConcurrencyConflictError(TreasuryKernelError):
    """Base exception for lost updates detected under contention."""

    code: str = "CONCURRENCY_CONFLICT"


class OptimisticLockError(ConcurrencyConflictError):
    """Version compare-and-swap on a row failed."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id} "
            f"(expected version {expected_version}): entity was modified "
            "by another transaction"
        )


class ConflictRetriesExhaustedError(ConcurrencyConflictError):
    """Every retry of an atomic unit hit a concurrency conflict."""

    code: str = "CONFLICT_RETRIES_EXHAUSTED"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Operation {operation} failed after {attempts} attempt(s) "
            "due to concurrent modification"
        )


# Persistence exceptions


class PersistenceError(TreasuryKernelError):
    """Storage-layer failure inside an atomic unit; nothing was written."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


# Immutability exceptions


class ImmutabilityViolationError(TreasuryKernelError):
    """
    Attempted to modify or delete an append-only record.

    TreasuryTransaction, PaymentInstallment, AccountLedgerEntry,
    GeneralReceipt and ContactLedgerEntry are immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Integrity exceptions


class LedgerIntegrityError(TreasuryKernelError):
    """A stored balance disagrees with the replay of its log."""

    code: str = "LEDGER_INTEGRITY_VIOLATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected: Decimal,
        actual: Decimal,
        detail: str = "",
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        self.detail = detail
        message = (
            f"{entity_type} {entity_id} balance {actual} does not match "
            f"replayed value {expected}"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
