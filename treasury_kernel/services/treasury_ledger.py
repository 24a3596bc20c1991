"""
TreasuryLedger -- the only legal way to change a treasury balance.

Responsibility:
    Owns treasury accounts and their append-only transaction log.
    ``deposit`` and ``withdraw`` read the balance under a row lock, compute
    the new balance, write it with a version compare-and-swap and insert
    one TreasuryTransaction carrying the before/after snapshot.  All of it
    happens inside the caller's transaction.

Architecture position:
    Kernel > Services.  Used directly by TransferService, ReceiptService
    and ContactService; never commits.

Invariants enforced:
    - balance == replay of the log.  Before every write the cached balance
      is checked against the last transaction's ``balance_after``; a
      mismatch aborts the unit with LedgerIntegrityError.
    - One sequence number per transaction, gap-free per treasury.
    - Amounts are strictly positive Decimals, except the synthetic
      OPENING_BALANCE row of a treasury opened at zero.

Failure modes:
    - TreasuryNotFoundError, TreasuryInactiveError.
    - NonPositiveAmountError, InvalidSourceError.
    - InsufficientFundsError when overdraft is disabled.
    - OptimisticLockError when the version compare-and-swap loses.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury_kernel.db.types import ZERO
from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import (
    CurrencyRegistry,
    require_positive,
    to_money,
    validate_currency,
)
from treasury_kernel.domain.dtos import TreasuryInfo, TreasuryTransactionInfo
from treasury_kernel.domain.enums import (
    TransactionReferenceKind,
    TransactionSource,
    TransactionType,
    TreasuryType,
)
from treasury_kernel.domain.ledger_math import treasury_delta
from treasury_kernel.exceptions import (
    InsufficientFundsError,
    InvalidSourceError,
    LedgerIntegrityError,
    MissingFieldError,
    TreasuryInactiveError,
    TreasuryNotFoundError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.treasury import Treasury, TreasuryTransaction
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService

logger = get_logger("services.treasury_ledger")

# Sources that deposit()/withdraw() refuse; they belong to other operations
_RESERVED_SOURCES = frozenset(
    {
        TransactionSource.TRANSFER_IN,
        TransactionSource.TRANSFER_OUT,
        TransactionSource.OPENING_BALANCE,
    }
)

_DECREASING = frozenset({TransactionType.WITHDRAWAL})


class TreasuryLedger(BaseService[Treasury]):
    """
    Treasury accounts and the deposit/withdraw primitive.

    Args:
        session: Caller-owned session.
        clock: Time source for transaction timestamps.
        allow_overdraft: When False, a withdrawal that would take the
            balance below zero raises InsufficientFundsError.
        base_currency: Currency every treasury balance is held in.
        money_decimal_places: Decimals a posted amount may carry. Defaults
            to the base currency's minor unit; finer amounts are refused.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        allow_overdraft: bool = True,
        base_currency: str = "LYD",
        money_decimal_places: int | None = None,
    ):
        super().__init__(session, clock)
        self.allow_overdraft = allow_overdraft
        self.base_currency = validate_currency(base_currency)
        if money_decimal_places is None:
            money_decimal_places = CurrencyRegistry.get_info(self.base_currency).decimal_places
        self.money_decimal_places = money_decimal_places

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

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
        """
        Create a treasury and record its opening balance as the first
        transaction (source OPENING_BALANCE), even when it is zero.
        """
        if not name or not name.strip():
            raise MissingFieldError("name")
        treasury_type = TreasuryType(treasury_type)
        opening = to_money(opening_balance, "opening_balance", self.money_decimal_places)

        treasury = Treasury(
            name=name.strip(),
            treasury_type=treasury_type.value,
            company_id=company_id,
            bank_name=bank_name,
            account_number=account_number,
            currency=self.base_currency,
            opening_balance=opening,
            balance=ZERO,
            is_active=True,
            version=1,
            last_sequence=0,
            created_by=actor,
        )
        self.session.add(treasury)
        self.session.flush()

        self._append(
            treasury,
            TransactionType.WITHDRAWAL if opening < ZERO else TransactionType.DEPOSIT,
            TransactionSource.OPENING_BALANCE,
            abs(opening),
            description="Opening balance",
            actor=actor,
        )

        logger.info(
            "treasury_opened",
            extra={
                "treasury_id": str(treasury.id),
                "treasury_type": treasury_type.value,
                "opening_balance": str(opening),
            },
        )
        return treasury.to_dto()

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
        """Edit descriptive fields.  Balance fields are not editable."""
        treasury = self._get(treasury_id)
        if name is not None:
            if not name.strip():
                raise MissingFieldError("name")
            treasury.name = name.strip()
        if company_id is not None:
            treasury.company_id = company_id
        if bank_name is not None:
            treasury.bank_name = bank_name
        if account_number is not None:
            treasury.account_number = account_number
        treasury.updated_by = actor
        self.session.flush()
        return treasury.to_dto()

    def deactivate_treasury(
        self, treasury_id: UUID, actor: str = DEFAULT_ACTOR
    ) -> TreasuryInfo:
        return self._set_active(treasury_id, False, actor)

    def reactivate_treasury(
        self, treasury_id: UUID, actor: str = DEFAULT_ACTOR
    ) -> TreasuryInfo:
        return self._set_active(treasury_id, True, actor)

    def _set_active(self, treasury_id: UUID, active: bool, actor: str) -> TreasuryInfo:
        treasury = self._get(treasury_id)
        if treasury.is_active != active:
            treasury.is_active = active
            treasury.updated_by = actor
            self.session.flush()
            logger.info(
                "treasury_activated" if active else "treasury_deactivated",
                extra={"treasury_id": str(treasury.id)},
            )
        return treasury.to_dto()

    def _get(self, treasury_id: UUID) -> Treasury:
        treasury = self.session.get(Treasury, treasury_id)
        if treasury is None:
            raise TreasuryNotFoundError(str(treasury_id))
        return treasury

    # ------------------------------------------------------------------
    # Posting primitive
    # ------------------------------------------------------------------

    def deposit(
        self,
        treasury_id: UUID,
        amount: Decimal,
        source: TransactionSource = TransactionSource.MANUAL,
        description: str | None = None,
        *,
        reference_kind: TransactionReferenceKind | None = None,
        reference_id: UUID | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransactionInfo:
        """Add ``amount`` to the treasury balance and log it."""
        return self._post(
            treasury_id,
            TransactionType.DEPOSIT,
            source,
            amount,
            description,
            reference_kind=reference_kind,
            reference_id=reference_id,
            actor=actor,
        )

    def withdraw(
        self,
        treasury_id: UUID,
        amount: Decimal,
        source: TransactionSource = TransactionSource.MANUAL,
        description: str | None = None,
        *,
        reference_kind: TransactionReferenceKind | None = None,
        reference_id: UUID | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransactionInfo:
        """Subtract ``amount`` from the treasury balance and log it."""
        return self._post(
            treasury_id,
            TransactionType.WITHDRAWAL,
            source,
            amount,
            description,
            reference_kind=reference_kind,
            reference_id=reference_id,
            actor=actor,
        )

    def _post(
        self,
        treasury_id: UUID,
        transaction_type: TransactionType,
        source: TransactionSource,
        amount: Decimal,
        description: str | None,
        *,
        reference_kind: TransactionReferenceKind | None,
        reference_id: UUID | None,
        actor: str,
    ) -> TreasuryTransactionInfo:
        source = TransactionSource(source)
        if source in _RESERVED_SOURCES:
            raise InvalidSourceError(source.value, transaction_type.value.lower())
        amount = require_positive(amount, decimal_places=self.money_decimal_places)

        treasury = self.lock_treasury(treasury_id)
        txn = self.apply_locked(
            treasury,
            transaction_type,
            source,
            amount,
            description,
            reference_kind=reference_kind,
            reference_id=reference_id,
            actor=actor,
        )
        return txn.to_dto()

    def lock_treasury(self, treasury_id: UUID) -> Treasury:
        """
        Lock one treasury row for the rest of the transaction.

        Raises:
            TreasuryNotFoundError: Unknown id.
        """
        treasury = self._lock_row(Treasury, treasury_id)
        if treasury is None:
            raise TreasuryNotFoundError(str(treasury_id))
        return treasury

    def lock_treasuries(self, treasury_ids: Iterable[UUID]) -> dict[UUID, Treasury]:
        """
        Lock several treasuries in ascending id order.

        A fixed order means two transfers A->B and B->A wait on each other
        instead of deadlocking.
        """
        locked: dict[UUID, Treasury] = {}
        for treasury_id in sorted(set(treasury_ids), key=str):
            locked[treasury_id] = self.lock_treasury(treasury_id)
        return locked

    def apply_locked(
        self,
        treasury: Treasury,
        transaction_type: TransactionType,
        source: TransactionSource,
        amount: Decimal,
        description: str | None = None,
        *,
        reference_kind: TransactionReferenceKind | None = None,
        reference_id: UUID | None = None,
        counterpart_treasury_id: UUID | None = None,
        transfer_id: UUID | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransaction:
        """
        Post one movement to a treasury the caller has already locked.

        Returns the flushed TreasuryTransaction row.
        """
        if not treasury.is_active:
            raise TreasuryInactiveError(str(treasury.id))
        return self._append(
            treasury,
            TransactionType(transaction_type),
            TransactionSource(source),
            require_positive(amount, decimal_places=self.money_decimal_places),
            description=description,
            reference_kind=reference_kind,
            reference_id=reference_id,
            counterpart_treasury_id=counterpart_treasury_id,
            transfer_id=transfer_id,
            actor=actor,
        )

    def _append(
        self,
        treasury: Treasury,
        transaction_type: TransactionType,
        source: TransactionSource,
        amount: Decimal,
        *,
        description: str | None = None,
        reference_kind: TransactionReferenceKind | None = None,
        reference_id: UUID | None = None,
        counterpart_treasury_id: UUID | None = None,
        transfer_id: UUID | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> TreasuryTransaction:
        self._assert_cache_matches_log(treasury)

        balance_before = treasury.balance
        delta = treasury_delta(transaction_type, source, amount)
        balance_after = balance_before + delta

        if delta < ZERO and balance_after < ZERO and source != TransactionSource.OPENING_BALANCE:
            if not self.allow_overdraft:
                raise InsufficientFundsError(str(treasury.id), balance_before, amount)
            logger.warning(
                "treasury_overdrawn",
                extra={
                    "treasury_id": str(treasury.id),
                    "balance_before": str(balance_before),
                    "amount": str(amount),
                    "balance_after": str(balance_after),
                },
            )

        sequence = treasury.last_sequence + 1
        self._compare_and_swap(
            treasury,
            {"balance": balance_after, "last_sequence": sequence},
            actor,
        )

        txn = TreasuryTransaction(
            treasury_id=treasury.id,
            sequence=sequence,
            transaction_type=transaction_type.value,
            source=source.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=description,
            reference_kind=(
                TransactionReferenceKind(reference_kind).value if reference_kind else None
            ),
            reference_id=reference_id,
            counterpart_treasury_id=counterpart_treasury_id,
            transfer_id=transfer_id,
            created_by=actor,
            created_at=self.clock.now(),
        )
        self.session.add(txn)
        self.session.flush()

        logger.info(
            "treasury_transaction_posted",
            extra={
                "treasury_id": str(treasury.id),
                "transaction_id": str(txn.id),
                "sequence": sequence,
                "transaction_type": transaction_type.value,
                "source": source.value,
                "amount": str(amount),
                "balance_after": str(balance_after),
            },
        )
        return txn

    def _assert_cache_matches_log(self, treasury: Treasury) -> None:
        """The cached balance must equal the last logged balance_after."""
        if treasury.last_sequence == 0:
            expected = ZERO
        else:
            expected = self.session.execute(
                select(TreasuryTransaction.balance_after).where(
                    TreasuryTransaction.treasury_id == treasury.id,
                    TreasuryTransaction.sequence == treasury.last_sequence,
                )
            ).scalar_one_or_none()
        if expected is None or expected != treasury.balance:
            logger.critical(
                "treasury_balance_drift",
                extra={
                    "treasury_id": str(treasury.id),
                    "cached_balance": str(treasury.balance),
                    "logged_balance": str(expected),
                },
            )
            raise LedgerIntegrityError(
                "Treasury",
                str(treasury.id),
                expected=expected if expected is not None else ZERO,
                actual=treasury.balance,
                detail=f"last transaction sequence {treasury.last_sequence}",
            )
