"""
TransferService -- atomic movement of funds between two treasuries.

A transfer is a TRANSFER_OUT leg on the source and a TRANSFER_IN leg on the
destination, posted in the caller's transaction.  Both rows carry the
other treasury's id and a shared ``transfer_id`` so the pair can be shown
or reversed as one event.  If the second leg fails, the caller's rollback
discards the first.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from treasury_kernel.domain.clock import Clock
from treasury_kernel.domain.currency import require_positive
from treasury_kernel.domain.dtos import TransferResult
from treasury_kernel.domain.enums import (
    TransactionReferenceKind,
    TransactionSource,
    TransactionType,
)
from treasury_kernel.exceptions import SameTreasuryTransferError
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.treasury import Treasury
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService
from treasury_kernel.services.treasury_ledger import TreasuryLedger

logger = get_logger("services.transfer")


class TransferService(BaseService[Treasury]):

    def __init__(
        self,
        session: Session,
        ledger: TreasuryLedger,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock or ledger.clock)
        self.ledger = ledger

    def transfer(
        self,
        from_treasury_id: UUID,
        to_treasury_id: UUID,
        amount: Decimal,
        description: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> TransferResult:
        """
        Move ``amount`` from one treasury to another.

        Raises:
            SameTreasuryTransferError: from == to.
            NonPositiveAmountError: amount <= 0.
            InvalidAmountError: amount finer than the base currency's minor unit.
            TreasuryNotFoundError / TreasuryInactiveError: either side.
            InsufficientFundsError: source would overdraw while overdraft
                is disabled.
        """
        if from_treasury_id == to_treasury_id:
            raise SameTreasuryTransferError(str(from_treasury_id))
        amount = require_positive(amount, decimal_places=self.ledger.money_decimal_places)

        locked = self.ledger.lock_treasuries([from_treasury_id, to_treasury_id])
        source = locked[from_treasury_id]
        destination = locked[to_treasury_id]

        transfer_id = uuid4()
        outgoing = self.ledger.apply_locked(
            source,
            TransactionType.TRANSFER,
            TransactionSource.TRANSFER_OUT,
            amount,
            description or f"Transfer to {destination.name}",
            reference_kind=TransactionReferenceKind.TRANSFER,
            reference_id=transfer_id,
            counterpart_treasury_id=destination.id,
            transfer_id=transfer_id,
            actor=actor,
        )
        incoming = self.ledger.apply_locked(
            destination,
            TransactionType.TRANSFER,
            TransactionSource.TRANSFER_IN,
            amount,
            description or f"Transfer from {source.name}",
            reference_kind=TransactionReferenceKind.TRANSFER,
            reference_id=transfer_id,
            counterpart_treasury_id=source.id,
            transfer_id=transfer_id,
            actor=actor,
        )

        logger.info(
            "treasury_transfer_completed",
            extra={
                "transfer_id": str(transfer_id),
                "from_treasury_id": str(source.id),
                "to_treasury_id": str(destination.id),
                "amount": str(amount),
            },
        )
        return TransferResult(
            transfer_id=transfer_id,
            outgoing=outgoing.to_dto(),
            incoming=incoming.to_dto(),
            amount=amount,
        )
