"""
Module: treasury_kernel.models.party
Responsibility: Suppliers and customers -- the counterparties referenced by
    payment receipts and account-ledger entries.
Architecture position: Kernel > Models.  Imports db/ and domain/ only.

The party row doubles as the serialization point for its account ledger:
appending an entry locks the party row first, so two concurrent postings
for one counterparty cannot compute their running balance from the same
predecessor.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from treasury_kernel.db.base import TrackedBase
from treasury_kernel.domain.dtos import PartyInfo
from treasury_kernel.domain.enums import PartyType


class Party(TrackedBase):
    """A supplier or customer."""

    __tablename__ = "parties"

    __table_args__ = (
        UniqueConstraint("party_code", name="uq_party_code"),
        Index("idx_party_type", "party_type"),
        Index("idx_party_active", "is_active"),
    )

    party_code: Mapped[str] = mapped_column(String(50), nullable=False)

    party_type: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> PartyInfo:
        return PartyInfo(
            id=self.id,
            party_code=self.party_code,
            party_type=PartyType(self.party_type),
            name=self.name,
            phone=self.phone,
            company_id=self.company_id,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return (
            f"<Party(id={self.id!r}, code={self.party_code!r}, "
            f"type={self.party_type!r})>"
        )
