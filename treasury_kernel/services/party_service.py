"""
PartyService -- manages suppliers and customers.

Receipts and account-ledger entries only reference a party; this service
creates and maintains the party rows they point at.
"""

from uuid import UUID

from sqlalchemy import select

from treasury_kernel.domain.dtos import PartyInfo
from treasury_kernel.domain.enums import PartyType
from treasury_kernel.exceptions import (
    CounterpartyNotFoundError,
    DuplicatePartyCodeError,
    MissingFieldError,
)
from treasury_kernel.logging_config import get_logger
from treasury_kernel.models.party import Party
from treasury_kernel.services.base import DEFAULT_ACTOR, BaseService

logger = get_logger("services.party")


class PartyService(BaseService[Party]):

    def _get_by_id(self, party_id: UUID) -> Party:
        party = self.session.get(Party, party_id)
        if party is None:
            raise CounterpartyNotFoundError(str(party_id))
        return party

    def get_by_id(self, party_id: UUID) -> PartyInfo:
        """
        Get party by ID.

        Raises:
            CounterpartyNotFoundError: If the party doesn't exist.
        """
        return self._get_by_id(party_id).to_dto()

    def find_by_code(self, party_code: str) -> PartyInfo | None:
        stmt = select(Party).where(Party.party_code == party_code)
        party = self.session.execute(stmt).scalar_one_or_none()
        return party.to_dto() if party else None

    def list_by_type(
        self,
        party_type: PartyType,
        active_only: bool = True,
    ) -> list[PartyInfo]:
        stmt = select(Party).where(Party.party_type == PartyType(party_type).value)
        if active_only:
            stmt = stmt.where(Party.is_active.is_(True))
        stmt = stmt.order_by(Party.party_code)
        return [p.to_dto() for p in self.session.execute(stmt).scalars()]

    def create_party(
        self,
        party_code: str,
        party_type: PartyType,
        name: str,
        *,
        phone: str | None = None,
        company_id: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PartyInfo:
        """
        Create a supplier or customer.

        Raises:
            MissingFieldError: Empty code or name.
            DuplicatePartyCodeError: Code already used.
        """
        if not party_code or not party_code.strip():
            raise MissingFieldError("party_code")
        if not name or not name.strip():
            raise MissingFieldError("name")
        party_code = party_code.strip()
        if self.find_by_code(party_code) is not None:
            raise DuplicatePartyCodeError(party_code)

        party = Party(
            party_code=party_code,
            party_type=PartyType(party_type).value,
            name=name.strip(),
            phone=phone,
            company_id=company_id,
            is_active=True,
            created_by=actor,
        )
        self.session.add(party)
        self.session.flush()

        logger.info(
            "party_created",
            extra={
                "party_id": str(party.id),
                "party_code": party_code,
                "party_type": party.party_type,
            },
        )
        return party.to_dto()

    def update_party(
        self,
        party_id: UUID,
        *,
        name: str | None = None,
        phone: str | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> PartyInfo:
        """Note: party_code and party_type cannot be changed."""
        party = self._get_by_id(party_id)
        if name is not None:
            if not name.strip():
                raise MissingFieldError("name")
            party.name = name.strip()
        if phone is not None:
            party.phone = phone
        party.updated_by = actor
        self.session.flush()
        return party.to_dto()

    def deactivate_party(self, party_id: UUID, actor: str = DEFAULT_ACTOR) -> PartyInfo:
        """
        Deactivate a party.

        Deactivated parties accept no new receipts or ledger postings other
        than adjustments, but their history stays readable.
        """
        party = self._get_by_id(party_id)
        party.is_active = False
        party.updated_by = actor
        self.session.flush()
        return party.to_dto()

    def reactivate_party(self, party_id: UUID, actor: str = DEFAULT_ACTOR) -> PartyInfo:
        party = self._get_by_id(party_id)
        party.is_active = True
        party.updated_by = actor
        self.session.flush()
        return party.to_dto()
