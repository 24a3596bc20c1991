"""
Module: treasury_kernel.selectors.base
Responsibility: Base class for read-only queries, plus the keyset-paged
    iterable used for statements and transaction histories.
Architecture position: Kernel > Selectors.  May import from db/, domain/
    and models/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, never ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import InstrumentedAttribute, Session

from treasury_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)
DTOType = TypeVar("DTOType")

DEFAULT_PAGE_SIZE = 500


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Non-goals:
        - Does NOT define query methods; subclasses do.
    """

    def __init__(self, session: Session):
        self.session = session


class KeysetPages(Generic[DTOType]):
    """
    Finite, restartable, lazy iteration over an ordered query.

    Each ``iter()`` starts again from the first row and fetches
    ``page_size`` rows at a time with ``WHERE key > :last``, so no page
    is skipped or repeated while rows are appended concurrently.
    The query must select one ORM entity whose ``key`` column is unique
    within the filtered rows.
    """

    def __init__(
        self,
        session: Session,
        stmt: Select,
        key: InstrumentedAttribute,
        to_dto: Callable[[Any], DTOType],
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self._session = session
        self._stmt = stmt
        self._key = key
        self._to_dto = to_dto
        self.page_size = page_size

    def __iter__(self) -> Iterator[DTOType]:
        last = None
        while True:
            stmt = self._stmt
            if last is not None:
                stmt = stmt.where(self._key > last)
            rows = (
                self._session.execute(stmt.order_by(self._key).limit(self.page_size))
                .scalars()
                .all()
            )
            for row in rows:
                yield self._to_dto(row)
            if len(rows) < self.page_size:
                return
            last = getattr(rows[-1], self._key.key)

    def pages(self) -> Iterator[list[DTOType]]:
        """Same rows as ``iter()``, grouped into lists of ``page_size``."""
        page: list[DTOType] = []
        for item in self:
            page.append(item)
            if len(page) == self.page_size:
                yield page
                page = []
        if page:
            yield page
