"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor, row locking and compare-and-swap helpers for every
    write-side service.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services.  The module layer
    (``treasury_modules.settlement.SettlementService``) owns the
    transaction: it commits once per settlement action or rolls the whole
    unit back.

Invariants enforced:
    - Flush-only: a service never commits or rolls back, so a settlement
      action composed of several services is one atomic unit.
    - Lock then compare-and-swap: counters on a locked row are written
      with ``UPDATE ... WHERE version = :seen`` so a writer that did not
      hold the lock cannot silently overwrite another's change.
"""

from abc import ABC
from typing import Any, Generic, TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from treasury_kernel.db.base import Base
from treasury_kernel.domain.clock import Clock, SystemClock
from treasury_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)

DEFAULT_ACTOR = "system"


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a session from the caller and persists through ``flush()``
        within the caller's transaction.

    Non-goals:
        - Does NOT manage the transaction lifecycle.
        - Read-only queries belong in ``treasury_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _lock_row(self, model: type[Base], row_id: Any) -> Any:
        """
        Load ``model`` by id with ``SELECT ... FOR UPDATE``.

        ``populate_existing`` refreshes an instance already in the identity
        map, so the caller always sees the committed state it now holds the
        lock on.  Returns None if the row does not exist.
        """
        return self.session.execute(
            select(model)
            .where(model.id == row_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _compare_and_swap(self, row: Any, values: dict[str, Any], actor: str) -> None:
        """
        Write ``values`` to ``row`` iff its version is still the one loaded.

        Bumps the version.  The in-memory instance is updated as committed
        state, so it carries no pending history afterwards.

        Raises:
            OptimisticLockError: If another transaction changed the row.
        """
        model = type(row)
        seen = row.version
        new_values = dict(values, version=seen + 1, updated_by=actor)
        result = self.session.execute(
            update(model)
            .where(model.id == row.id, model.version == seen)
            .values(**new_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise OptimisticLockError(model.__name__, str(row.id), seen)
        for key, value in new_values.items():
            set_committed_value(row, key, value)
