"""Engine lifecycle and the session_scope helper."""

from decimal import Decimal

import pytest

from treasury_kernel.db.engine import (
    get_engine,
    get_session,
    get_session_factory,
    is_postgres,
    reset_engine,
    session_scope,
)
from treasury_kernel.selectors import TreasurySelector
from treasury_kernel.services import TreasuryLedger


class TestUninitialized:

    @pytest.mark.parametrize("accessor", [get_engine, get_session, get_session_factory])
    def test_raises_before_init(self, accessor):
        reset_engine()
        with pytest.raises(RuntimeError, match="init_engine_from_url"):
            accessor()

    def test_not_postgres_without_engine(self):
        reset_engine()
        assert not is_postgres()


class TestSessionScope:

    def test_commits_on_success(self, db_engine, clock):
        with session_scope() as session:
            treasury = TreasuryLedger(session, clock).open_treasury(
                "Scoped", opening_balance=Decimal("20")
            )

        check = get_session()
        try:
            assert TreasurySelector(check).get_treasury(treasury.id).balance == Decimal("20")
        finally:
            check.close()

    def test_rolls_back_on_error(self, db_engine, clock, captured_logs):
        with session_scope() as session:
            treasury = TreasuryLedger(session, clock).open_treasury("Scoped")

        with pytest.raises(ValueError):
            with session_scope() as session:
                TreasuryLedger(session, clock).deposit(treasury.id, Decimal("5"))
                raise ValueError("abort")

        check = get_session()
        try:
            assert TreasurySelector(check).get_treasury(treasury.id).balance == Decimal("0")
        finally:
            check.close()
        assert any(r["message"] == "session_scope_rolled_back" for r in captured_logs())

    def test_dialect_detection(self, db_engine):
        assert is_postgres() == (db_engine.dialect.name == "postgresql")
