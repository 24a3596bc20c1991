"""
Pytest fixtures for the treasury kernel test suite.

Provides:
- A fresh database per test: SQLite in memory by default, or PostgreSQL
  when DATABASE_URL points at one (tables truncated after each test)
- Kernel services and the settlement facade bound to one session
- Seeded suppliers, customers and treasuries
- Structured log capture

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL.  Tests marked ``postgres`` are
  skipped unless it is set.
"""

import json
import logging
import os
import threading
from collections.abc import Generator
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from treasury_config import LedgerConfig
from treasury_kernel.db.base import Base
from treasury_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from treasury_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from treasury_kernel.domain.clock import DeterministicClock
from treasury_kernel.domain.enums import PartyType, TreasuryType
from treasury_kernel.domain.events import EventBus
from treasury_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from treasury_kernel.services import (
    AccountLedgerService,
    ContactService,
    CustomerAccountService,
    PartyService,
    ReceiptService,
    ReconciliationService,
    TransferService,
    TreasuryLedger,
)
from treasury_modules.settlement import SettlementService

SQLITE_URL = "sqlite+pysqlite:///:memory:"

TEST_ACTOR = "test-user"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", SQLITE_URL)


def using_postgres() -> bool:
    return get_database_url().startswith("postgresql")


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def pytest_collection_modifyitems(config, items):
    if using_postgres():
        return
    skip = pytest.mark.skip(reason="requires PostgreSQL (set DATABASE_URL)")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture treasury_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.deposit(...)
            assert any(r["message"] == "treasury_transaction_posted"
                       for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("treasury_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


def _truncate_all_tables(engine) -> None:
    names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        conn.execute(text("TRUNCATE " + ", ".join(names) + " CASCADE"))
        conn.commit()


@pytest.fixture
def db_engine():
    """A fresh schema for every test."""
    engine = init_engine_from_url(get_database_url(), pool_size=10, max_overflow=10)
    if using_postgres():
        drop_tables()
    create_tables()
    yield engine
    if using_postgres():
        _truncate_all_tables(engine)
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Factory for one session per thread in concurrency tests."""
    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()

    def _make() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield _make

    for s in created:
        s.close()


# =============================================================================
# Kernel services
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig()


@pytest.fixture
def ledger(session, clock) -> TreasuryLedger:
    return TreasuryLedger(session, clock)


@pytest.fixture
def strict_ledger(session, clock) -> TreasuryLedger:
    """Ledger that rejects overdrafts."""
    return TreasuryLedger(session, clock, allow_overdraft=False)


@pytest.fixture
def transfers(session, ledger, clock) -> TransferService:
    return TransferService(session, ledger, clock)


@pytest.fixture
def account_ledger(session, clock) -> AccountLedgerService:
    return AccountLedgerService(session, clock)


@pytest.fixture
def receipts(session, ledger, account_ledger, clock) -> ReceiptService:
    return ReceiptService(session, ledger, account_ledger, clock)


@pytest.fixture
def parties(session, clock) -> PartyService:
    return PartyService(session, clock)


@pytest.fixture
def contacts(session, ledger, clock) -> ContactService:
    return ContactService(session, ledger, clock)


@pytest.fixture
def customer_accounts(session, ledger, account_ledger, clock) -> CustomerAccountService:
    return CustomerAccountService(session, ledger, account_ledger, clock)


@pytest.fixture
def reconciliation(session) -> ReconciliationService:
    return ReconciliationService(session)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published_events(event_bus) -> list:
    """Every event published on ``event_bus``, in order."""
    seen: list = []
    event_bus.subscribe(EventBus.WILDCARD, seen.append)
    return seen


@pytest.fixture
def settlement(session, config, clock, event_bus) -> SettlementService:
    return SettlementService(session, config=config, clock=clock, event_bus=event_bus)


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
def supplier(parties):
    return parties.create_party("SUP-001", PartyType.SUPPLIER, "Andalus Ceramics")


@pytest.fixture
def customer(parties):
    return parties.create_party("CUS-001", PartyType.CUSTOMER, "Tripoli Tiles Store")


@pytest.fixture
def open_treasury(ledger):
    """Open a treasury with the given opening balance."""

    def _open(
        name: str = "Main cash",
        opening_balance: Decimal = Decimal("0"),
        treasury_type: TreasuryType = TreasuryType.GENERAL,
    ):
        return ledger.open_treasury(name, treasury_type, opening_balance, actor=TEST_ACTOR)

    return _open


@pytest.fixture
def cash_treasury(open_treasury):
    return open_treasury("Main cash", Decimal("1000"))


@pytest.fixture
def bank_treasury(open_treasury):
    return open_treasury("Bank account", Decimal("500"), TreasuryType.BANK)
