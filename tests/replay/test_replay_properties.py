"""
Property tests: stored balances always equal a replay of their logs.

Hypothesis drives random sequences of deposits, withdrawals, transfers and
installments through the kernel services.  After every sequence:

- the cached treasury balance equals the replayed log
- sequence numbers are gap-free from 1
- each balance_after is the running total at that point
- paid + remaining == total for every receipt
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from treasury_kernel.domain.enums import TransactionType
from treasury_kernel.exceptions import InstallmentExceedsRemainingError
from treasury_kernel.selectors import TreasurySelector

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("10000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

moves = st.lists(st.tuples(st.booleans(), amounts), min_size=1, max_size=25)

shared_fixture_settings = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


class TestTreasuryReplay:

    @shared_fixture_settings
    @given(opening=amounts, ops=moves)
    def test_balance_matches_log(self, session, ledger, opening, ops):
        treasury = ledger.open_treasury("Replay", opening_balance=opening)
        expected = opening
        for is_deposit, amount in ops:
            if is_deposit:
                ledger.deposit(treasury.id, amount)
                expected += amount
            else:
                ledger.withdraw(treasury.id, amount)
                expected -= amount

        selector = TreasurySelector(session)
        log = list(selector.transactions(treasury.id))

        assert selector.get_treasury(treasury.id).balance == expected
        assert selector.replay_balance(treasury.id) == expected
        assert [t.sequence for t in log] == list(range(1, len(ops) + 2))

        running = Decimal("0")
        for txn in log:
            if txn.transaction_type == TransactionType.DEPOSIT:
                running += txn.amount
            else:
                running -= txn.amount
            assert txn.balance_after == running

    @shared_fixture_settings
    @given(
        transfers_to_run=st.lists(
            st.tuples(st.integers(0, 2), st.integers(0, 2), amounts), max_size=15
        )
    )
    def test_transfers_preserve_total(self, session, ledger, transfers, reconciliation, transfers_to_run):
        pool = [
            ledger.open_treasury(f"Pool {i}", opening_balance=Decimal("500")) for i in range(3)
        ]
        for src, dst, amount in transfers_to_run:
            if src == dst:
                continue
            transfers.transfer(pool[src].id, pool[dst].id, amount)

        selector = TreasurySelector(session)
        total = sum(selector.get_treasury(t.id).balance for t in pool)
        assert total == Decimal("1500")
        for t in pool:
            assert reconciliation.verify_treasury(t.id).is_consistent


class TestReceiptReplay:

    @shared_fixture_settings
    @given(total=amounts, payments=st.lists(amounts, min_size=1, max_size=10))
    def test_paid_plus_remaining_is_total(
        self, receipts, reconciliation, supplier, cash_treasury, clock, total, payments
    ):
        receipt = receipts.create_receipt(supplier.id, total)
        paid = Decimal("0")
        for amount in payments:
            clock.advance(1)
            if paid + amount > total:
                with pytest.raises(InstallmentExceedsRemainingError):
                    receipts.add_installment(receipt.id, amount, cash_treasury.id)
                continue
            receipts.add_installment(receipt.id, amount, cash_treasury.id)
            paid += amount
            if paid == total:
                break

        report = reconciliation.assert_receipt(receipt.id)
        assert report.paid == paid
        assert report.paid + report.remaining == total
        assert report.installment_total == paid
        assert reconciliation.verify_treasury(cash_treasury.id).is_consistent
