"""
Signed-delta rules shared by the posting services and reconciliation.

Pure functions; no database.
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from treasury_kernel.domain.enums import (
    EntryDirection,
    GeneralReceiptType,
    PartyType,
    TransactionSource,
    TransactionType,
)
from treasury_kernel.domain.ledger_math import (
    account_delta,
    contact_delta,
    running_balances,
    treasury_delta,
)

AMOUNT = Decimal("125.500")

amounts = st.decimals(min_value=Decimal("0.001"), max_value=Decimal("1000000"), places=3)


class TestTreasuryDelta:

    @pytest.mark.parametrize(
        "ttype, source, expected",
        [
            (TransactionType.DEPOSIT, TransactionSource.MANUAL, AMOUNT),
            (TransactionType.DEPOSIT, TransactionSource.OPENING_BALANCE, AMOUNT),
            (TransactionType.WITHDRAWAL, TransactionSource.PAYMENT, -AMOUNT),
            (TransactionType.TRANSFER, TransactionSource.TRANSFER_IN, AMOUNT),
            (TransactionType.TRANSFER, TransactionSource.TRANSFER_OUT, -AMOUNT),
        ],
    )
    def test_sign(self, ttype, source, expected):
        assert treasury_delta(ttype, source, AMOUNT) == expected

    def test_accepts_raw_strings(self):
        assert treasury_delta("WITHDRAWAL", "MANUAL", AMOUNT) == -AMOUNT

    def test_transfer_with_non_transfer_source(self):
        with pytest.raises(ValueError, match="non-transfer source"):
            treasury_delta(TransactionType.TRANSFER, TransactionSource.MANUAL, AMOUNT)


class TestAccountDelta:

    @pytest.mark.parametrize(
        "role, direction, expected",
        [
            (PartyType.SUPPLIER, EntryDirection.CREDIT, AMOUNT),
            (PartyType.SUPPLIER, EntryDirection.DEBIT, -AMOUNT),
            (PartyType.CUSTOMER, EntryDirection.DEBIT, AMOUNT),
            (PartyType.CUSTOMER, EntryDirection.CREDIT, -AMOUNT),
        ],
    )
    def test_sign(self, role, direction, expected):
        assert account_delta(role, direction, AMOUNT) == expected

    @given(amount=amounts)
    def test_roles_mirror_each_other(self, amount):
        for direction in EntryDirection:
            assert account_delta(PartyType.SUPPLIER, direction, amount) == -account_delta(
                PartyType.CUSTOMER, direction, amount
            )


class TestContactDelta:

    def test_deposit_raises(self):
        assert contact_delta(GeneralReceiptType.DEPOSIT, AMOUNT) == AMOUNT

    def test_withdrawal_lowers(self):
        assert contact_delta("WITHDRAWAL", AMOUNT) == -AMOUNT


class TestRunningBalances:

    def test_running(self):
        deltas = [Decimal("10"), Decimal("-3"), Decimal("5.5")]
        assert list(running_balances(deltas)) == [Decimal("10"), Decimal("7"), Decimal("12.5")]

    def test_start(self):
        assert list(running_balances([Decimal("1")], start=Decimal("100"))) == [Decimal("101")]

    def test_empty(self):
        assert list(running_balances([])) == []

    @given(deltas=st.lists(amounts, max_size=30))
    def test_last_equals_sum(self, deltas):
        balances = list(running_balances(deltas))
        if deltas:
            assert balances[-1] == sum(deltas, Decimal("0"))
