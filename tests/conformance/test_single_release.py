"""
Single Release Conformance Tests

INVARIANT: A vault releases its full balance exactly once, and value is
conserved across its whole life.

    ∀ vault V with deposit D:
        Σ balances(ETH) is constant
        after the first successful withdraw: balance(V) = 0, one Withdrawal(D)
        every later withdraw ⟹ AlreadyWithdrawnError, nothing changes
        balance(V) never increases after deployment
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from timelock import (
    TimeLockedVault, ExecuteResult, AlreadyWithdrawnError,
    Move, build_transaction, compute_withdrawal, WITHDRAWAL_EVENT,
)

from tests.chain import ONE_YEAR, make_chain


deposits = st.integers(min_value=1, max_value=10**15)


class TestSingleReleaseProperties:

    @given(deposit=deposits, retries=st.integers(min_value=1, max_value=5))
    @settings(max_examples=50)
    def test_withdraw_is_terminal(self, deposit, retries):
        """
        PROPERTY: After one withdrawal, every further attempt fails and changes nothing.
        """
        ledger = make_chain("owner")
        supply = ledger.total_supply("ETH")
        unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
        vault = TimeLockedVault.deploy(ledger, "owner", unlock, deposit)
        ledger.advance_time(unlock)

        vault.withdraw("owner")
        owner_balance = ledger.get_balance("owner", "ETH")

        for _ in range(retries):
            ledger.increase_time(timedelta(days=1))
            with pytest.raises(AlreadyWithdrawnError):
                vault.withdraw("owner")

        assert ledger.get_balance("owner", "ETH") == owner_balance
        assert vault.balance == Decimal("0")
        events = vault.events(WITHDRAWAL_EVENT)
        assert [ev.arg('amount') for ev in events] == [Decimal(deposit)]
        assert ledger.total_supply("ETH") == supply

    @given(deposit=deposits, top_up=st.integers(min_value=1, max_value=10**9))
    @settings(max_examples=50)
    def test_balance_never_increases(self, deposit, top_up):
        """
        PROPERTY: No transfer can add value to a vault after deployment.
        """
        ledger = make_chain("owner", "other_user")
        unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
        vault = TimeLockedVault.deploy(ledger, "owner", unlock, deposit)

        for sender in ("owner", "other_user"):
            pending = build_transaction(
                ledger, [Move(Decimal(top_up), "ETH", sender, vault.address, f"top_up_{sender}")]
            )
            assert ledger.execute(pending) == ExecuteResult.REJECTED

        assert vault.balance == Decimal(deposit)


class TestSingleReleaseExamples:

    def test_replay_of_applied_withdrawal_is_idempotent(self):
        ledger = make_chain("owner")
        unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
        vault = TimeLockedVault.deploy(ledger, "owner", unlock, 500)
        ledger.advance_time(unlock)

        pending = compute_withdrawal(ledger, vault.address, "owner")
        results = [ledger.execute(pending) for _ in range(3)]

        assert results == [
            ExecuteResult.APPLIED, ExecuteResult.ALREADY_APPLIED, ExecuteResult.ALREADY_APPLIED,
        ]
        assert len(vault.events(WITHDRAWAL_EVENT)) == 1

    def test_partial_release_rejected(self):
        ledger = make_chain("owner")
        unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
        vault = TimeLockedVault.deploy(ledger, "owner", unlock, 500)
        ledger.advance_time(unlock)

        pending = build_transaction(
            ledger, [Move(Decimal("1"), "ETH", vault.address, "owner", "skim")]
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert vault.balance == Decimal("500")
