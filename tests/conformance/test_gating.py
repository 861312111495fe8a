"""
Gating Conformance Tests

INVARIANT: Withdrawal is gated by time first, then by ownership.

    ∀ withdraw(caller) at time T on a vault (owner, unlock_time):
        T < unlock_time                     ⟹ TooEarlyError
        T >= unlock_time ∧ caller ≠ owner   ⟹ UnauthorizedError
        T >= unlock_time ∧ caller = owner   ⟹ full balance released

A rejected withdrawal changes nothing.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from timelock import TimeLockedVault, TooEarlyError, UnauthorizedError

from tests.chain import ONE_YEAR, STARTING_FUNDS, make_chain


callers = st.sampled_from(["owner", "other_user"])


def _deployed(deposit=1_000_000_000):
    ledger = make_chain("owner", "other_user")
    unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
    vault = TimeLockedVault.deploy(ledger, "owner", unlock, deposit)
    return ledger, vault


class TestGatingProperties:

    @given(caller=callers, seconds_before=st.integers(min_value=1, max_value=ONE_YEAR))
    @settings(max_examples=100)
    def test_any_caller_before_unlock_is_too_early(self, caller, seconds_before):
        """
        PROPERTY: Before unlock_time every caller gets TooEarlyError.
        """
        ledger, vault = _deployed()
        ledger.advance_time(vault.unlock_time - timedelta(seconds=seconds_before))
        log_size = len(ledger.transaction_log)

        with pytest.raises(TooEarlyError):
            vault.withdraw(caller)

        assert vault.balance == vault.deposit
        assert len(ledger.transaction_log) == log_size

    @given(
        caller=st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=12),
        seconds_after=st.integers(min_value=0, max_value=10 * ONE_YEAR),
    )
    @settings(max_examples=100)
    def test_non_owner_after_unlock_is_unauthorized(self, caller, seconds_after):
        """
        PROPERTY: At or after unlock_time only the owner may withdraw.
        """
        if caller == "owner":
            caller = "owner_"
        ledger, vault = _deployed()
        ledger.advance_time(vault.unlock_time + timedelta(seconds=seconds_after))

        with pytest.raises(UnauthorizedError):
            vault.withdraw(caller)

        assert vault.balance == vault.deposit
        assert vault.withdrawn is False

    @given(seconds_after=st.integers(min_value=0, max_value=10 * ONE_YEAR))
    @settings(max_examples=100)
    def test_owner_after_unlock_receives_everything(self, seconds_after):
        """
        PROPERTY: At or after unlock_time the owner receives the full balance.
        """
        ledger, vault = _deployed()
        ledger.advance_time(vault.unlock_time + timedelta(seconds=seconds_after))

        vault.withdraw("owner")

        assert vault.balance == Decimal("0")
        assert ledger.get_balance("owner", "ETH") == STARTING_FUNDS
        assert ledger.get_balance("other_user", "ETH") == STARTING_FUNDS


class TestGatingExamples:

    def test_boundary_is_inclusive(self):
        ledger, vault = _deployed()
        ledger.advance_time(vault.unlock_time - timedelta(microseconds=1))
        with pytest.raises(TooEarlyError):
            vault.withdraw("owner")
        ledger.advance_time(vault.unlock_time)
        vault.withdraw("owner")
        assert vault.balance == Decimal("0")
