"""
Construction Conformance Tests

INVARIANT: A vault exists only if its unlock time was in the future at
deployment, and it then holds exactly its deposit for its deployer.

    ∀ deploy(unlock_time, deposit) at time T:
        unlock_time <= T ⟹ InvalidScheduleError, no vault
        unlock_time > T  ⟹ balance = deposit, owner = deployer
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from timelock import TimeLockedVault, InvalidScheduleError, STATUS_LOCKED

from tests.chain import STARTING_FUNDS, make_chain


deposits = st.integers(min_value=1, max_value=10**15)
lock_seconds = st.integers(min_value=1, max_value=10 * 365 * 24 * 60 * 60)


class TestConstructionProperties:

    @given(deposit=deposits, seconds=lock_seconds)
    @settings(max_examples=100)
    def test_future_unlock_creates_funded_vault(self, deposit, seconds):
        """
        PROPERTY: A future unlock time yields a locked vault holding the deposit.
        """
        ledger = make_chain("deployer")
        unlock = ledger.current_time + timedelta(seconds=seconds)

        vault = TimeLockedVault.deploy(ledger, "deployer", unlock, deposit)

        assert vault.owner == "deployer"
        assert vault.unlock_time == unlock
        assert vault.balance == Decimal(deposit)
        assert vault.deposit == Decimal(deposit)
        assert vault.status == STATUS_LOCKED
        assert ledger.get_balance("deployer", "ETH") == STARTING_FUNDS - deposit

    @given(deposit=deposits, seconds=st.integers(min_value=0, max_value=10**8))
    @settings(max_examples=100)
    def test_past_or_present_unlock_rejected(self, deposit, seconds):
        """
        PROPERTY: unlock_time <= now never creates a vault.
        """
        ledger = make_chain("deployer")
        unlock = ledger.current_time - timedelta(seconds=seconds)

        with pytest.raises(InvalidScheduleError):
            TimeLockedVault.deploy(ledger, "deployer", unlock, deposit)

        assert ledger.list_units() == ["ETH"]
        assert ledger.transaction_log == []
        assert ledger.get_balance("deployer", "ETH") == STARTING_FUNDS


class TestConstructionExamples:

    def test_one_microsecond_ahead_is_future(self):
        ledger = make_chain("deployer")
        unlock = ledger.current_time + timedelta(microseconds=1)
        vault = TimeLockedVault.deploy(ledger, "deployer", unlock, 1)
        assert vault.balance == Decimal("1")
