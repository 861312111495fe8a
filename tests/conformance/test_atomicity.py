"""
Atomicity Conformance Tests

INVARIANT: Vault operations are all-or-nothing.

    ∀ operation O (deploy, withdraw):
        O rejected or reverted ⟹ balances, unit state, transaction log
                                  and event log are exactly as before O

Partial application is impossible by construction.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from timelock import TimeLockedVault, LedgerError, vault_address

from tests.chain import ONE_YEAR, make_chain


def _fingerprint(ledger):
    return (
        {w: ledger.get_wallet_balances(w) for w in sorted(ledger.list_wallets())},
        {u: ledger.get_unit_state(u) for u in ledger.list_units()},
        list(ledger.transaction_log),
        list(ledger.event_log),
    )


class TestAtomicityProperties:

    @given(
        funds=st.integers(min_value=0, max_value=10**6),
        shortfall=st.integers(min_value=1, max_value=10**6),
    )
    @settings(max_examples=100)
    def test_underfunded_deploy_leaves_no_trace(self, funds, shortfall):
        """
        PROPERTY: A deployment the deployer cannot pay for creates nothing.
        """
        ledger = make_chain("deployer")
        ledger.set_balance("deployer", "ETH", Decimal(funds))
        before = _fingerprint(ledger)

        with pytest.raises(LedgerError):
            TimeLockedVault.deploy(
                ledger, "deployer",
                ledger.current_time + timedelta(seconds=ONE_YEAR),
                funds + shortfall,
            )

        assert _fingerprint(ledger) == before
        assert not ledger.is_registered(vault_address("deployer", 0))

    @given(deposit=st.integers(min_value=1, max_value=10**15))
    @settings(max_examples=50)
    def test_reverted_withdrawal_leaves_no_trace(self, deposit):
        """
        PROPERTY: If the owner's receive hook fails, the withdrawal never happened.
        """
        ledger = make_chain()

        def refuse(view, move):
            raise RuntimeError("refused")

        ledger.register_wallet("owner", on_receive=refuse)
        ledger.set_balance("owner", "ETH", Decimal(10**16))
        unlock = ledger.current_time + timedelta(seconds=ONE_YEAR)
        vault = TimeLockedVault.deploy(ledger, "owner", unlock, deposit)
        ledger.advance_time(unlock)
        before = _fingerprint(ledger)

        with pytest.raises(RuntimeError):
            vault.withdraw("owner")

        assert _fingerprint(ledger) == before
        assert vault.withdrawn is False
