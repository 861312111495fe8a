"""
conftest.py - Shared pytest fixtures for timelock tests

Provides common fixtures used across unit, functional and conformance tests:
- A funded ledger with a native token and two accounts
- A deployed vault scenario (one year lock, one gwei deposit)
"""

import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from timelock import Ledger, TimeLockedVault

from tests.chain import ONE_YEAR, ONE_GWEI, make_chain


# =============================================================================
# FIXTURES
# =============================================================================

@dataclass
class VaultScenario:
    ledger: Ledger
    vault: TimeLockedVault
    unlock_time: datetime
    locked_amount: Decimal
    owner: str
    other_user: str


@pytest.fixture
def chain():
    """Ledger with two funded accounts: owner and other_user."""
    return make_chain("owner", "other_user")


@pytest.fixture
def vault_scenario(chain):
    """A one-gwei vault deployed by owner, unlocking one year from now."""
    unlock_time = chain.current_time + timedelta(seconds=ONE_YEAR)
    locked_amount = Decimal(ONE_GWEI)
    vault = TimeLockedVault.deploy(chain, "owner", unlock_time, locked_amount)
    return VaultScenario(
        ledger=chain,
        vault=vault,
        unlock_time=unlock_time,
        locked_amount=locked_amount,
        owner="owner",
        other_user="other_user",
    )


@pytest.fixture
def unlocked_scenario(vault_scenario):
    """Same vault with the clock moved exactly to the unlock time."""
    vault_scenario.ledger.advance_time(vault_scenario.unlock_time)
    return vault_scenario
