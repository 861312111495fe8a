"""
chain.py - Test helpers for vault scenarios

Constants and helpers shared by conftest fixtures and test modules:
- make_chain(): a test-mode Ledger with ETH and funded accounts
- balance_changes(): balance deltas caused by an action
- event_args(): event payloads as plain dicts
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List

from timelock import Ledger, ContractEvent, native_token


ONE_YEAR = 365 * 24 * 60 * 60
ONE_GWEI = 1_000_000_000

START_TIME = datetime(2025, 1, 1)
STARTING_FUNDS = Decimal("1000000000000000")


def make_chain(*accounts: str, start: datetime = START_TIME) -> Ledger:
    """Ledger with ETH registered and every account funded."""
    ledger = Ledger("chain", start, verbose=False, test_mode=True)
    ledger.register_unit(native_token("ETH", "Ether"))
    for account in accounts:
        ledger.register_wallet(account)
        ledger.set_balance(account, "ETH", STARTING_FUNDS)
    return ledger


def balance_changes(
    ledger: Ledger,
    wallets: Iterable[str],
    unit: str,
    action: Callable[[], object],
) -> List[Decimal]:
    """Run action and return each wallet's balance delta, in order."""
    wallets = list(wallets)
    before = [ledger.get_balance(w, unit) for w in wallets]
    action()
    return [ledger.get_balance(w, unit) - b for w, b in zip(wallets, before)]


def event_args(events: List[ContractEvent]) -> List[Dict[str, object]]:
    return [ev.as_dict() for ev in events]
