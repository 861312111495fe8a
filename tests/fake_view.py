"""
fake_view.py - Test Helper for LedgerView

Provides a minimal immutable LedgerView for testing vault functions without
requiring a full Ledger instance.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Any

from timelock import Unit, UnitNotRegistered


Positions = Dict[str, Decimal]
UnitState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing contract functions.

    Unit state comes from `states` when given, otherwise from the Unit objects.

    Example:
        view = FakeView(
            balances={'VAULT-1': {'ETH': Decimal("100")}},
            units={'VAULT-1': vault_unit},
            time=datetime(2025, 1, 1)
        )
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, Decimal]],
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
        units: Optional[Dict[str, Unit]] = None
    ):
        self._balances = balances
        self._states = states or {}
        self._time = time or datetime(2025, 1, 1)
        self._units = units or {}

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        if unit in self._states:
            return dict(self._states[unit])
        if unit in self._units:
            return self._units[unit].state
        return {}

    def get_positions(self, unit: str) -> Positions:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def list_units(self) -> List[str]:
        return sorted(self._units.keys())

    def get_unit(self, symbol: str) -> Unit:
        if symbol not in self._units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self._units[symbol]

