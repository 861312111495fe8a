"""
ledger.py - Stateful Double-Entry Custody Ledger

The Ledger class is the central state manager. It is the only module that
mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Owns the logical clock that contracts read (never advanced by contracts)
    - Executes transactions atomically (all effects succeed or none do)
    - Applies effects in a fixed order: validate, update unit state, move value,
      commit, and only then notify receiving wallets
    - Records every applied transaction and every emitted event
    - Snapshot/revert of the whole ledger for test fixtures
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction, ContractEvent,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    TransferRule, ReceiveHook,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state,
)


class Ledger:
    """
    Custody ledger: the only object that holds balances, unit state, the
    logical clock and the transaction and event logs.

    Vault functions receive it as a LedgerView and return PendingTransactions;
    execute() validates them and applies state changes before value moves.
    Receive hooks run after commit, and a hook that raises puts everything
    back as it was. One ledger per thread.

    Example:
        ledger = Ledger("chain", datetime(2025, 1, 1), verbose=False, test_mode=True)
        ledger.register_unit(native_token())
        ledger.register_wallet("alice")
        ledger.set_balance("alice", "ETH", Decimal("100"))
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print applied transactions and rejections (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.event_log: List[ContractEvent] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._wallet_guards: Dict[str, TransferRule] = {}
        self._receive_hooks: Dict[str, ReceiveHook] = {}
        # Inverted index unit -> {wallet -> quantity}
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._snapshots: Dict[int, Dict[str, Any]] = {}
        self._next_snapshot_id: int = 1

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Balance of unit_symbol held by wallet_id; unknown wallet or unit raises."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances across all wallets.

        Wallets are summed in sorted order for deterministic accumulation.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all expected supplies match
            - 'supplies': Dict[str, Decimal] - Current total supply for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference

        Example:
            result = ledger.verify_double_entry(expected_supplies={'ETH': Decimal("0")})
            assert result['valid'], result['discrepancies']
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def get_events(
        self,
        name: Optional[str] = None,
        emitter: Optional[str] = None,
    ) -> List[ContractEvent]:
        """Return logged events, optionally filtered by name and emitter."""
        return [
            ev for ev in self.event_log
            if (name is None or ev.name == name)
            and (emitter is None or ev.emitter == emitter)
        ]

    def find_transaction(self, intent_id: str) -> Optional[Transaction]:
        """Return the applied transaction with this intent_id, or None."""
        for tx in reversed(self.transaction_log):
            if tx.intent_id == intent_id:
                return tx
        return None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def increase_time(self, delta: timedelta) -> datetime:
        """
        Move the clock forward by delta and return the new time.

        Raises:
            ValueError: If delta is negative
        """
        if delta < timedelta(0):
            raise ValueError(f"Cannot move time backwards by {delta}")
        self.advance_time(self._current_time + delta)
        return self._current_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(
        self,
        wallet_id: str,
        guard: Optional[TransferRule] = None,
        on_receive: Optional[ReceiveHook] = None,
    ) -> str:
        """
        Register a new wallet in the ledger.

        Args:
            wallet_id: Unique identifier for the wallet
            guard: Optional check run on every move into or out of this wallet;
                   raises TransferRuleViolation to reject the transaction
            on_receive: Optional hook called as hook(ledger, move) after a
                        committed transaction credits this wallet

        Returns:
            The wallet_id that was registered

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        if guard is not None:
            self._wallet_guards[wallet_id] = guard
        if on_receive is not None:
            self._receive_hooks[wallet_id] = on_receive
        return wallet_id

    def _unregister_wallet(self, wallet_id: str) -> None:
        self.registered_wallets.discard(wallet_id)
        self.balances.pop(wallet_id, None)
        self._wallet_guards.pop(wallet_id, None)
        self._receive_hooks.pop(wallet_id, None)

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (asset type or contract) in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Overwrite a balance directly. Test mode only; raises LedgerError otherwise."""
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    def update_unit_state(self, unit_symbol: str, state_updates: UnitState) -> None:
        """
        Merge state_updates into a unit's state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        old_unit = self.units[unit_symbol]
        new_state = {**old_unit.state, **state_updates}
        self.units[unit_symbol] = replace(old_unit, _frozen_state=_freeze_state(new_state))

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        # exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Order of operations:
        1. Idempotency check on intent_id
        2. Provisional registration of units_to_create and wallets_to_create
        3. Full validation (rolled back completely on failure)
        4. Unit state changes
        5. Moves
        6. Commit: transaction log, event log, seen intent ids
        7. Receive hooks of credited wallets; if one raises, the ledger is
           restored to its state before step 2 and the exception propagates

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed (reason in last_rejection)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        # Only pay for a full capture when foreign code will run after commit
        needs_rollback_point = any(m.dest in self._receive_hooks for m in pending.moves) or any(
            w.on_receive is not None for w in pending.wallets_to_create
        )
        rollback_point = self._capture_state() if needs_rollback_point else None

        newly_registered_units: List[str] = []
        newly_registered_wallets: List[str] = []

        def rollback_registrations() -> None:
            for sym in newly_registered_units:
                del self.units[sym]
            for wallet_id in newly_registered_wallets:
                self._unregister_wallet(wallet_id)

        for spec in pending.wallets_to_create:
            if spec.wallet_id in self.registered_wallets:
                rollback_registrations()
                return self._reject(f"wallet already registered: {spec.wallet_id}")
            self.register_wallet(spec.wallet_id, guard=spec.guard, on_receive=spec.on_receive)
            newly_registered_wallets.append(spec.wallet_id)

        for unit in pending.units_to_create:
            if unit.symbol not in self.units:
                self.register_unit(unit)
                newly_registered_units.append(unit.symbol)

        valid, reason = self._validate_pending(pending)
        if not valid:
            rollback_registrations()
            return self._reject(reason)

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
            wallets_to_create=pending.wallets_to_create,
            events=pending.events,
        )

        # Effects before interactions: contract state first, then value.
        self._apply_state_changes(tx.state_changes)
        self._execute_moves(tx.moves)

        self.transaction_log.append(tx)
        self.event_log.extend(tx.events)
        self.seen_intent_ids.add(pending.intent_id)
        self.last_rejection = None

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")

        for move in tx.moves:
            hook = self._receive_hooks.get(move.dest)
            if hook is None:
                continue
            try:
                hook(self, move)
            except Exception:
                self._restore_state(rollback_point)
                if self.verbose:
                    print(f"✗ REVERTED: receive hook of {move.dest} failed")
                raise

        return ExecuteResult.APPLIED

    def _reject(self, reason: str) -> ExecuteResult:
        self.last_rejection = reason
        if self.verbose:
            print(f"✗ REJECTED: {reason}")
        return ExecuteResult.REJECTED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the boxed transaction followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Return (True, "") or (False, reason).

        Order: timestamp, registration, transfer rules and wallet guards,
        stale state, balance limits.
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            unit = self.units[move.unit_symbol]
            checks = [unit.transfer_rule] if unit.transfer_rule else []
            for wallet in (move.source, move.dest):
                guard = self._wallet_guards.get(wallet)
                if guard is not None:
                    checks.append(guard)
            for check in checks:
                try:
                    check(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            for key in set(old_state.keys()) | set(current_state.keys()):
                if old_state.get(key) != current_state.get(key):
                    return False, (
                        f"stale state for {sc.unit}.{key}: "
                        f"expected {old_state.get(key)!r}, found {current_state.get(key)!r}"
                    )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt: it issues and redeems.
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        return True, ""

    def _apply_state_changes(self, state_changes) -> None:
        for sc in state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> {wallet -> quantity} index in sync; dust is dropped."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Debit source, credit dest, round to unit precision, update the index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # CLONE, SNAPSHOT AND REVERT
    # ========================================================================

    def _capture_state(self) -> Dict[str, Any]:
        """Copy every mutable piece of ledger state. Units are immutable and shared."""
        return {
            'units': dict(self.units),
            'registered_wallets': self.registered_wallets.copy(),
            'balances': {
                wallet: defaultdict(lambda: Decimal("0"), bals)
                for wallet, bals in self.balances.items()
            },
            'positions': {
                unit_symbol: dict(positions)
                for unit_symbol, positions in self._positions_by_unit.items()
            },
            'wallet_guards': dict(self._wallet_guards),
            'receive_hooks': dict(self._receive_hooks),
            'seen_intent_ids': self.seen_intent_ids.copy(),
            'transaction_log': list(self.transaction_log),
            'event_log': list(self.event_log),
            'next_sequence': self._next_sequence,
            'current_time': self._current_time,
            'last_rejection': self.last_rejection,
        }

    def _restore_state(self, captured: Dict[str, Any]) -> None:
        # Copy again so the same capture can be restored more than once
        self.units = dict(captured['units'])
        self.registered_wallets = captured['registered_wallets'].copy()
        self.balances = {
            wallet: defaultdict(lambda: Decimal("0"), bals)
            for wallet, bals in captured['balances'].items()
        }
        self._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in captured['positions'].items():
            self._positions_by_unit[unit_symbol] = dict(positions)
        self._wallet_guards = dict(captured['wallet_guards'])
        self._receive_hooks = dict(captured['receive_hooks'])
        self.seen_intent_ids = captured['seen_intent_ids'].copy()
        self.transaction_log = list(captured['transaction_log'])
        self.event_log = list(captured['event_log'])
        self._next_sequence = captured['next_sequence']
        self._current_time = captured['current_time']
        self.last_rejection = captured['last_rejection']

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Cloned state includes units, wallets (with guards and hooks), balances,
        transaction and event logs, current time and configuration. Snapshots
        are not carried over.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned._snapshots = {}
        cloned._next_snapshot_id = 1
        cloned._restore_state(self._capture_state())
        return cloned

    def snapshot(self) -> int:
        """
        Record the full ledger state and return a snapshot id for revert().

        Intended for test fixtures: deploy once, snapshot, and revert before
        each scenario instead of redeploying.
        """
        snapshot_id = self._next_snapshot_id
        self._next_snapshot_id += 1
        self._snapshots[snapshot_id] = self._capture_state()
        return snapshot_id

    def revert(self, snapshot_id: int) -> None:
        """
        Restore the ledger to a snapshot, including its clock.

        The snapshot stays valid and can be reverted to again; snapshots taken
        after it are discarded.

        Raises:
            LedgerError: If the snapshot id is unknown
        """
        if snapshot_id not in self._snapshots:
            raise LedgerError(f"Unknown snapshot {snapshot_id}")
        self._restore_state(self._snapshots[snapshot_id])
        for later in [sid for sid in self._snapshots if sid > snapshot_id]:
            del self._snapshots[later]
