"""
Core types and pure functions for the time-lock custody ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, ContractEvent, WalletSpec, PendingTransaction,
   Transaction, Unit
3. Exceptions: LedgerError, VaultError and their domain-specific subclasses
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules and wallet guards: pure validation functions for moves
6. Unit factories: functions to create standard unit types

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are Decimal and must be computed deterministically.
# The global context is configured once at import.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_NATIVE = "NATIVE"
UNIT_TYPE_TIME_LOCKED_VAULT = "TIME_LOCKED_VAULT"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

DECIMAL_PRECISION = {
    'NATIVE': 0,
}

DECIMAL_ROUNDING = {
    'NATIVE': ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: term sheet data, lifecycle flags, etc.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Vault functions, transfer rules and wallet guards receive a LedgerView so
    they can query balances, unit state and the logical clock without being
    able to modify anything. The Ledger class implements this protocol; for
    testing, FakeView provides an immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self) -> List[str]:
        """Return the sorted list of registered unit symbols."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balances, transfer rules, wallet
              guards, stale state or timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates a unit transfer rule or a wallet guard."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class VaultError(LedgerError):
    """Base exception for rejected vault operations."""
    pass


class InvalidScheduleError(VaultError):
    """Raised when a vault is constructed with an unlock time that is not in the future."""
    pass


class TooEarlyError(VaultError):
    """Raised when a withdrawal is attempted before the unlock time."""
    pass


class UnauthorizedError(VaultError):
    """Raised when someone other than the owner attempts a withdrawal."""
    pass


class AlreadyWithdrawnError(VaultError):
    """Raised when a withdrawal is attempted on a vault that has already been emptied."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """Who asked for a transaction: caller or contract, the vault, and the operation."""
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    old_state is checked against the live state at execution time; a mismatch
    means the transaction was built from a stale view and it is rejected.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old_value, new_value)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    quantity must be a finite, non-zero Decimal; contract_id names the
    operation that produced the move (e.g. "withdraw_VAULT-...").
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class ContractEvent:
    """
    A notification emitted by a contract when its transaction is applied.

    Events travel inside the transaction and only reach the ledger's event log
    if the transaction commits, so a rejected operation never leaves an event
    behind.

    Attributes:
        name: Event name (e.g., "Withdrawal").
        emitter: Symbol/address of the emitting contract.
        args: Ordered (key, value) pairs.
        timestamp: Logical time at which the event was produced.
    """
    name: str
    emitter: str
    args: Tuple[Tuple[str, Any], ...]
    timestamp: datetime

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("ContractEvent name cannot be empty")
        if not self.emitter or not self.emitter.strip():
            raise ValueError("ContractEvent emitter cannot be empty")

    def arg(self, key: str) -> Any:
        for k, v in self.args:
            if k == key:
                return v
        raise KeyError(key)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.args)

    def __repr__(self) -> str:
        rendered = ", ".join(f"{k}={v!s}" for k, v in self.args)
        return f"{self.name}({rendered}) @ {self.emitter}"


def emit(view: LedgerView, name: str, emitter: str, **args: Any) -> ContractEvent:
    """Build a ContractEvent stamped with the view's current time."""
    return ContractEvent(
        name=name,
        emitter=emitter,
        args=tuple(args.items()),
        timestamp=view.current_time,
    )


# Type alias for transfer rules and wallet guards.
# Both validate a move and raise TransferRuleViolation if it is not allowed.
TransferRule = Callable[[LedgerView, Move], None]

# Called after a committed transaction credits a wallet.
ReceiveHook = Callable[[Any, Move], None]


@dataclass(frozen=True, slots=True)
class WalletSpec:
    """
    Description of a wallet to be registered by a transaction.

    Attributes:
        wallet_id: Unique identifier of the wallet.
        guard: Optional validation run on every move touching this wallet.
        on_receive: Optional hook run after a committed move credits this wallet.
    """
    wallet_id: str
    guard: Optional[TransferRule] = None
    on_receive: Optional[ReceiveHook] = None

    def __post_init__(self):
        if not self.wallet_id or not self.wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Stable text form of a state or event value, for intent hashing."""
    if value is None or isinstance(value, bool):
        return {None: "null", True: "true", False: "false"}[value]
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        pairs = sorted((str(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}={v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"S:{value}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
    wallets_to_create: Tuple[WalletSpec, ...] = (),
    events: Tuple[ContractEvent, ...] = (),
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The hash covers moves, state changes, origin, created units and wallets
    and emitted events. It never covers the PendingTransaction timestamp, so
    the same business intent built twice hashes the same. Used for
    idempotency checking.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for wallet in sorted(wallets_to_create, key=lambda w: w.wallet_id):
        content_parts.append(f"wallet_create:{wallet.wallet_id}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    for ev in events:
        content_parts.append(f"emit:{ev.emitter}|{ev.name}|{_canonicalize(ev.args)}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by contract functions and submitted to Ledger.execute().

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register before validating the moves
        wallets_to_create: Wallets to register before validating the moves
        events: Notifications published if and only if the transaction applies
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    wallets_to_create: Tuple[WalletSpec, ...] = ()
    events: Tuple[ContractEvent, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin,
                self.units_to_create, self.wallets_to_create, self.events,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """True if there is nothing to move, change, create or emit."""
        return not (
            self.moves or self.state_changes or self.units_to_create
            or self.wallets_to_create or self.events
        )

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, "
            f"{len(self.events)} events, {self.origin})"
        )


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    wallets_to_create: Optional[Tuple[WalletSpec, ...]] = None,
    events: Optional[List[ContractEvent]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, state deltas and events.

    This is the standard way to create transactions. State snapshots are deep
    copied so later mutation of the caller's dicts cannot alter the intent.

    Example:
        def compute_release(view, symbol, owner, amount):
            moves = [Move(amount, "ETH", symbol, owner, f"release_{symbol}")]
            old_state = view.get_unit_state(symbol)
            new_state = {**old_state, "released": True}
            changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        wallets_to_create=wallets_to_create or (),
        events=tuple(events or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    A committed PendingTransaction, stamped by the ledger that applied it.

    Carries the same moves, state changes, creations and events, plus
    exec_id, ledger_name, execution_time and a per-ledger sequence_number.
    contract_ids is derived from the moves.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    wallets_to_create: Tuple[WalletSpec, ...] = ()
    events: Tuple[ContractEvent, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not (self.moves or self.state_changes or self.units_to_create
                or self.wallets_to_create or self.events):
            raise ValueError("Transaction must have moves, state_changes, events or creations")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create or self.wallets_to_create:
            lines.append(f"├{bar}┤")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   + unit   ' + unit.symbol + ' (' + unit.name + ')')}│")
            for wallet in self.wallets_to_create:
                lines.append(f"│{pad('   + wallet ' + wallet.wallet_id)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.events:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Events (' + str(len(self.events)) + '):')}│")
            for ev in self.events:
                lines.append(f"│{pad('   ' + repr(ev))}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Something a wallet can hold, or a contract that carries state.

    Balances of the unit are kept within [min_balance, max_balance] and
    rounded to decimal_places (None leaves them unrounded). The state
    dict lives in _frozen_state so the Unit stays hashable and immutable.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize a value to this unit's precision (unchanged if decimal_places is None)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def non_transferable_rule(view: LedgerView, move: Move) -> None:
    """
    Reject every move of the unit.

    Used by contract units that carry state but must never change hands.

    Raises:
        TransferRuleViolation: Always.
    """
    raise TransferRuleViolation(f"{move.unit_symbol} is not transferable")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def native_token(
    symbol: str = "ETH",
    name: str = "Ether",
    decimal_places: int = DECIMAL_PRECISION['NATIVE'],
) -> Unit:
    """
    Create the chain's native value unit, counted in integral base units.

    Args:
        symbol: Token symbol (default "ETH").
        name: Human-readable name.
        decimal_places: Precision of stored balances (default 0, i.e. base units).

    Returns:
        A Unit with a zero minimum balance. Fractions of a base unit are
        rounded down.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({'native': True}),
    )
