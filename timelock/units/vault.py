"""
vault.py - Time-Locked Vault

A vault custodies a single deposit for a single owner until an unlock time,
then releases the whole balance to that owner exactly once.

This module provides:
1. create_vault_unit() - Factory for the vault's term-sheet unit
2. vault_address() - Deterministic address for a deployer's n-th vault
3. compute_deployment() - Pure function building the atomic creation transaction
4. compute_withdrawal() - Pure function building the one-shot release transaction
5. vault_wallet_guard() - Wallet guard that seals the vault's balance
6. get_vault_state() / is_unlocked() - Read-only queries
7. TimeLockedVault - Handle binding a ledger and a vault address

Storage layout:
    The vault is a Unit of type TIME_LOCKED_VAULT and, under the same id, a
    wallet holding the custodied currency. The unit carries the term sheet
    (owner, unlock_time, currency, deposit) and the lifecycle flags; the
    wallet balance is the vault balance.

Lifecycle:
    Deploy (T0, unlock_time > T0):
        Move(deposit, currency, deployer -> vault)       funded: False -> True
    Withdraw (T >= unlock_time, caller == owner, not withdrawn):
        withdrawn: False -> True                        (state first)
        Move(balance, currency, vault -> owner)          (then value)
        emit Withdrawal(amount, timestamp)

Withdraw preconditions are checked in this order: unlock time reached, caller
is the owner, vault not yet withdrawn. A non-owner calling early therefore
gets TooEarlyError.

All compute_* functions take a LedgerView (read-only) and return immutable
PendingTransactions; only Ledger.execute() changes state.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import Any, Dict, List, Optional, Union
import hashlib

from ..core import (
    LedgerView, Move, PendingTransaction, Transaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, WalletSpec, ContractEvent, ExecuteResult,
    UNIT_TYPE_TIME_LOCKED_VAULT, QUANTITY_EPSILON,
    LedgerError, TransferRuleViolation,
    InvalidScheduleError, TooEarlyError, UnauthorizedError, AlreadyWithdrawnError,
    build_transaction, emit, non_transferable_rule, _freeze_state,
)
from ..ledger import Ledger


VAULT_ADDRESS_PREFIX = "VAULT-"

WITHDRAWAL_EVENT = "Withdrawal"

STATUS_LOCKED = "LOCKED"
STATUS_UNLOCKED = "UNLOCKED"
STATUS_WITHDRAWN = "WITHDRAWN"

Amount = Union[Decimal, int, str]


def _to_decimal(value: Amount, name: str) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"{name} must be Decimal, int or str, got float {value}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except ArithmeticError as e:
        raise ValueError(f"{name} is not a number: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"{name} must be finite, got {amount}")
    return amount


def vault_address(deployer: str, nonce: int) -> str:
    """
    Deterministic address of the nonce-th vault deployed by deployer.

    Example:
        vault_address("alice", 0)  # 'VAULT-' followed by 12 hex digits
    """
    if nonce < 0:
        raise ValueError(f"nonce must be non-negative, got {nonce}")
    digest = hashlib.sha256(f"{deployer}:{nonce}".encode()).hexdigest()[:12]
    return f"{VAULT_ADDRESS_PREFIX}{digest.upper()}"


def create_vault_unit(
    symbol: str,
    owner: str,
    unlock_time: datetime,
    currency: str,
    deposit: Amount,
    deployed_at: datetime,
) -> Unit:
    """
    Create the unit describing a time-locked vault.

    Args:
        symbol: Vault address; also the id of the wallet holding the deposit
        owner: Wallet allowed to withdraw (the deployer)
        unlock_time: Earliest logical time at which withdrawal is allowed
        currency: Symbol of the custodied unit (e.g., "ETH")
        deposit: Entire initial balance (positive)
        deployed_at: Logical time of deployment

    Returns:
        Unit with the term sheet in its state. The unit itself can never be
        moved between wallets. State keys:
        - owner, unlock_time, currency, deposit, deployed_at
        - funded: False until the deployment transaction lands
        - withdrawn, withdrawn_at, withdrawn_amount

    Raises:
        ValueError: On empty identifiers or a non-positive deposit
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    if not currency or not currency.strip():
        raise ValueError("currency cannot be empty")
    if not isinstance(unlock_time, datetime):
        raise ValueError(f"unlock_time must be a datetime, got {type(unlock_time)}")
    amount = _to_decimal(deposit, "deposit")
    if amount <= 0:
        raise ValueError(f"deposit must be positive, got {amount}")

    return Unit(
        symbol=symbol,
        name=f"Time-Locked Vault of {owner}",
        unit_type=UNIT_TYPE_TIME_LOCKED_VAULT,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state({
            'owner': owner,
            'unlock_time': unlock_time,
            'currency': currency,
            'deposit': amount,
            'deployed_at': deployed_at,
            'funded': False,
            'withdrawn': False,
            'withdrawn_at': None,
            'withdrawn_amount': None,
        }),
    )


def _load_vault_state(view: LedgerView, symbol: str) -> Dict[str, Any]:
    unit = view.get_unit(symbol)
    if unit.unit_type != UNIT_TYPE_TIME_LOCKED_VAULT:
        raise ValueError(f"{symbol} is not a time-locked vault (type {unit.unit_type})")
    return view.get_unit_state(symbol)


def _deployer_nonce(view: LedgerView, deployer: str) -> int:
    nonce = 0
    for symbol in view.list_units():
        if view.get_unit(symbol).unit_type != UNIT_TYPE_TIME_LOCKED_VAULT:
            continue
        if view.get_unit_state(symbol).get('owner') == deployer:
            nonce += 1
    return nonce


def vault_wallet_guard(symbol: str, view: LedgerView, move: Move) -> None:
    """
    Wallet guard sealing a vault's balance.

    Inbound: only the creation deposit, from the owner, in the vault currency,
    for exactly the recorded amount, while the vault is not yet funded.

    Outbound: only to the owner, in the vault currency, for exactly the full
    balance, at or after the unlock time, while the vault is funded and not
    withdrawn.

    Bind the symbol with functools.partial before registering the guard.

    Raises:
        TransferRuleViolation: If the move is not one of the two allowed flows
    """
    state = view.get_unit_state(symbol)
    owner = state['owner']
    currency = state['currency']

    if move.dest == symbol:
        if state.get('funded'):
            raise TransferRuleViolation(f"{symbol} does not accept deposits after creation")
        if move.source != owner or move.unit_symbol != currency or move.quantity != state['deposit']:
            raise TransferRuleViolation(
                f"{symbol} only accepts the creation deposit of {state['deposit']} {currency} from {owner}"
            )
        return

    if move.source == symbol:
        if not state.get('funded') or state.get('withdrawn'):
            raise TransferRuleViolation(f"{symbol} has nothing left to release")
        if move.unit_symbol != currency:
            raise TransferRuleViolation(f"{symbol} only holds {currency}")
        if view.current_time < state['unlock_time']:
            raise TransferRuleViolation(f"{symbol} is locked until {state['unlock_time']}")
        if move.dest != owner:
            raise TransferRuleViolation(f"{symbol} can only release funds to {owner}")
        balance = view.get_balance(symbol, currency)
        if move.quantity != balance:
            raise TransferRuleViolation(
                f"{symbol} must release its full balance {balance}, got {move.quantity}"
            )


def compute_deployment(
    view: LedgerView,
    deployer: str,
    unlock_time: datetime,
    deposit: Amount,
    currency: str = "ETH",
    symbol: Optional[str] = None,
) -> PendingTransaction:
    """
    Build the transaction that creates and funds a vault.

    The transaction registers the vault unit and the vault wallet, moves the
    deposit from the deployer into the vault wallet and marks the vault
    funded. The ledger applies all of it or none of it: if the deployer cannot
    cover the deposit, no vault exists afterwards.

    Args:
        view: Read-only ledger access (provides the clock)
        deployer: Wallet that funds the vault and becomes its owner
        unlock_time: Must be strictly after view.current_time
        deposit: Entire initial balance
        currency: Symbol of the deposited unit
        symbol: Explicit vault address (default: derived from deployer and nonce)

    Returns:
        PendingTransaction ready for Ledger.execute()

    Raises:
        InvalidScheduleError: If unlock_time <= view.current_time
        ValueError: On empty identifiers, or a deposit that is not positive or
                    not a whole amount of the currency unit
    """
    if unlock_time <= view.current_time:
        raise InvalidScheduleError("unlock time must be in the future")

    if symbol is None:
        symbol = vault_address(deployer, _deployer_nonce(view, deployer))

    unit = create_vault_unit(
        symbol=symbol,
        owner=deployer,
        unlock_time=unlock_time,
        currency=currency,
        deposit=deposit,
        deployed_at=view.current_time,
    )
    old_state = unit.state
    currency_unit = view.get_unit(currency)
    if currency_unit.round(old_state['deposit']) != old_state['deposit']:
        raise ValueError(
            f"deposit {old_state['deposit']} is not a whole amount of {currency} "
            f"({currency_unit.decimal_places} decimal places)"
        )
    new_state = {**old_state, 'funded': True}

    moves = [
        Move(
            quantity=old_state['deposit'],
            unit_symbol=currency,
            source=deployer,
            dest=symbol,
            contract_id=f'deposit_{symbol}',
        ),
    ]
    wallet = WalletSpec(wallet_id=symbol, guard=partial(vault_wallet_guard, symbol))
    origin = TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=deployer,
        unit_symbol=symbol,
        event_type="DEPLOY",
    )

    return build_transaction(
        view,
        moves,
        [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)],
        origin=origin,
        units_to_create=(unit,),
        wallets_to_create=(wallet,),
    )


def compute_withdrawal(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Build the one-shot release of a vault's full balance to its owner.

    Checks, in order:
    1. view.current_time >= unlock_time, else TooEarlyError
    2. caller == owner, else UnauthorizedError
    3. not withdrawn and balance > 0, else AlreadyWithdrawnError

    Returns:
        PendingTransaction containing:
        - State change marking the vault withdrawn (applied before the move)
        - Move of the full balance from the vault wallet to the owner
        - Withdrawal(amount, timestamp) event
    """
    state = _load_vault_state(view, symbol)
    now = view.current_time

    if now < state['unlock_time']:
        raise TooEarlyError("withdrawal not yet permitted")
    if caller != state['owner']:
        raise UnauthorizedError("caller is not the owner")

    currency = state['currency']
    amount = view.get_balance(symbol, currency)
    if state.get('withdrawn') or amount <= QUANTITY_EPSILON:
        raise AlreadyWithdrawnError("vault has already been withdrawn")

    new_state = {
        **state,
        'withdrawn': True,
        'withdrawn_at': now,
        'withdrawn_amount': amount,
    }
    moves = [
        Move(
            quantity=amount,
            unit_symbol=currency,
            source=symbol,
            dest=state['owner'],
            contract_id=f'withdraw_{symbol}',
        ),
    ]
    origin = TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=caller,
        unit_symbol=symbol,
        event_type="WITHDRAW",
    )

    return build_transaction(
        view,
        moves,
        [UnitStateChange(unit=symbol, old_state=state, new_state=new_state)],
        origin=origin,
        events=[emit(view, WITHDRAWAL_EVENT, symbol, amount=amount, timestamp=now)],
    )


def is_unlocked(view: LedgerView, symbol: str) -> bool:
    """True once the clock has reached the vault's unlock time."""
    state = _load_vault_state(view, symbol)
    return view.current_time >= state['unlock_time']


def get_vault_state(view: LedgerView, symbol: str) -> Dict[str, Any]:
    """
    Summarize a vault.

    Returns:
        Dict with address, owner, unlock_time, currency, deposit, balance,
        withdrawn, withdrawn_at, withdrawn_amount and status
        (LOCKED, UNLOCKED or WITHDRAWN).
    """
    state = _load_vault_state(view, symbol)
    if state.get('withdrawn'):
        status = STATUS_WITHDRAWN
    elif view.current_time >= state['unlock_time']:
        status = STATUS_UNLOCKED
    else:
        status = STATUS_LOCKED

    return {
        'address': symbol,
        'owner': state['owner'],
        'unlock_time': state['unlock_time'],
        'currency': state['currency'],
        'deposit': state['deposit'],
        'balance': view.get_balance(symbol, state['currency']),
        'withdrawn': bool(state.get('withdrawn')),
        'withdrawn_at': state.get('withdrawn_at'),
        'withdrawn_amount': state.get('withdrawn_amount'),
        'status': status,
    }


class TimeLockedVault:
    """
    Handle on a deployed vault.

    Binds a Ledger and a vault address so callers can work with the vault as
    an object. Every operation goes through the pure functions above and
    Ledger.execute(); the handle keeps no state of its own.

    Example:
        vault = TimeLockedVault.deploy(
            ledger, "alice",
            unlock_time=ledger.current_time + timedelta(days=365),
            deposit=Decimal("1000000000"),
        )
        ledger.increase_time(timedelta(days=365))
        vault.withdraw("alice")
        assert vault.balance == 0
    """

    def __init__(self, ledger: Ledger, address: str):
        _load_vault_state(ledger, address)
        self.ledger = ledger
        self.address = address

    @classmethod
    def deploy(
        cls,
        ledger: Ledger,
        deployer: str,
        unlock_time: datetime,
        deposit: Amount,
        currency: str = "ETH",
    ) -> TimeLockedVault:
        """
        Create and fund a vault owned by deployer.

        Raises:
            InvalidScheduleError: If unlock_time is not in the future
            LedgerError: If the ledger rejects the deployment (e.g. the
                         deployer cannot cover the deposit)
        """
        pending = compute_deployment(ledger, deployer, unlock_time, deposit, currency)
        address = pending.units_to_create[0].symbol
        result = ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"Deployment of {address} {result.value}: {ledger.last_rejection}"
            )
        return cls(ledger, address)

    def withdraw(self, caller: str) -> Transaction:
        """
        Release the full balance to the owner.

        Args:
            caller: Identity invoking the withdrawal

        Returns:
            The executed Transaction

        Raises:
            TooEarlyError, UnauthorizedError, AlreadyWithdrawnError: Rejected preconditions
            LedgerError: If the ledger rejects the release
        """
        pending = compute_withdrawal(self.ledger, self.address, caller)
        result = self.ledger.execute(pending)
        if result == ExecuteResult.ALREADY_APPLIED:
            raise AlreadyWithdrawnError("vault has already been withdrawn")
        if result == ExecuteResult.REJECTED:
            raise LedgerError(
                f"Withdrawal from {self.address} rejected: {self.ledger.last_rejection}"
            )
        return self.ledger.find_transaction(pending.intent_id)

    def state(self) -> Dict[str, Any]:
        return get_vault_state(self.ledger, self.address)

    def events(self, name: Optional[str] = None) -> List[ContractEvent]:
        return self.ledger.get_events(name=name, emitter=self.address)

    @property
    def owner(self) -> str:
        return self.ledger.get_unit_state(self.address)['owner']

    @property
    def unlock_time(self) -> datetime:
        return self.ledger.get_unit_state(self.address)['unlock_time']

    @property
    def currency(self) -> str:
        return self.ledger.get_unit_state(self.address)['currency']

    @property
    def deposit(self) -> Decimal:
        return self.ledger.get_unit_state(self.address)['deposit']

    @property
    def balance(self) -> Decimal:
        return self.ledger.get_balance(self.address, self.currency)

    @property
    def withdrawn(self) -> bool:
        return bool(self.ledger.get_unit_state(self.address)['withdrawn'])

    @property
    def status(self) -> str:
        return self.state()['status']

    def __repr__(self) -> str:
        return (
            f"TimeLockedVault({self.address}, owner={self.owner}, "
            f"unlock_time={self.unlock_time}, balance={self.balance} {self.currency})"
        )
