"""
timelock - Time-Locked Custody on a Double-Entry Ledger

A vault takes a deposit at creation, records its owner and a future unlock
time, and lets exactly that owner withdraw the full balance once, after the
unlock time has passed. Balances, the logical clock and the event log live in
the Ledger.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from timelock import Ledger, native_token, TimeLockedVault

    ledger = Ledger("main", datetime(2025, 1, 1), verbose=False, test_mode=True)
    ledger.register_unit(native_token("ETH", "Ether"))
    ledger.register_wallet("alice")
    ledger.set_balance("alice", "ETH", Decimal("5000000000"))

    vault = TimeLockedVault.deploy(
        ledger, "alice",
        unlock_time=ledger.current_time + timedelta(days=365),
        deposit=Decimal("1000000000"),
    )

    ledger.increase_time(timedelta(days=365))
    vault.withdraw("alice")
    ledger.get_events("Withdrawal", emitter=vault.address)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    ContractEvent,
    WalletSpec,
    build_transaction,
    emit,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    VaultError,
    InvalidScheduleError,
    TooEarlyError,
    UnauthorizedError,
    AlreadyWithdrawnError,
    non_transferable_rule,
    native_token,
    SYSTEM_WALLET,
    QUANTITY_EPSILON,
    UNIT_TYPE_NATIVE,
    UNIT_TYPE_TIME_LOCKED_VAULT,
)

# Ledger
from .ledger import Ledger

# Vault
from .units.vault import (
    TimeLockedVault,
    create_vault_unit,
    vault_address,
    compute_deployment,
    compute_withdrawal,
    vault_wallet_guard,
    get_vault_state,
    is_unlocked,
    WITHDRAWAL_EVENT,
    STATUS_LOCKED,
    STATUS_UNLOCKED,
    STATUS_WITHDRAWN,
)

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'ContractEvent', 'WalletSpec',
    'build_transaction', 'emit',
    'Unit', 'UnitStateChange',
    'ExecuteResult', 'LedgerError', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'VaultError', 'InvalidScheduleError', 'TooEarlyError', 'UnauthorizedError',
    'AlreadyWithdrawnError',
    'non_transferable_rule', 'native_token',
    'SYSTEM_WALLET', 'QUANTITY_EPSILON',
    'UNIT_TYPE_NATIVE', 'UNIT_TYPE_TIME_LOCKED_VAULT',
    # Ledger
    'Ledger',
    # Vault
    'TimeLockedVault', 'create_vault_unit', 'vault_address',
    'compute_deployment', 'compute_withdrawal', 'vault_wallet_guard',
    'get_vault_state', 'is_unlocked',
    'WITHDRAWAL_EVENT', 'STATUS_LOCKED', 'STATUS_UNLOCKED', 'STATUS_WITHDRAWN',
]

__version__ = '1.0.0'
