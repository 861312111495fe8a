"""
Units module - Contract units built on the ledger.

- Time-locked vault: single deposit, single owner, one-shot release after an
  unlock time

All unit factories and related functions are re-exported here for convenience.
"""

from .vault import (
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
    'TimeLockedVault',
    'create_vault_unit',
    'vault_address',
    'compute_deployment',
    'compute_withdrawal',
    'vault_wallet_guard',
    'get_vault_state',
    'is_unlocked',
    'WITHDRAWAL_EVENT',
    'STATUS_LOCKED',
    'STATUS_UNLOCKED',
    'STATUS_WITHDRAWN',
]
