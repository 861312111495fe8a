#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Time-Locked Vault Step by Step

Walks one vault through its whole life on a ledger. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - The chain, the native token, funded accounts
  4-5:  Deployment   - A rejected schedule, then a funded vault
  6-8:  The Lock     - Early withdrawals, non-owners, the sealed balance
  9-10: The Release  - The owner withdraws, the Withdrawal event, terminality
  11:   Fixtures     - Snapshot and revert

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from timelock import (
    Ledger, Move, VaultError, TimeLockedVault,
    build_transaction, native_token, get_vault_state, WITHDRAWAL_EVENT,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Base units of ETH (wei)
    owner_initial_eth: Decimal = Decimal("1000000000000000")
    other_initial_eth: Decimal = Decimal("1000000000000000")
    locked_amount: Decimal = Decimal("1000000000")

    lock_period: timedelta = timedelta(days=365)


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_vault(vault: TimeLockedVault):
    state = get_vault_state(vault.ledger, vault.address)
    for key in ('address', 'owner', 'unlock_time', 'balance', 'status'):
        print(f"  {key:<12}: {state[key]}")


def attempt(description: str, action):
    """Run action and report the vault error it raises, if any."""
    print(f">>> {description}")
    try:
        action()
    except VaultError as e:
        print(f"    {type(e).__name__}: {e}")
        return False
    print("    ok")
    return True


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_chain():
    step_header(1, "The Chain",
        "A ledger holds balances, the logical clock and the event log.")

    print(">>> ledger = Ledger('chain', initial_time=..., verbose=True, test_mode=True)")
    ledger = Ledger(
        name="chain",
        initial_time=CONFIG.start_time,
        verbose=True,
        test_mode=True,
    )
    print(f"Current time:       {ledger.current_time}")
    print(f"Registered wallets: {sorted(ledger.registered_wallets)}")
    return ledger


def step_02_native_token(ledger: Ledger):
    step_header(2, "The Native Token",
        "Vaults custody ETH, counted in integral base units.")

    print('>>> ledger.register_unit(native_token("ETH", "Ether"))')
    ledger.register_unit(native_token("ETH", "Ether"))
    return ledger


def step_03_accounts(ledger: Ledger):
    step_header(3, "Accounts",
        "The owner deploys the vault; the other user will try to take from it.")

    ledger.register_wallet("owner")
    ledger.register_wallet("other_user")
    ledger.set_balance("owner", "ETH", CONFIG.owner_initial_eth)
    ledger.set_balance("other_user", "ETH", CONFIG.other_initial_eth)

    section_header("Balances")
    for wallet in ("owner", "other_user"):
        print(f"  {wallet:<10}: {ledger.get_balance(wallet, 'ETH')} wei")
    return ledger


# ============================================================================
# PHASE 2: DEPLOYMENT (Steps 4-5)
# ============================================================================

def step_04_bad_schedule(ledger: Ledger):
    step_header(4, "A Schedule in the Past",
        "The unlock time must be strictly in the future.")

    attempt(
        "TimeLockedVault.deploy(ledger, 'owner', ledger.current_time, 1)",
        lambda: TimeLockedVault.deploy(ledger, "owner", ledger.current_time, 1),
    )
    print(f"\nUnits after the attempt: {ledger.list_units()}")
    return ledger


def step_05_deploy(ledger: Ledger):
    step_header(5, "Deploying the Vault",
        "One transaction creates the vault, funds it and marks it funded.")

    unlock_time = ledger.current_time + CONFIG.lock_period
    print(f">>> vault = TimeLockedVault.deploy(ledger, 'owner', {unlock_time}, {CONFIG.locked_amount})")
    vault = TimeLockedVault.deploy(ledger, "owner", unlock_time, CONFIG.locked_amount)

    section_header("Vault")
    show_vault(vault)
    return vault


# ============================================================================
# PHASE 3: THE LOCK (Steps 6-8)
# ============================================================================

def step_06_too_early(vault: TimeLockedVault):
    step_header(6, "Too Early",
        "Before the unlock time nobody can withdraw, not even the owner.")

    attempt("vault.withdraw('owner')", lambda: vault.withdraw("owner"))
    attempt("vault.withdraw('other_user')", lambda: vault.withdraw("other_user"))

    section_header("Key Insight")
    print("""
    Time is checked first. A non-owner calling early is told it is too early,
    not that it is unauthorized.
    """)


def step_07_not_the_owner(vault: TimeLockedVault):
    step_header(7, "Not the Owner",
        "After the unlock time only the owner may withdraw.")

    print(f">>> ledger.increase_time({CONFIG.lock_period})")
    vault.ledger.increase_time(CONFIG.lock_period)
    print(f"Status: {vault.status}")
    attempt("vault.withdraw('other_user')", lambda: vault.withdraw("other_user"))


def step_08_sealed_balance(vault: TimeLockedVault):
    step_header(8, "The Sealed Balance",
        "Raw transfers cannot top up or skim the vault.")

    ledger = vault.ledger
    for source, dest, cid in (
        ("other_user", vault.address, "top_up"),
        (vault.address, "other_user", "skim"),
    ):
        pending = build_transaction(ledger, [Move(Decimal("1"), "ETH", source, dest, cid)])
        result = ledger.execute(pending)
        print(f"  {cid:<7}: {result.value} ({ledger.last_rejection})")
    print(f"\nVault balance: {vault.balance}")


# ============================================================================
# PHASE 4: THE RELEASE (Steps 9-10)
# ============================================================================

def step_09_withdraw(vault: TimeLockedVault):
    step_header(9, "The Owner Withdraws",
        "State is updated before value moves; the event is logged on commit.")

    before = vault.ledger.get_balance("owner", "ETH")
    vault.withdraw("owner")
    after = vault.ledger.get_balance("owner", "ETH")

    section_header("Balance Changes")
    print(f"  owner      : {after - before:+}")
    print(f"  vault      : {vault.balance}")

    section_header("Events")
    for event in vault.events(WITHDRAWAL_EVENT):
        print(f"  {event}")


def step_10_terminal(vault: TimeLockedVault):
    step_header(10, "Exactly Once",
        "A withdrawn vault stays withdrawn.")

    attempt("vault.withdraw('owner')", lambda: vault.withdraw("owner"))
    show_vault(vault)


# ============================================================================
# PHASE 5: FIXTURES (Step 11)
# ============================================================================

def step_11_snapshot():
    step_header(11, "Snapshot and Revert",
        "Deploy once, then replay scenarios from the same starting point.")

    ledger = Ledger("fixture", CONFIG.start_time, verbose=False, test_mode=True)
    ledger.register_unit(native_token())
    ledger.register_wallet("owner")
    ledger.set_balance("owner", "ETH", CONFIG.owner_initial_eth)
    vault = TimeLockedVault.deploy(
        ledger, "owner", ledger.current_time + CONFIG.lock_period, CONFIG.locked_amount
    )

    snap = ledger.snapshot()
    for run in (1, 2):
        ledger.increase_time(CONFIG.lock_period)
        vault.withdraw("owner")
        print(f"  run {run}: withdrawn, events={len(vault.events())}")
        ledger.revert(snap)
        print(f"  reverted: status={vault.status}, time={ledger.current_time}")

    result = ledger.verify_double_entry(
        expected_supplies={"ETH": CONFIG.owner_initial_eth}
    )
    print(f"\nConservation holds: {result['valid']}")
    assert result['valid'], result['discrepancies']


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       TIME-LOCKED VAULT - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    ledger = step_01_chain()
    wait_for_enter()

    ledger = step_02_native_token(ledger)
    wait_for_enter()

    ledger = step_03_accounts(ledger)
    wait_for_enter()

    ledger = step_04_bad_schedule(ledger)
    wait_for_enter()

    vault = step_05_deploy(ledger)
    wait_for_enter()

    step_06_too_early(vault)
    wait_for_enter()

    step_07_not_the_owner(vault)
    wait_for_enter()

    step_08_sealed_balance(vault)
    wait_for_enter()

    step_09_withdraw(vault)
    wait_for_enter()

    step_10_terminal(vault)
    wait_for_enter()

    step_11_snapshot()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See timelock/units/vault.py for the vault implementation
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
