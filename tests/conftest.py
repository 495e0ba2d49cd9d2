"""
conftest.py - Shared pytest fixtures for credit core tests

Provides common fixtures used across unit, conformance and functional tests:
- Bare token ledgers (empty, funded)
- A fully wired credit system (zero rate and 10% annual rate)
- An account already opened for alice
"""

import pytest

from credit import TokenLedger, SequenceClock, erc20, WAD, RAY

from tests.mocks import build_system


# =============================================================================
# TOKEN LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return SequenceClock()


@pytest.fixture
def empty_book(clock):
    """Fresh ledger with no registrations."""
    return TokenLedger("test", clock, test_mode=True)


@pytest.fixture
def funded_book(empty_book):
    """Ledger with DAI and alice holding 1000 DAI."""
    empty_book.register_token(erc20("DAI", "Dai Stablecoin"))
    empty_book.register_wallet("alice")
    empty_book.register_wallet("bob")
    empty_book.mint("alice", "DAI", 1000 * WAD)
    return empty_book


# =============================================================================
# CREDIT SYSTEM FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """Credit core with a zero borrow rate."""
    return build_system()


@pytest.fixture
def system_with_interest():
    """Credit core with a 10% annual borrow rate (one unit = one second)."""
    return build_system(borrow_rate=RAY // 10)


@pytest.fixture
def opened(system):
    """alice deposits 100 DAI at 3x leverage: slot holds 400 DAI, debt 300 DAI."""
    system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
    return system
