"""
Shielded Ledger Test Fixtures
"""

import numpy as np
import pytest

from bn254_field import BN254_PRIME
from lean_imt import LeanIMT
from settlement import ShieldedLedger
from shielded_wallet import ShieldedWallet
from state_transitions import AccountKey


GOLDEN_USER_KEY = 0x1234567890abcdef
GOLDEN_CHAIN_ID = 1
GOLDEN_TOKEN = 0x02


@pytest.fixture
def rng() -> np.random.Generator:
    """Deterministic generator for randomized property tests."""
    return np.random.default_rng(42)


@pytest.fixture
def random_field(rng):
    """Draw uniformly distributed field elements."""
    def draw(count: int):
        return [int.from_bytes(rng.bytes(32), "big") % BN254_PRIME for _ in range(count)]
    return draw


@pytest.fixture
def golden_account() -> AccountKey:
    """Account used by the fixed golden vectors."""
    return AccountKey(GOLDEN_USER_KEY, GOLDEN_CHAIN_ID, GOLDEN_TOKEN)


@pytest.fixture
def other_account() -> AccountKey:
    """Second account on the same chain and token."""
    return AccountKey(0xfedcba0987654321, GOLDEN_CHAIN_ID, GOLDEN_TOKEN)


@pytest.fixture
def empty_tree() -> LeanIMT:
    return LeanIMT()


@pytest.fixture
def ledger() -> ShieldedLedger:
    """Fresh settlement ledger."""
    return ShieldedLedger()


@pytest.fixture
def funded_wallet(ledger, golden_account) -> ShieldedWallet:
    """Wallet after entry and a deposit of 50 shares."""
    wallet = ShieldedWallet(golden_account, ledger)
    wallet.enter()
    wallet.deposit(50)
    return wallet
