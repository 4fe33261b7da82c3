"""
Pytest configuration and shared fixtures for vortex tests.
"""

from decimal import Decimal

import pytest

from vortex.lib.cache import MemoryCacheBackend, ResultCache
from vortex.lib.chains import CHAINS
from vortex.lib.models import Category, Token
from vortex.lib.prices import StaticPriceOracle


class FakeClock:
    """Manually advanced clock for TTL and timestamp tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_wallet_address():
    """Sample Ethereum wallet address for testing."""
    return "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"  # vitalik.eth


@pytest.fixture
def sample_solana_address():
    """Sample Solana wallet address for testing."""
    return "GKvqsuNcnwWqPzzuhLmGi4rzzh55FhJtGizkhHaEJqiV"


@pytest.fixture
def base_chain():
    return CHAINS["base"]


@pytest.fixture
def ethereum_chain():
    return CHAINS["ethereum"]


@pytest.fixture
def solana_chain():
    return CHAINS["solana"]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays instead of waiting."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def memory_cache(fake_clock):
    return ResultCache(MemoryCacheBackend(clock=fake_clock), default_ttl=300, name="test")


@pytest.fixture
def static_prices():
    return StaticPriceOracle()


@pytest.fixture
def make_token():
    """Factory for tokens with sensible defaults; value is balance x price."""

    def _make(
        symbol="TEST",
        chain="base",
        address="0x1234567890abcdef1234567890abcdef12345678",
        balance="1",
        price="1",
        category=Category.DUST,
        decimals=18,
        **overrides,
    ):
        balance_formatted = Decimal(balance)
        raw = int(balance_formatted * (Decimal(10) ** decimals))
        token = Token(
            chain=chain,
            address=address,
            symbol=symbol,
            name=f"{symbol} Token",
            decimals=decimals,
            balance=str(raw),
            balance_formatted=balance_formatted,
            price_usd=Decimal(price),
            category=category,
        )
        for name, value in overrides.items():
            setattr(token, name, value)
        return token

    return _make
