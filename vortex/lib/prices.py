"""
Unit prices for scanned assets.

Fetchers never price anything themselves; they ask an injected PriceOracle.
Production uses CoinGecko behind a short-lived price cache, tests use the
static table.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import requests

from .cache import ResultCache, price_key

logger = logging.getLogger(__name__)

DEFAULT_COINGECKO_URL = "https://api.coingecko.com/api/v3"
DEFAULT_PRICE_TTL = 60  # seconds

DEFAULT_PRICES: Dict[str, Decimal] = {
    "ETH": Decimal("2500"),
    "WETH": Decimal("2500"),
    "BNB": Decimal("300"),
    "MATIC": Decimal("0.8"),
    "AVAX": Decimal("35"),
    "SOL": Decimal("100"),
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
    "DAI": Decimal("1"),
}

# Symbol -> CoinGecko asset id
COINGECKO_IDS: Dict[str, str] = {
    "ETH": "ethereum",
    "WETH": "weth",
    "BNB": "binancecoin",
    "MATIC": "matic-network",
    "AVAX": "avalanche-2",
    "SOL": "solana",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
}


class PriceOracle(ABC):
    @abstractmethod
    def price(self, chain: str, symbol: str) -> Decimal:
        """Return the USD price of one unit of symbol on chain (0 if unknown)."""
        pass


class StaticPriceOracle(PriceOracle):
    """Fixed price table. Unknown symbols price at the default."""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None, default: Decimal = Decimal("0")):
        table = DEFAULT_PRICES if prices is None else prices
        self.prices = {symbol.upper(): Decimal(value) for symbol, value in table.items()}
        self.default = default

    def price(self, chain: str, symbol: str) -> Decimal:
        return self.prices.get(symbol.upper(), self.default)


class CoinGeckoPriceOracle(PriceOracle):
    """
    Spot prices from the CoinGecko simple-price endpoint.

    Pricing is best-effort: an unknown symbol or a failed lookup prices the
    asset at zero, which the classifier treats as a low-value holding.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_COINGECKO_URL,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        ids: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.ids = COINGECKO_IDS if ids is None else ids

    def price(self, chain: str, symbol: str) -> Decimal:
        asset_id = self.ids.get(symbol.upper())
        if asset_id is None:
            return Decimal("0")

        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else {}
        try:
            response = self.session.get(
                f"{self.base_url}/simple/price",
                params={"ids": asset_id, "vs_currencies": "usd"},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            value = response.json()[asset_id]["usd"]
            return Decimal(str(value))
        except (requests.RequestException, ValueError, KeyError, TypeError, InvalidOperation) as e:
            logger.warning("[%s] Price lookup for %s failed: %s", chain, symbol, e)
            return Decimal("0")


class CachedPriceOracle(PriceOracle):
    """Wrap another oracle with the price sub-cache."""

    def __init__(self, oracle: PriceOracle, cache: ResultCache, ttl: int = DEFAULT_PRICE_TTL):
        self.oracle = oracle
        self.cache = cache
        self.ttl = ttl

    def price(self, chain: str, symbol: str) -> Decimal:
        key = price_key(chain, symbol)
        cached = self.cache.get(key)
        if cached is not None:
            return Decimal(cached)
        value = self.oracle.price(chain, symbol)
        self.cache.set(key, str(value), self.ttl)
        return value
