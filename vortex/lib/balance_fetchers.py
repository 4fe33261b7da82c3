"""
Balance fetchers for discovering token holdings on different blockchains.

This module provides chain-family-specific fetchers that use the RpcClient to
read balances and convert them to the unified Token model. Fetchers only
discover and price holdings: every token they return carries placeholder
classification (DUST, risk 0) that enrichment and the classifier overwrite.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from eth_abi.exceptions import DecodingError

from .chains import EVM, SOLANA, ChainDescriptor
from .erc20 import (
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    decode_aggregate,
    decode_string,
    decode_uint,
    encode_aggregate,
    encode_balance_of,
)
from .errors import ChainUnavailable, RpcResponseError, UnsupportedChain
from .models import NATIVE_ADDRESS, Category, Token
from .prices import PriceOracle
from .rpc_client import RpcClient

logger = logging.getLogger(__name__)

# Errors that make a single read unusable without saying anything about the chain
READ_ERRORS = (ChainUnavailable, RpcResponseError, DecodingError, OverflowError)

# Statically known fungible tokens per EVM chain
KNOWN_TOKENS: Dict[str, List[str]] = {
    "base": [
        "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",  # USDC
        "0x50c5725949a6f0c72e6c4a641f24049a917db0cb",  # DAI
        "0x4200000000000000000000000000000000000006",  # WETH
    ],
    "ethereum": [
        "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",  # USDC
        "0xdac17f958d2ee523a2206206994597c13d831ec7",  # USDT
        "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",  # WETH
    ],
    "bsc": [
        "0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d",  # USDC
        "0x55d398326f99059ff775485246999027b3197955",  # USDT
        "0x2170ed0880ac9a755fd29b2688956bd959f933f8",  # ETH
    ],
    "arbitrum": [
        "0xaf88d065e77c8cc2239327c5edb3a432268e5831",  # USDC
        "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9",  # USDT
        "0x82af49447d8a07e3bd95bd0d56f35241523fbab1",  # WETH
    ],
    "polygon": [
        "0x2791bca1f2de4661ed88a30c99a7a9449aa84174",  # USDC
        "0xc2132d05d31c914a87c6611c10748aeb04b58e8f",  # USDT
        "0x7ceb23fd6fc0dd61e6cf23aeca94d4e62b41e2ba",  # WETH
    ],
    "optimism": [
        "0x7f5c764cbc14f9669b88837ca1490cca17c31607",  # USDC
        "0x94b008aa00579c1307b0ef2c499ad98a8ce58e58",  # USDT
        "0x4200000000000000000000000000000000000006",  # WETH
    ],
    "avalanche": [
        "0xb97ef9ef8734c71904d8002f8b6bc66dd9c48a6e",  # USDC
        "0x9702230a8ea53601f5cd2dc00fdbc13d4df4a8c7",  # USDT
        "0x49d5c2bdffac6ce2bfdb6640f4f80f226bc10bab",  # WETH
    ],
}

# Well-known SPL mints: mint -> (symbol, name)
KNOWN_SPL_TOKENS: Dict[str, Tuple[str, str]] = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", "USD Coin"),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "Tether USD"),
}

UNKNOWN_SYMBOL = "UNKNOWN"
UNKNOWN_NAME = "Unknown Token"


def format_quantity(raw_balance: int, decimals: int) -> str:
    """
    Format balance with full precision, trimming trailing zeros.

    Args:
        raw_balance: Raw balance value (in smallest unit)
        decimals: Number of decimal places

    Returns:
        Formatted balance string with trailing zeros trimmed

    Examples:
        format_quantity(1000000, 6) -> "1"
        format_quantity(1500000, 6) -> "1.5"
        format_quantity(1234567890123456789, 18) -> "1.234567890123456789"
    """
    if raw_balance == 0:
        return "0"

    if decimals == 0:
        return str(raw_balance)

    balance = Decimal(raw_balance) / Decimal(10**decimals)
    formatted = format(balance, "f")

    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")

    return formatted


class BaseBalanceFetcher(ABC):
    """
    Abstract base class for balance fetchers.

    Provides token construction shared by all chain families and defines
    the fetch interface.
    """

    family: str = ""

    def __init__(self, client: RpcClient, prices: PriceOracle):
        """
        Initialize the fetcher.

        Args:
            client: RpcClient instance for chain reads
            prices: Oracle used to price every discovered holding
        """
        self.client = client
        self.prices = prices

    @abstractmethod
    def fetch(self, address: str, chain: ChainDescriptor) -> List[Token]:
        """
        Discover all non-zero fungible holdings of address on chain.

        Raises:
            ChainUnavailable: If the chain cannot be reached after the client's retries
            UnsupportedChain: If the chain belongs to another family
        """
        pass

    def _check_family(self, chain: ChainDescriptor) -> None:
        if chain.family != self.family:
            raise UnsupportedChain(f"{type(self).__name__} cannot fetch {chain.key} ({chain.family})")

    def _create_token(
        self,
        chain: ChainDescriptor,
        address: str,
        symbol: str,
        name: str,
        decimals: int,
        raw_balance: int,
        verified: bool = False,
    ) -> Token:
        return Token(
            chain=chain.key,
            address=address,
            symbol=symbol,
            name=name,
            decimals=decimals,
            balance=str(raw_balance),
            balance_formatted=Decimal(format_quantity(raw_balance, decimals)),
            price_usd=self.prices.price(chain.key, symbol),
            risk_score=0,
            verified=verified,
            category=Category.DUST,
        )

    def _create_native_token(self, chain: ChainDescriptor, raw_balance: int, name: str) -> Token:
        # Native assets have no contract to audit
        return self._create_token(
            chain,
            address=NATIVE_ADDRESS,
            symbol=chain.symbol,
            name=name,
            decimals=chain.native_decimals,
            raw_balance=raw_balance,
            verified=True,
        )


class EVMBalanceFetcher(BaseBalanceFetcher):
    """
    Fetcher for EVM-compatible chains.

    Reads the native balance, then the balances of the chain's known ERC-20
    contracts in one Multicall3 aggregate() when the chain has a multicall
    contract, falling back to one balanceOf per token otherwise.
    """

    family = EVM

    def __init__(
        self,
        client: RpcClient,
        prices: PriceOracle,
        known_tokens: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__(client, prices)
        self.known_tokens = KNOWN_TOKENS if known_tokens is None else known_tokens

    def fetch(self, address: str, chain: ChainDescriptor) -> List[Token]:
        self._check_family(chain)
        tokens: List[Token] = []

        native_balance = self.client.get_native_balance(chain, address)
        if native_balance > 0:
            tokens.append(self._create_native_token(chain, native_balance, chain.symbol))

        contracts = self.known_tokens.get(chain.key, [])
        balances: Optional[List[Tuple[str, int]]] = None
        skipped_tokens = 0

        if chain.multicall and contracts:
            try:
                balances = self._multicall_balances(chain, address, contracts)
            except READ_ERRORS as e:
                logger.warning("[%s] Multicall failed, falling back to individual calls: %s", chain.key, e)

        if balances is None:
            balances, skipped_tokens = self._sequential_balances(chain, address, contracts)

        for contract, raw_balance in balances:
            try:
                tokens.append(self._create_erc20_token(chain, contract, raw_balance))
            except READ_ERRORS:
                skipped_tokens += 1

        if skipped_tokens > 0:
            logger.warning("[%s] Skipped %d token(s) due to read failures", chain.key, skipped_tokens)

        return tokens

    def _multicall_balances(
        self, chain: ChainDescriptor, address: str, contracts: Sequence[str]
    ) -> List[Tuple[str, int]]:
        """Return (contract, balance) for every known contract with a non-zero balance."""
        call_data = encode_balance_of(address)
        aggregate = encode_aggregate([(contract, call_data) for contract in contracts])
        _, return_data = decode_aggregate(self.client.eth_call(chain, chain.multicall, aggregate))

        balances = []
        for contract, data in zip(contracts, return_data):
            if not data:
                continue
            balance = decode_uint(data)
            if balance > 0:
                balances.append((contract, balance))
        return balances

    def _sequential_balances(
        self, chain: ChainDescriptor, address: str, contracts: Sequence[str]
    ) -> Tuple[List[Tuple[str, int]], int]:
        """One balanceOf per contract. Returns non-zero balances and the number of failed reads."""
        balances = []
        failed = 0
        call_data = encode_balance_of(address)
        for contract in contracts:
            try:
                balance = decode_uint(self.client.eth_call(chain, contract, call_data))
            except READ_ERRORS:
                failed += 1
                continue
            if balance > 0:
                balances.append((contract, balance))
        return balances, failed

    def _create_erc20_token(self, chain: ChainDescriptor, contract: str, raw_balance: int) -> Token:
        # Decimals are required; symbol and name degrade to placeholders
        decimals = decode_uint(self.client.eth_call(chain, contract, DECIMALS_SELECTOR))
        symbol = self._read_string(chain, contract, SYMBOL_SELECTOR, UNKNOWN_SYMBOL)
        name = self._read_string(chain, contract, NAME_SELECTOR, UNKNOWN_NAME)
        return self._create_token(chain, contract, symbol, name, decimals, raw_balance)

    def _read_string(self, chain: ChainDescriptor, contract: str, selector: str, default: str) -> str:
        try:
            return decode_string(self.client.eth_call(chain, contract, selector)) or default
        except READ_ERRORS:
            return default


class SolanaBalanceFetcher(BaseBalanceFetcher):
    """
    Fetcher for Solana.

    Reads the native SOL balance and enumerates SPL token accounts owned by
    the wallet through the token program's account index.
    """

    family = SOLANA

    def __init__(
        self,
        client: RpcClient,
        prices: PriceOracle,
        known_mints: Optional[Dict[str, Tuple[str, str]]] = None,
    ):
        super().__init__(client, prices)
        self.known_mints = KNOWN_SPL_TOKENS if known_mints is None else known_mints

    def fetch(self, address: str, chain: ChainDescriptor) -> List[Token]:
        self._check_family(chain)
        tokens: List[Token] = []

        lamports = self.client.get_solana_balance(chain, address)
        if lamports > 0:
            tokens.append(self._create_native_token(chain, lamports, chain.name))

        skipped_tokens = 0
        for account in self.client.get_token_accounts_by_owner(chain, address):
            info = account.get("account", {}).get("data", {}).get("parsed", {}).get("info")
            if not info:
                continue

            token_amount = info.get("tokenAmount") or {}
            try:
                raw_balance = int(token_amount.get("amount", "0"))
                decimals = int(token_amount.get("decimals", 0))
                mint = info["mint"]
            except (KeyError, TypeError, ValueError):
                skipped_tokens += 1
                continue
            if raw_balance == 0:
                continue

            symbol, name = self.known_mints.get(mint, (UNKNOWN_SYMBOL, UNKNOWN_NAME))
            tokens.append(
                self._create_token(
                    chain,
                    address=mint,
                    symbol=symbol,
                    name=name,
                    decimals=decimals,
                    raw_balance=raw_balance,
                )
            )

        if skipped_tokens > 0:
            logger.warning("[%s] Skipped %d token account(s) due to read failures", chain.key, skipped_tokens)
        return tokens


def create_fetcher(client: RpcClient, prices: PriceOracle, chain: ChainDescriptor) -> BaseBalanceFetcher:
    """
    Factory function to create the appropriate fetcher for a chain.

    Args:
        client: RpcClient instance
        prices: PriceOracle used to value holdings
        chain: Chain descriptor

    Returns:
        Fetcher for the chain's family

    Raises:
        UnsupportedChain: If the chain family has no fetcher
    """
    if chain.family == EVM:
        return EVMBalanceFetcher(client, prices)
    elif chain.family == SOLANA:
        return SolanaBalanceFetcher(client, prices)
    else:
        raise UnsupportedChain(f"Unsupported chain family: {chain.family}")
