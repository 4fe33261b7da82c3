"""
Fee-sponsored bundle submission and swap/burn call planning.

A bundle is an ordered list of contract calls executed atomically from the
user's smart account. BundleSubmitter hides how the bundle reaches the chain;
RelayBundleSubmitter posts it to an HTTP relay that sponsors the fees.
SwapPlanner turns tokens into the calls that convert or destroy them.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Dict, List, Optional

import requests

from .chains import ChainDescriptor
from .erc20 import (
    DEAD_ADDRESS,
    ZERO_ADDRESS,
    decode_address,
    decode_uint,
    encode_allowance,
    encode_approve,
    encode_get_pair,
    encode_swap_exact_eth,
    encode_swap_exact_tokens,
    encode_transfer,
)
from .errors import ExecutionFailure, UnsupportedChain
from .models import Token
from .rpc_client import RpcClient, _redact_url

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE = Decimal("0.5")  # percent
SWAP_DEADLINE_SECONDS = 300


@dataclass(frozen=True)
class BundleCall:
    to: str
    data: str = "0x"
    value: int = 0

    def to_dict(self) -> Dict[str, str]:
        return {"to": self.to, "data": self.data, "value": hex(self.value)}


@dataclass
class BundleReceipt:
    tx_hash: str
    gas_used: int = 0


class BundleSubmitter(ABC):
    @abstractmethod
    def submit_bundle(self, chain: ChainDescriptor, sender: str, calls: List[BundleCall]) -> BundleReceipt:
        """
        Submit calls as one bundle and wait for inclusion.

        Raises:
            ExecutionFailure: If the bundle was rejected or reverted
        """
        pass


class RelayBundleSubmitter(BundleSubmitter):
    """
    Submits bundles to a sponsoring relay over HTTP.

    Submission is not retried: a bundle that may already have been accepted
    must not be sent twice.
    """

    def __init__(
        self,
        relay_url: str,
        api_key: Optional[str] = None,
        sponsored: bool = True,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.relay_url = relay_url
        self.api_key = api_key
        self.sponsored = sponsored
        self.timeout = timeout
        self.session = session or requests.Session()

    def submit_bundle(self, chain: ChainDescriptor, sender: str, calls: List[BundleCall]) -> BundleReceipt:
        if not calls:
            raise ExecutionFailure("Refusing to submit an empty bundle")

        payload = {
            "chainId": chain.chain_id,
            "sender": sender,
            "calls": [call.to_dict() for call in calls],
            "sponsored": self.sponsored,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = self.session.post(self.relay_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            message = str(e).replace(self.relay_url, _redact_url(self.relay_url))
            raise ExecutionFailure(f"Bundle submission failed: {type(e).__name__}: {message}") from e

        if not response.ok:
            raise ExecutionFailure(f"Relay rejected bundle: HTTP {response.status_code} {response.text[:200]}")

        try:
            data = response.json()
            tx_hash = data["txHash"]
        except (ValueError, KeyError, TypeError) as e:
            raise ExecutionFailure("Relay returned no transaction hash") from e

        gas_used = 0 if self.sponsored else int(data.get("gasUsed") or 0)
        logger.info("[%s] Bundle of %d call(s) included in %s", chain.key, len(calls), tx_hash)
        return BundleReceipt(tx_hash=tx_hash, gas_used=gas_used)


@dataclass(frozen=True)
class SwapVenue:
    """Uniswap-V2-style router deployment and the asset swaps settle into."""

    router: str
    factory: str
    wrapped_native: str
    target: str
    target_decimals: int = 6


SWAP_VENUES: Dict[str, SwapVenue] = {
    "base": SwapVenue(
        router="0x4752ba5dbc23f44d87826276bf6fd6b1c372ad24",
        factory="0x8909dc15e40173ff4699343b6eb8132c65e18ec6",
        wrapped_native="0x4200000000000000000000000000000000000006",
        target="0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",  # USDC
    ),
    "ethereum": SwapVenue(
        router="0x7a250d5630b4cf539739df2c5dacb4c659f2488d",
        factory="0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f",
        wrapped_native="0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
        target="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",  # USDC
    ),
}


class SwapPlanner:
    """Builds swap and burn calls for one chain."""

    def __init__(
        self,
        client: RpcClient,
        chain: ChainDescriptor,
        venue: Optional[SwapVenue] = None,
        slippage: Decimal = DEFAULT_SLIPPAGE,
        clock: Callable[[], float] = time.time,
    ):
        if venue is None:
            venue = SWAP_VENUES.get(chain.key)
        if venue is None:
            raise UnsupportedChain(f"No swap venue configured for {chain.key}")
        self.client = client
        self.chain = chain
        self.venue = venue
        self.slippage = slippage
        self._clock = clock

    def has_direct_pool(self, token_a: str, token_b: str) -> bool:
        data = self.client.eth_call(self.chain, self.venue.factory, encode_get_pair(token_a, token_b))
        return decode_address(data) != ZERO_ADDRESS

    def route(self, token_address: str) -> List[str]:
        """Direct pool into the target asset if one exists, else through wrapped native."""
        token_address = token_address.lower()
        if token_address == self.venue.wrapped_native or self.has_direct_pool(token_address, self.venue.target):
            return [token_address, self.venue.target]
        return [token_address, self.venue.wrapped_native, self.venue.target]

    def min_amount_out(self, token: Token) -> int:
        """Expected target-asset output less slippage, in target base units."""
        expected = token.value_usd * (Decimal(1) - self.slippage / Decimal(100))
        scaled = expected * (Decimal(10) ** self.venue.target_decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))

    def allowance(self, owner: str, token_address: str) -> int:
        data = self.client.eth_call(self.chain, token_address, encode_allowance(owner, self.venue.router))
        return decode_uint(data)

    def swap_calls(self, owner: str, token: Token) -> List[BundleCall]:
        """Approval (only when the router allowance is short) plus the swap."""
        amount = int(token.balance)
        deadline = int(self._clock()) + SWAP_DEADLINE_SECONDS
        min_out = self.min_amount_out(token)

        if token.is_native:
            path = [self.venue.wrapped_native, self.venue.target]
            return [BundleCall(self.venue.router, encode_swap_exact_eth(min_out, path, owner, deadline), amount)]

        calls = []
        if self.allowance(owner, token.address) < amount:
            calls.append(BundleCall(token.address, encode_approve(self.venue.router, amount)))
        path = self.route(token.address)
        calls.append(
            BundleCall(self.venue.router, encode_swap_exact_tokens(amount, min_out, path, owner, deadline))
        )
        return calls

    def burn_calls(self, token: Token) -> List[BundleCall]:
        amount = int(token.balance)
        if token.is_native:
            return [BundleCall(DEAD_ADDRESS, "0x", amount)]
        return [BundleCall(token.address, encode_transfer(DEAD_ADDRESS, amount))]
