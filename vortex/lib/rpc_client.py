"""
JSON-RPC client with automatic rate limit handling and retry logic.

This module provides a centralized client for chain RPC reads (EVM and
Solana), handling per-chain endpoints, 429/5xx retries with exponential
backoff, and conversion of transport failures into ChainUnavailable.
"""

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from .chains import EVM, SOLANA, ChainDescriptor
from .errors import ChainUnavailable, RpcResponseError

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_DELAY = 8.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 15.0  # seconds

SPL_TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def _redact_url(url: str) -> str:
    """Keep scheme and host only; RPC paths and queries often embed API keys."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}/[REDACTED]"


class RpcClient:
    """
    Centralized JSON-RPC client with automatic 429 retry handling.

    All chain reads go through this class, which handles:
    - Per-chain endpoint URLs (taken from the chain descriptor)
    - HTTP 429 and 5xx retries with exponential backoff and jitter
    - Timeouts, connection errors and malformed bodies as retryable failures
    - JSON-RPC error objects as non-retryable RpcResponseError
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the RPC client.

        Args:
            initial_delay: Initial delay in seconds for retry backoff
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize delays
            timeout: Per-request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
            sleep: Sleep function, replaceable in tests
        """
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def _sanitize_error_message(self, message: str, url: str) -> str:
        """Remove the endpoint path from error messages to prevent credential leakage."""
        return message.replace(url, _redact_url(url))

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _backoff(self, delay: float) -> float:
        self._sleep(self._apply_jitter(min(delay, self.max_delay)))
        return delay * self.backoff_multiplier

    def _execute_with_retry(
        self,
        chain: ChainDescriptor,
        request_func: Callable[[], requests.Response],
    ) -> Dict[str, Any]:
        """
        Execute a request function with retry logic for rate limits and server errors.

        Args:
            chain: Chain the request targets (used for error reporting)
            request_func: A callable that returns a requests.Response

        Returns:
            The decoded JSON body of the successful response

        Raises:
            ChainUnavailable: When retries are exhausted or the endpoint rejects us
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            retries_left = attempt < self.max_retries
            try:
                response = request_func()

                if response.status_code == 429 or response.status_code >= 500:
                    if retries_left:
                        logger.debug(
                            "[%s] HTTP %s, retrying (attempt %d)",
                            chain.key,
                            response.status_code,
                            attempt + 1,
                        )
                        delay = self._backoff(delay)
                        continue
                    message = (
                        "Rate limit exceeded and max retries reached"
                        if response.status_code == 429
                        else f"Server error: {response.status_code}"
                    )
                    raise ChainUnavailable(message, chain=chain.key, status_code=response.status_code)

                if response.status_code >= 400:
                    raise ChainUnavailable(
                        f"Endpoint rejected request: HTTP {response.status_code}",
                        chain=chain.key,
                        status_code=response.status_code,
                    )

                try:
                    return response.json()
                except ValueError:
                    if retries_left:
                        delay = self._backoff(delay)
                        continue
                    raise ChainUnavailable("Malformed response from endpoint", chain=chain.key)

            except requests.RequestException as e:
                if retries_left:
                    logger.debug("[%s] %s, retrying (attempt %d)", chain.key, type(e).__name__, attempt + 1)
                    delay = self._backoff(delay)
                    continue
                sanitized_msg = self._sanitize_error_message(str(e), chain.rpc_url)
                raise ChainUnavailable(f"Request failed: {sanitized_msg}", chain=chain.key) from e

        raise ChainUnavailable("Max retries exceeded", chain=chain.key)

    def _request(
        self,
        chain: ChainDescriptor,
        method: str,
        params: Any,
        request_id: int = 1,
    ) -> Any:
        """
        Make a JSON-RPC request with automatic retry and exponential backoff.

        Args:
            chain: Target chain
            method: JSON-RPC method name
            params: Method parameters
            request_id: JSON-RPC request ID

        Returns:
            The 'result' field from the JSON-RPC response

        Raises:
            ChainUnavailable: For transport failures after retries
            RpcResponseError: For JSON-RPC error objects
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }

        data = self._execute_with_retry(
            chain,
            lambda: self.session.post(chain.rpc_url, json=payload, timeout=self.timeout),
        )

        if not isinstance(data, dict):
            raise ChainUnavailable("Malformed response from endpoint", chain=chain.key)

        if "error" in data:
            error = data["error"] or {}
            raise RpcResponseError(
                f"RPC error: {error.get('message', str(error))}",
                code=error.get("code"),
            )

        if "result" not in data:
            raise ChainUnavailable("Response carried no result", chain=chain.key)

        return data["result"]

    def get_native_balance(self, chain: ChainDescriptor, wallet: str) -> int:
        """
        Get native asset balance (ETH, BNB, AVAX...) for an EVM wallet.

        Returns:
            Balance in wei (as integer)
        """
        if chain.family != EVM:
            raise ValueError(f"Use get_solana_balance for {chain.key}")

        result = self._request(chain, "eth_getBalance", [wallet, "latest"])
        return int(result, 16)

    def eth_call(self, chain: ChainDescriptor, to: str, data: str) -> str:
        """
        Execute a read-only contract call at the latest block.

        Returns:
            Hex-encoded return data
        """
        return self._request(chain, "eth_call", [{"to": to, "data": data}, "latest"])

    def get_solana_balance(self, chain: ChainDescriptor, wallet: str) -> int:
        """
        Get native SOL balance.

        Returns:
            Balance in lamports
        """
        if chain.family != SOLANA:
            raise ValueError(f"Use get_native_balance for {chain.key}")

        result = self._request(chain, "getBalance", [wallet])
        return int(result.get("value", 0))

    def get_token_accounts_by_owner(
        self,
        chain: ChainDescriptor,
        owner: str,
        program_id: str = SPL_TOKEN_PROGRAM_ID,
    ) -> List[Dict[str, Any]]:
        """
        List fungible-token accounts owned by a Solana wallet.

        Returns:
            Parsed account entries as returned by the node (jsonParsed encoding)
        """
        if chain.family != SOLANA:
            raise ValueError(f"Token accounts are only indexed on Solana, not {chain.key}")

        result = self._request(
            chain,
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed"}],
        )
        return result.get("value", [])
