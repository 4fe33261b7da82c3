"""
Token security enrichment backed by the GoPlus token-security API.

GoPlusClient fetches the raw flag map for one (chain, contract) pair with
bounded retry; parse_security_result turns that map into a 0-100 risk score
and the list of findings that produced it. TokenEnricher adds the per-token
risk sub-cache and decides which tokens are worth looking up at all.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from .cache import ResultCache, risk_key
from .errors import EnrichmentError, UnsupportedChain
from .models import Token

logger = logging.getLogger(__name__)

DEFAULT_GOPLUS_URL = "https://api.gopluslabs.io/api/v1"
DEFAULT_RISK_TTL = 3600  # seconds
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_UNIT = 1.0  # seconds, multiplied by the attempt number

# Registry key -> GoPlus chain id
GOPLUS_CHAIN_IDS: Dict[str, str] = {
    "ethereum": "1",
    "base": "8453",
    "arbitrum": "42161",
    "optimism": "10",
    "polygon": "137",
    "bsc": "56",
    "avalanche": "43114",
}


class RiskLevel(str, Enum):
    SAFE = "SAFE"
    WARNING = "WARNING"
    DANGER = "DANGER"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RiskCheck:
    """
    One finding about a token contract.

    Failed checks carry the weight they added to the risk score; passed
    checks are informational and weigh nothing.
    """

    name: str
    description: str
    passed: bool
    severity: Severity
    weight: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "passed": self.passed,
            "severity": self.severity.value,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskCheck":
        return cls(
            name=data["name"],
            description=data["description"],
            passed=bool(data["passed"]),
            severity=Severity(data["severity"]),
            weight=int(data.get("weight", 0)),
        )


@dataclass
class SecurityResult:
    risk_score: int
    risk_level: RiskLevel
    safe: bool
    honeypot: bool
    rugpull: bool
    transferability: bool
    risks: List[RiskCheck] = field(default_factory=list)
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    holders: int = 0
    liquidity: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "safe": self.safe,
            "honeypot": self.honeypot,
            "rugpull": self.rugpull,
            "transferability": self.transferability,
            "risks": [check.to_dict() for check in self.risks],
            "token_name": self.token_name,
            "token_symbol": self.token_symbol,
            "holders": self.holders,
            "liquidity": str(self.liquidity),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityResult":
        return cls(
            risk_score=int(data["risk_score"]),
            risk_level=RiskLevel(data["risk_level"]),
            safe=bool(data["safe"]),
            honeypot=bool(data["honeypot"]),
            rugpull=bool(data["rugpull"]),
            transferability=bool(data["transferability"]),
            risks=[RiskCheck.from_dict(item) for item in data.get("risks", [])],
            token_name=data.get("token_name"),
            token_symbol=data.get("token_symbol"),
            holders=int(data.get("holders", 0)),
            liquidity=Decimal(data.get("liquidity", "0")),
        )


def _is_truthy(value: Any) -> bool:
    return value in ("1", "true", 1, True)


def _is_falsy(value: Any) -> bool:
    return value in ("0", "false", 0, False)


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def risk_level_for(score: int) -> RiskLevel:
    """SAFE up to 20, WARNING up to 50, DANGER above."""
    if score <= 20:
        return RiskLevel.SAFE
    if score <= 50:
        return RiskLevel.WARNING
    return RiskLevel.DANGER


def parse_security_result(data: Dict[str, Any]) -> SecurityResult:
    """
    Score a GoPlus token_security entry.

    Scoring is additive over independent rules; every rule that adds to the
    score also records a failed RiskCheck carrying that weight, so the score
    always equals the clamped sum of failed-check weights.

    Args:
        data: The per-contract object from the GoPlus result map

    Returns:
        SecurityResult with score, level, derived flags and findings
    """
    risks: List[RiskCheck] = []

    def fail(name: str, description: str, severity: Severity, weight: int) -> None:
        risks.append(RiskCheck(name, description, False, severity, weight))

    def ok(name: str, description: str) -> None:
        risks.append(RiskCheck(name, description, True, Severity.LOW))

    if _is_truthy(data.get("is_honeypot")):
        fail("Honeypot Detected", "This token cannot be sold after purchase", Severity.CRITICAL, 40)
    elif _is_falsy(data.get("is_honeypot")):
        ok("Not a Honeypot", "Token can be freely bought and sold")

    if _is_falsy(data.get("is_open_source")):
        fail("Not Open Source", "Contract source code is not verified", Severity.HIGH, 15)
    else:
        ok("Open Source", "Contract source code is verified")

    if _is_truthy(data.get("is_mintable")):
        fail("Mintable Token", "New tokens can be minted by owner", Severity.HIGH, 20)

    if _is_truthy(data.get("owner_change_balance")):
        fail("Owner Can Modify Balances", "Token owner can change holder balances", Severity.CRITICAL, 25)

    if _is_truthy(data.get("hidden_owner")):
        fail("Hidden Owner", "Contract has a hidden owner mechanism", Severity.HIGH, 15)

    if _is_truthy(data.get("selfdestruct")):
        fail("Self Destruct", "Contract can be destroyed by owner", Severity.CRITICAL, 30)

    buy_tax = _to_decimal(data.get("buy_tax"))
    sell_tax = _to_decimal(data.get("sell_tax"))
    tax_description = f"Buy tax: {buy_tax * 100:.1f}%, Sell tax: {sell_tax * 100:.1f}%"
    if buy_tax + sell_tax > Decimal("0.1"):
        fail("High Tax", tax_description, Severity.MEDIUM, 10)
    elif buy_tax > 0 or sell_tax > 0:
        ok("Transaction Tax", tax_description)

    if _is_truthy(data.get("cannot_sell_all")):
        fail("Cannot Sell All", "Token prevents selling full balance", Severity.HIGH, 20)

    if _is_truthy(data.get("transfer_pausable")):
        fail("Transfer Pausable", "Token transfers can be paused", Severity.MEDIUM, 10)

    if _is_truthy(data.get("is_blacklisted")):
        fail("Blacklist Function", "Contract can blacklist addresses", Severity.MEDIUM, 10)

    if _is_truthy(data.get("is_in_dex")):
        ok("Listed on DEX", "Token is tradeable on decentralized exchanges")
    elif _is_falsy(data.get("is_in_dex")):
        fail("Not on DEX", "Token is not listed on known DEXes", Severity.LOW, 5)

    risk_score = max(0, min(100, sum(check.weight for check in risks)))
    risk_level = risk_level_for(risk_score)

    liquidity = sum((_to_decimal(pool.get("liquidity")) for pool in data.get("dex") or []), Decimal("0"))
    try:
        holders = int(data.get("holder_count") or 0)
    except (TypeError, ValueError):
        holders = 0

    return SecurityResult(
        risk_score=risk_score,
        risk_level=risk_level,
        safe=risk_level == RiskLevel.SAFE,
        honeypot=_is_truthy(data.get("is_honeypot")),
        rugpull=_is_truthy(data.get("owner_change_balance")) or _is_truthy(data.get("selfdestruct")),
        transferability=not _is_truthy(data.get("cannot_buy")) and not _is_truthy(data.get("cannot_sell_all")),
        risks=risks,
        token_name=data.get("token_name"),
        token_symbol=data.get("token_symbol"),
        holders=holders,
        liquidity=liquidity,
    )


def apply_security(token: Token, result: SecurityResult) -> None:
    """Copy risk data onto a token. Category is left to the classifier."""
    token.risk_score = result.risk_score
    token.is_honeypot = result.honeypot
    token.is_rugpull = result.rugpull
    token.verified = result.safe
    if result.holders:
        token.holders = result.holders
    if result.liquidity:
        token.liquidity = result.liquidity


class GoPlusClient:
    """
    Client for the GoPlus token_security endpoint.

    Transport errors, non-2xx responses and envelopes with a non-success code
    are retried with linear backoff (attempt x backoff_unit seconds). A
    successful envelope that does not mention the queried contract means the
    token is unknown and yields None.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_GOPLUS_URL,
        api_key: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_unit: float = DEFAULT_BACKOFF_UNIT,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.backoff_unit = backoff_unit
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    def supports(self, chain: str) -> bool:
        return chain.lower() in GOPLUS_CHAIN_IDS

    def fetch_token_security(self, token_address: str, chain: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the raw security entry for one contract.

        Raises:
            UnsupportedChain: If GoPlus has no id for the chain
            EnrichmentError: After all attempts failed
        """
        chain_id = GOPLUS_CHAIN_IDS.get(chain.lower())
        if chain_id is None:
            raise UnsupportedChain(f"Unsupported chain for security lookups: {chain}")

        url = f"{self.base_url}/token_security/{chain_id}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = self.api_key

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.get(
                    url,
                    params={"contract_addresses": token_address},
                    headers=headers,
                    timeout=self.timeout,
                )
                if not response.ok:
                    raise EnrichmentError(f"HTTP {response.status_code}")

                data = response.json()
                if not isinstance(data, dict):
                    raise EnrichmentError("Malformed response")
                if data.get("code") != 1:
                    raise EnrichmentError(data.get("message") or "GoPlus API error")

                return (data.get("result") or {}).get(token_address.lower())

            except (requests.RequestException, ValueError, EnrichmentError) as e:
                last_error = e
                if attempt < self.max_attempts:
                    logger.debug("[%s] Security lookup for %s failed (%s), retrying", chain, token_address, e)
                    self._sleep(attempt * self.backoff_unit)

        raise EnrichmentError(
            f"Failed to fetch token security after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def fetch_security(self, token_address: str, chain: str) -> Optional[SecurityResult]:
        data = self.fetch_token_security(token_address, chain)
        if data is None:
            return None
        return parse_security_result(data)


class TokenEnricher:
    """Decides which tokens to look up and serves lookups from the risk sub-cache."""

    def __init__(
        self,
        client: GoPlusClient,
        cache: Optional[ResultCache] = None,
        ttl: int = DEFAULT_RISK_TTL,
    ):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    def should_enrich(self, token: Token) -> bool:
        if token.is_native or not self.client.supports(token.chain):
            return False
        # Already carries risk data
        return not (token.risk_score > 0 or token.is_honeypot or token.is_rugpull)

    def lookup(self, token: Token) -> Optional[SecurityResult]:
        """
        Security result for a token, or None if the provider does not know it.

        Raises:
            EnrichmentError: If the provider could not be reached
        """
        key = risk_key(token.chain, token.address)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                try:
                    return SecurityResult.from_dict(cached)
                except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                    logger.warning("Ignoring unreadable risk entry %s: %s", key, e)

        result = self.client.fetch_security(token.address, token.chain)
        if result is not None and self.cache is not None:
            self.cache.set(key, result.to_dict(), self.ttl)
        return result
