"""
Data models for wallet scanning and remediation.

This module defines the Token model produced by the balance fetchers, the
per-chain scan status, the aggregated ScanResult and the result shapes of
batch actions. Category and allowed actions travel together: a token's
allowed actions are always derived from its category through ACTION_MATRIX.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .chains import normalize_address

# Sentinel contract address for a chain's native asset
NATIVE_ADDRESS = "native"

# CSV column order for output
CSV_COLUMNS = [
    "chain",
    "symbol",
    "name",
    "address",
    "balance",
    "price_usd",
    "value_usd",
    "risk_score",
    "category",
    "allowed_actions",
]


class Category(str, Enum):
    PREMIUM = "PREMIUM"
    DUST = "DUST"
    MICRO = "MICRO"
    RISK = "RISK"


class Action(str, Enum):
    HOLD = "HOLD"
    SWAP = "SWAP"
    HIDE = "HIDE"
    BURN = "BURN"


class ChainStatus(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


# Category -> legal actions. Total over Category.
ACTION_MATRIX: Dict[Category, Tuple[Action, ...]] = {
    Category.PREMIUM: (Action.HOLD, Action.SWAP),
    Category.DUST: (Action.SWAP, Action.HIDE),
    Category.MICRO: (Action.HIDE, Action.BURN),
    Category.RISK: (Action.HIDE,),
}


def format_decimal(value: Decimal) -> str:
    """Render a Decimal without exponent notation or trailing zeros."""
    formatted = format(value, "f")
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return formatted or "0"


@dataclass
class Token:
    """
    One fungible holding of a scanned address on one chain.

    Fetchers create tokens with placeholder classification (DUST, risk 0);
    enrichment fills in the risk fields and the classifier sets the final
    category. Value is always derived from balance and price.
    """

    chain: str
    address: str  # Contract / mint address, or NATIVE_ADDRESS
    symbol: str
    name: str
    decimals: int
    balance: str  # Raw integer balance in smallest units
    balance_formatted: Decimal
    price_usd: Decimal = Decimal("0")
    risk_score: int = 0
    is_honeypot: bool = False
    is_rugpull: bool = False
    verified: bool = False
    liquidity: Decimal = Decimal("0")
    holders: int = 0
    category: Category = Category.DUST

    @property
    def value_usd(self) -> Decimal:
        return self.balance_formatted * self.price_usd

    @property
    def allowed_actions(self) -> Tuple[Action, ...]:
        return ACTION_MATRIX[self.category]

    @property
    def is_native(self) -> bool:
        return self.address == NATIVE_ADDRESS

    @property
    def key(self) -> str:
        """Stable "chain:address" identity used for the hidden-token set."""
        return f"{self.chain}:{normalize_address(self.address)}"

    def to_csv_row(self) -> List[str]:
        """Convert token to a CSV row (list of strings)."""
        return [
            self.chain,
            self.symbol,
            self.name,
            self.address,
            format_decimal(self.balance_formatted),
            format_decimal(self.price_usd),
            format_decimal(self.value_usd),
            str(self.risk_score),
            self.category.value,
            " ".join(action.value for action in self.allowed_actions),
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain,
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "balance": self.balance,
            "balance_formatted": str(self.balance_formatted),
            "price_usd": str(self.price_usd),
            "value_usd": str(self.value_usd),
            "risk_score": self.risk_score,
            "is_honeypot": self.is_honeypot,
            "is_rugpull": self.is_rugpull,
            "verified": self.verified,
            "liquidity": str(self.liquidity),
            "holders": self.holders,
            "category": self.category.value,
            "allowed_actions": [action.value for action in self.allowed_actions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        return cls(
            chain=data["chain"],
            address=data["address"],
            symbol=data["symbol"],
            name=data["name"],
            decimals=int(data["decimals"]),
            balance=str(data["balance"]),
            balance_formatted=Decimal(data["balance_formatted"]),
            price_usd=Decimal(data["price_usd"]),
            risk_score=int(data["risk_score"]),
            is_honeypot=bool(data["is_honeypot"]),
            is_rugpull=bool(data["is_rugpull"]),
            verified=bool(data["verified"]),
            liquidity=Decimal(data["liquidity"]),
            holders=int(data["holders"]),
            category=Category(data["category"]),
        )


@dataclass
class ChainScanStatus:
    """Progress of one chain within one scan. Never reused across scans."""

    chain: str
    status: ChainStatus = ChainStatus.PENDING
    tokens_found: int = 0
    error: Optional[str] = None
    progress: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (ChainStatus.COMPLETE, ChainStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain,
            "status": self.status.value,
            "tokens_found": self.tokens_found,
            "error": self.error,
            "progress": self.progress,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainScanStatus":
        return cls(
            chain=data["chain"],
            status=ChainStatus(data["status"]),
            tokens_found=int(data["tokens_found"]),
            error=data.get("error"),
            progress=int(data["progress"]),
        )


@dataclass
class CategorySummary:
    count: int = 0
    value: Decimal = Decimal("0")
    tokens: List[Token] = field(default_factory=list)

    def add(self, token: Token) -> None:
        self.count += 1
        self.value += token.value_usd
        self.tokens.append(token)


@dataclass
class ScanSummary:
    """Per-category counts and USD totals for one scan."""

    premium: CategorySummary = field(default_factory=CategorySummary)
    dust: CategorySummary = field(default_factory=CategorySummary)
    micro: CategorySummary = field(default_factory=CategorySummary)
    risk: CategorySummary = field(default_factory=CategorySummary)
    total_value: Decimal = Decimal("0")
    total_tokens: int = 0

    def for_category(self, category: Category) -> CategorySummary:
        return getattr(self, category.value.lower())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "total_value": str(self.total_value),
            "total_tokens": self.total_tokens,
        }
        for category in Category:
            bucket = self.for_category(category)
            data[category.value.lower()] = {
                "count": bucket.count,
                "value": str(bucket.value),
            }
        return data


@dataclass
class ScanResult:
    """
    Result of scanning one address across all selected chains.

    Partial success is normal: some chains may be in error while others
    completed.
    """

    address: str
    timestamp: float
    chains: List[ChainScanStatus]
    tokens: List[Token]
    summary: ScanSummary
    from_cache: bool = False
    cache_expiry: Optional[float] = None

    def chain_status(self, chain: str) -> Optional[ChainScanStatus]:
        for status in self.chains:
            if status.chain == chain:
                return status
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "timestamp": self.timestamp,
            "chains": [status.to_dict() for status in self.chains],
            "tokens": [token.to_dict() for token in self.tokens],
            "summary": self.summary.to_dict(),
            "from_cache": self.from_cache,
            "cache_expiry": self.cache_expiry,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanResult":
        tokens = [Token.from_dict(item) for item in data["tokens"]]
        summary = ScanSummary(total_tokens=len(tokens))
        for token in tokens:
            summary.for_category(token.category).add(token)
            summary.total_value += token.value_usd
        return cls(
            address=data["address"],
            timestamp=float(data["timestamp"]),
            chains=[ChainScanStatus.from_dict(item) for item in data["chains"]],
            tokens=tokens,
            summary=summary,
            from_cache=bool(data.get("from_cache", False)),
            cache_expiry=data.get("cache_expiry"),
        )


@dataclass
class ValidationResult:
    """
    Outcome of checking a proposed batch action against the action matrix.

    reasons[i] explains why invalid_tokens[i] was rejected.
    """

    action: Action
    eligible_tokens: List[Token] = field(default_factory=list)
    invalid_tokens: List[Token] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.eligible_tokens) > 0 and len(self.invalid_tokens) == 0


@dataclass
class BatchActionResult:
    success: bool
    tokens_processed: int = 0
    total_value_saved: Decimal = Decimal("0")
    gas_used: int = 0  # Zero when the bundle is fee-sponsored
    tx_ref: Optional[str] = None
    error: Optional[str] = None
