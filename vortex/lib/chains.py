"""
Static registry of supported networks.

Descriptors are loaded once and never mutated. RPC overrides produce a
new registry rather than editing the default one.
"""

import dataclasses
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from .errors import UnsupportedChain

EVM = "evm"
SOLANA = "solana"

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BASE58_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass(frozen=True)
class ChainDescriptor:
    """One supported network."""

    key: str  # Registry key, lowercase (base, ethereum, solana, ...)
    chain_id: Union[int, str]
    name: str
    symbol: str  # Native asset symbol
    rpc_url: str
    explorer: str = ""
    multicall: Optional[str] = None
    is_reference: bool = False
    family: str = EVM
    native_decimals: int = 18


CHAINS: Dict[str, ChainDescriptor] = {
    "base": ChainDescriptor(
        key="base",
        chain_id=8453,
        name="Base",
        symbol="ETH",
        rpc_url="https://mainnet.base.org",
        explorer="https://basescan.org",
        multicall=MULTICALL3_ADDRESS,
        is_reference=True,
    ),
    "ethereum": ChainDescriptor(
        key="ethereum",
        chain_id=1,
        name="Ethereum",
        symbol="ETH",
        rpc_url="https://eth.llamarpc.com",
        explorer="https://etherscan.io",
        multicall=MULTICALL3_ADDRESS,
    ),
    "bsc": ChainDescriptor(
        key="bsc",
        chain_id=56,
        name="BNB Chain",
        symbol="BNB",
        rpc_url="https://bsc-dataseed1.binance.org",
        explorer="https://bscscan.com",
        multicall=MULTICALL3_ADDRESS,
    ),
    "arbitrum": ChainDescriptor(
        key="arbitrum",
        chain_id=42161,
        name="Arbitrum One",
        symbol="ETH",
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer="https://arbiscan.io",
        multicall=MULTICALL3_ADDRESS,
    ),
    "polygon": ChainDescriptor(
        key="polygon",
        chain_id=137,
        name="Polygon",
        symbol="MATIC",
        rpc_url="https://polygon-rpc.com",
        explorer="https://polygonscan.com",
        multicall=MULTICALL3_ADDRESS,
    ),
    "optimism": ChainDescriptor(
        key="optimism",
        chain_id=10,
        name="Optimism",
        symbol="ETH",
        rpc_url="https://mainnet.optimism.io",
        explorer="https://optimistic.etherscan.io",
        multicall=MULTICALL3_ADDRESS,
    ),
    "avalanche": ChainDescriptor(
        key="avalanche",
        chain_id=43114,
        name="Avalanche",
        symbol="AVAX",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        explorer="https://snowtrace.io",
        multicall=MULTICALL3_ADDRESS,
    ),
    "solana": ChainDescriptor(
        key="solana",
        chain_id="solana",
        name="Solana",
        symbol="SOL",
        rpc_url="https://api.mainnet-beta.solana.com",
        explorer="https://solscan.io",
        family=SOLANA,
        native_decimals=9,
    ),
}

SUPPORTED_CHAINS: List[str] = list(CHAINS)


def get_chain(key: str, chains: Optional[Dict[str, ChainDescriptor]] = None) -> ChainDescriptor:
    """
    Look up a chain by registry key (case-insensitive).

    Raises:
        UnsupportedChain: If the key is not configured
    """
    registry = CHAINS if chains is None else chains
    chain = registry.get(key.lower())
    if chain is None:
        raise UnsupportedChain(f"Unsupported chain: {key}. Supported: {', '.join(registry)}")
    return chain


def get_chain_by_id(
    chain_id: Union[int, str], chains: Optional[Dict[str, ChainDescriptor]] = None
) -> Optional[ChainDescriptor]:
    registry = CHAINS if chains is None else chains
    for chain in registry.values():
        if chain.chain_id == chain_id:
            return chain
    return None


def reference_chain(chains: Optional[Dict[str, ChainDescriptor]] = None) -> ChainDescriptor:
    """Return the chain that remediation bundles settle on."""
    registry = CHAINS if chains is None else chains
    for chain in registry.values():
        if chain.is_reference:
            return chain
    raise UnsupportedChain("No reference chain configured")


def with_rpc_overrides(
    overrides: Dict[str, str], chains: Optional[Dict[str, ChainDescriptor]] = None
) -> Dict[str, ChainDescriptor]:
    """Return a copy of the registry with RPC URLs replaced for the given keys."""
    registry = CHAINS if chains is None else chains
    updated = dict(registry)
    for key, url in overrides.items():
        chain = get_chain(key, registry)
        updated[chain.key] = dataclasses.replace(chain, rpc_url=url)
    return updated


def select_chains(
    keys: Optional[Iterable[str]], chains: Optional[Dict[str, ChainDescriptor]] = None
) -> List[ChainDescriptor]:
    """Resolve an optional chain filter into descriptors, in registry order."""
    registry = CHAINS if chains is None else chains
    if not keys:
        return list(registry.values())
    wanted = {get_chain(key, registry).key for key in keys}
    return [chain for chain in registry.values() if chain.key in wanted]


def address_family(address: str) -> Optional[str]:
    """
    Detect which chain family an address is structurally valid for.

    Returns:
        "evm", "solana", or None if the address matches neither
    """
    if _EVM_ADDRESS_RE.match(address):
        return EVM
    if _BASE58_ADDRESS_RE.match(address):
        return SOLANA
    return None


def normalize_address(address: str) -> str:
    """
    Normalize an address for use in keys.

    EVM hex addresses are case-insensitive and get lowercased. Base58
    addresses are case-sensitive and are returned unchanged.
    """
    if address.startswith("0x") or address.startswith("0X"):
        return address.lower()
    return address
