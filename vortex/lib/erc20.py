"""
Call-data encoding and return-data decoding for the contracts we talk to:
ERC-20 tokens, Multicall3, and Uniswap-V2-style routers and factories.

Addresses are lowercased before encoding so eth-abi never has to verify a
checksum.
"""

from typing import List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex

# Function selectors
BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
DECIMALS_SELECTOR = "0x313ce567"  # decimals()
SYMBOL_SELECTOR = "0x95d89b41"  # symbol()
NAME_SELECTOR = "0x06fdde03"  # name()
ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)
APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)
AGGREGATE_SELECTOR = "0x252dba42"  # aggregate((address,bytes)[])
GET_PAIR_SELECTOR = "0xe6a43905"  # getPair(address,address)
SWAP_EXACT_TOKENS_SELECTOR = "0x38ed1739"  # swapExactTokensForTokens(uint256,uint256,address[],address,uint256)
SWAP_EXACT_ETH_SELECTOR = "0x7ff36ab5"  # swapExactETHForTokens(uint256,address[],address,uint256)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEAD_ADDRESS = "0x000000000000000000000000000000000000dead"


def _call(selector: str, types: Sequence[str], args: Sequence) -> str:
    return selector + encode(list(types), list(args)).hex()


def encode_balance_of(owner: str) -> str:
    return _call(BALANCE_OF_SELECTOR, ["address"], [owner.lower()])


def encode_allowance(owner: str, spender: str) -> str:
    return _call(ALLOWANCE_SELECTOR, ["address", "address"], [owner.lower(), spender.lower()])


def encode_approve(spender: str, amount: int) -> str:
    return _call(APPROVE_SELECTOR, ["address", "uint256"], [spender.lower(), amount])


def encode_transfer(to: str, amount: int) -> str:
    return _call(TRANSFER_SELECTOR, ["address", "uint256"], [to.lower(), amount])


def encode_get_pair(token_a: str, token_b: str) -> str:
    return _call(GET_PAIR_SELECTOR, ["address", "address"], [token_a.lower(), token_b.lower()])


def encode_swap_exact_tokens(
    amount_in: int, amount_out_min: int, path: Sequence[str], to: str, deadline: int
) -> str:
    return _call(
        SWAP_EXACT_TOKENS_SELECTOR,
        ["uint256", "uint256", "address[]", "address", "uint256"],
        [amount_in, amount_out_min, [hop.lower() for hop in path], to.lower(), deadline],
    )


def encode_swap_exact_eth(amount_out_min: int, path: Sequence[str], to: str, deadline: int) -> str:
    return _call(
        SWAP_EXACT_ETH_SELECTOR,
        ["uint256", "address[]", "address", "uint256"],
        [amount_out_min, [hop.lower() for hop in path], to.lower(), deadline],
    )


def encode_aggregate(calls: Sequence[Tuple[str, str]]) -> str:
    """
    Encode a Multicall3 aggregate() call.

    Args:
        calls: (target, hex call data) pairs
    """
    packed = [(target.lower(), decode_hex(data)) for target, data in calls]
    return _call(AGGREGATE_SELECTOR, ["(address,bytes)[]"], [packed])


def _to_bytes(data) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if not data or data == "0x":
        raise DecodingError("Empty return data")
    return decode_hex(data)


def decode_uint(data) -> int:
    (value,) = decode(["uint256"], _to_bytes(data))
    return value


def decode_address(data) -> str:
    (value,) = decode(["address"], _to_bytes(data))
    return value.lower()


def decode_string(data) -> str:
    """
    Decode a string return value.

    A few older tokens (MKR and friends) return bytes32 instead of string,
    so fall back to that layout.
    """
    raw = _to_bytes(data)
    try:
        (value,) = decode(["string"], raw)
        return value
    except (DecodingError, OverflowError, UnicodeDecodeError):
        (value,) = decode(["bytes32"], raw)
        return value.rstrip(b"\x00").decode("utf-8", errors="replace")


def decode_aggregate(data) -> Tuple[int, List[bytes]]:
    """Decode aggregate() output into (block number, per-call return data)."""
    block_number, return_data = decode(["uint256", "bytes[]"], _to_bytes(data))
    return block_number, list(return_data)
