"""
Unit tests for bundle submission and swap/burn planning.

Tests follow the Given/When/Then pattern for clarity.
"""

import json
from decimal import Decimal

import pytest
import requests
import responses
from eth_abi import decode, encode

from vortex.lib.bundler import SWAP_VENUES, BundleCall, RelayBundleSubmitter, SwapPlanner
from vortex.lib.chains import CHAINS
from vortex.lib.erc20 import (
    ALLOWANCE_SELECTOR,
    APPROVE_SELECTOR,
    DEAD_ADDRESS,
    GET_PAIR_SELECTOR,
    SWAP_EXACT_ETH_SELECTOR,
    SWAP_EXACT_TOKENS_SELECTOR,
    TRANSFER_SELECTOR,
    ZERO_ADDRESS,
)
from vortex.lib.errors import ExecutionFailure, UnsupportedChain
from vortex.lib.models import NATIVE_ADDRESS

RELAY_URL = "https://relay.test/bundles"
OWNER = "0x00000000000000000000000000000000000000aa"
TOKEN = "0x1234567890abcdef1234567890abcdef12345678"
VENUE = SWAP_VENUES["base"]


class StubChainReader:
    """Answers getPair and allowance reads for the planner."""

    def __init__(self, pair=ZERO_ADDRESS, allowance=0):
        self.pair = pair
        self.allowance = allowance
        self.calls = []

    def eth_call(self, chain, to, data):
        self.calls.append((to, data[:10]))
        if data.startswith(GET_PAIR_SELECTOR):
            return "0x" + encode(["address"], [self.pair]).hex()
        if data.startswith(ALLOWANCE_SELECTOR):
            return "0x" + encode(["uint256"], [self.allowance]).hex()
        raise AssertionError(f"unexpected call {data[:10]}")


def swap_args(data):
    return decode(
        ["uint256", "uint256", "address[]", "address", "uint256"],
        bytes.fromhex(data[len(SWAP_EXACT_TOKENS_SELECTOR) :]),
    )


class TestBundleCall:
    def test_value_is_hex_encoded(self):
        assert BundleCall(to=DEAD_ADDRESS, value=255).to_dict() == {"to": DEAD_ADDRESS, "data": "0x", "value": "0xff"}


class TestRelayBundleSubmitter:
    """Tests for the HTTP relay submitter."""

    @responses.activate
    def test_posts_bundle_and_returns_receipt(self, base_chain):
        """
        Given a relay accepting a sponsored bundle
        When submitting two calls
        Then the payload carries chain id, sender and calls, and gas used is zero
        """
        # Given
        responses.add(responses.POST, RELAY_URL, json={"txHash": "0xfeed", "gasUsed": 90000}, status=200)
        submitter = RelayBundleSubmitter(RELAY_URL, api_key="relay-key")
        calls = [BundleCall(TOKEN, "0xabcd"), BundleCall(DEAD_ADDRESS, "0x", 10)]

        # When
        receipt = submitter.submit_bundle(base_chain, OWNER, calls)

        # Then
        assert receipt.tx_hash == "0xfeed"
        assert receipt.gas_used == 0
        body = json.loads(responses.calls[0].request.body)
        assert body["chainId"] == 8453
        assert body["sender"] == OWNER
        assert body["sponsored"] is True
        assert body["calls"][1] == {"to": DEAD_ADDRESS, "data": "0x", "value": "0xa"}
        assert responses.calls[0].request.headers["Authorization"] == "Bearer relay-key"

    @responses.activate
    def test_unsponsored_reports_gas(self, base_chain):
        responses.add(responses.POST, RELAY_URL, json={"txHash": "0x1", "gasUsed": 90000}, status=200)
        receipt = RelayBundleSubmitter(RELAY_URL, sponsored=False).submit_bundle(base_chain, OWNER, [BundleCall(TOKEN)])
        assert receipt.gas_used == 90000

    @responses.activate
    def test_rejection_raises_execution_failure(self, base_chain):
        # Given
        responses.add(responses.POST, RELAY_URL, body="paymaster out of funds", status=402)

        # When / Then
        with pytest.raises(ExecutionFailure, match="HTTP 402"):
            RelayBundleSubmitter(RELAY_URL).submit_bundle(base_chain, OWNER, [BundleCall(TOKEN)])

    @responses.activate
    def test_transport_error_is_not_retried(self, base_chain):
        """
        Given a relay connection that drops
        When submitting
        Then ExecutionFailure is raised after a single attempt
        """
        # Given
        responses.add(responses.POST, RELAY_URL, body=requests.ConnectionError("reset"))

        # When / Then
        with pytest.raises(ExecutionFailure, match="ConnectionError"):
            RelayBundleSubmitter(RELAY_URL).submit_bundle(base_chain, OWNER, [BundleCall(TOKEN)])
        assert len(responses.calls) == 1

    @responses.activate
    def test_transport_error_message_is_redacted(self, base_chain):
        # Given
        responses.add(
            responses.POST,
            RELAY_URL,
            body=requests.ConnectionError(f"Max retries exceeded with url: {RELAY_URL}"),
        )

        # When
        with pytest.raises(ExecutionFailure) as excinfo:
            RelayBundleSubmitter(RELAY_URL).submit_bundle(base_chain, OWNER, [BundleCall(TOKEN)])

        # Then
        message = str(excinfo.value)
        assert "Max retries exceeded" in message
        assert "https://relay.test/[REDACTED]" in message
        assert "/bundles" not in message

    @responses.activate
    def test_missing_hash_raises(self, base_chain):
        responses.add(responses.POST, RELAY_URL, json={"status": "queued"}, status=200)
        with pytest.raises(ExecutionFailure, match="no transaction hash"):
            RelayBundleSubmitter(RELAY_URL).submit_bundle(base_chain, OWNER, [BundleCall(TOKEN)])

    def test_empty_bundle_is_refused(self, base_chain):
        with pytest.raises(ExecutionFailure):
            RelayBundleSubmitter(RELAY_URL).submit_bundle(base_chain, OWNER, [])


class TestSwapPlanner:
    """Tests for swap and burn call planning."""

    def test_chain_without_venue_is_unsupported(self):
        with pytest.raises(UnsupportedChain):
            SwapPlanner(StubChainReader(), CHAINS["solana"])

    def test_direct_pool_routes_straight_to_target(self, base_chain):
        planner = SwapPlanner(StubChainReader(pair="0x" + "11" * 20), base_chain)
        assert planner.route(TOKEN) == [TOKEN, VENUE.target]

    def test_without_pool_routes_through_wrapped_native(self, base_chain):
        planner = SwapPlanner(StubChainReader(), base_chain)
        assert planner.route(TOKEN) == [TOKEN, VENUE.wrapped_native, VENUE.target]

    def test_wrapped_native_routes_directly_without_lookup(self, base_chain):
        reader = StubChainReader()
        planner = SwapPlanner(reader, base_chain)
        assert planner.route(VENUE.wrapped_native) == [VENUE.wrapped_native, VENUE.target]
        assert reader.calls == []

    def test_min_amount_out_applies_slippage(self, base_chain, make_token):
        """
        Given a $2 holding and 0.5% slippage
        When computing the minimum output in 6-decimal USDC
        Then it is 1.99 USDC rounded down
        """
        # Given
        planner = SwapPlanner(StubChainReader(), base_chain)
        token = make_token(balance="2", price="1")

        # When / Then
        assert planner.min_amount_out(token) == 1_990_000

    def test_swap_calls_include_approval_when_allowance_short(self, base_chain, make_token, fake_clock):
        """
        Given a token whose router allowance is below the balance
        When planning a swap
        Then an approve call precedes the swap and the deadline is five minutes out
        """
        # Given
        planner = SwapPlanner(StubChainReader(allowance=0), base_chain, clock=fake_clock)
        token = make_token(address=TOKEN, balance="3", price="1")

        # When
        approve, swap = planner.swap_calls(OWNER, token)

        # Then
        assert approve.to == TOKEN
        assert approve.data.startswith(APPROVE_SELECTOR)
        assert swap.to == VENUE.router
        assert swap.data.startswith(SWAP_EXACT_TOKENS_SELECTOR)
        amount_in, min_out, path, to, deadline = swap_args(swap.data)
        assert amount_in == int(token.balance)
        assert min_out == 2_985_000
        assert len(path) == 3
        assert to.lower() == OWNER
        assert deadline == int(fake_clock.now) + 300

    def test_swap_calls_skip_approval_when_allowance_suffices(self, base_chain, make_token):
        planner = SwapPlanner(StubChainReader(allowance=2**256 - 1), base_chain)
        calls = planner.swap_calls(OWNER, make_token(address=TOKEN))
        assert len(calls) == 1

    def test_native_swap_sends_value(self, base_chain, make_token):
        # Given
        planner = SwapPlanner(StubChainReader(), base_chain)
        eth = make_token(symbol="ETH", address=NATIVE_ADDRESS, balance="0.001", price="2500")

        # When
        (call,) = planner.swap_calls(OWNER, eth)

        # Then
        assert call.data.startswith(SWAP_EXACT_ETH_SELECTOR)
        assert call.value == int(eth.balance)

    def test_burn_transfers_to_dead_address(self, base_chain, make_token):
        """
        Given a contract token and a native balance
        When planning burns
        Then the token is transferred to the dead address and the native value is sent there
        """
        # Given
        planner = SwapPlanner(StubChainReader(), base_chain)
        token = make_token(address=TOKEN, balance="0.05", price="1")
        eth = make_token(address=NATIVE_ADDRESS, balance="0.00001", price="2500")

        # When
        (token_call,) = planner.burn_calls(token)
        (native_call,) = planner.burn_calls(eth)

        # Then
        assert token_call.to == TOKEN
        assert token_call.data.startswith(TRANSFER_SELECTOR)
        assert DEAD_ADDRESS[2:] in token_call.data
        assert native_call.to == DEAD_ADDRESS
        assert native_call.data == "0x"
        assert native_call.value == int(eth.balance)

    def test_slippage_is_configurable(self, base_chain, make_token):
        planner = SwapPlanner(StubChainReader(), base_chain, slippage=Decimal("10"))
        assert planner.min_amount_out(make_token(balance="1", price="1")) == 900_000
