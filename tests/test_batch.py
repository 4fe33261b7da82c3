"""
Unit tests for batch validation, execution and the hidden-token set.

Tests follow the Given/When/Then pattern for clarity.
"""

import json
from decimal import Decimal

import pytest

from vortex.lib.batch import (
    BatchActionEngine,
    HiddenTokenStore,
    JsonFileHiddenTokenStore,
    MemoryHiddenTokenStore,
    estimate_gas_savings,
    is_action_allowed,
    validate_batch_action,
)
from vortex.lib.bundler import BundleCall, BundleReceipt
from vortex.lib.errors import ChainUnavailable, ExecutionFailure
from vortex.lib.models import Action, Category

SENDER = "0x00000000000000000000000000000000000000aa"


class RecordingSubmitter:
    def __init__(self, gas_used=0, error=None):
        self.gas_used = gas_used
        self.error = error
        self.bundles = []

    def submit_bundle(self, chain, sender, calls):
        if self.error is not None:
            raise self.error
        self.bundles.append((chain.key, sender, list(calls)))
        return BundleReceipt(tx_hash=f"0xtx{len(self.bundles)}", gas_used=self.gas_used)


class StubPlanner:
    def __init__(self, error=None):
        self.error = error

    def swap_calls(self, owner, token):
        if self.error is not None:
            raise self.error
        return [BundleCall(token.address, "0xapprove"), BundleCall("0xrouter", "0xswap")]

    def burn_calls(self, token):
        return [BundleCall(token.address, "0xburn")]


class FailingStore(HiddenTokenStore):
    def load(self):
        return set()

    def save(self, keys):
        raise OSError("disk full")


class FlakyStore(MemoryHiddenTokenStore):
    """Accepts the first save and fails every later one."""

    def __init__(self):
        super().__init__()
        self.saves = 0

    def save(self, keys):
        self.saves += 1
        if self.saves > 1:
            raise OSError("disk full")
        super().save(keys)


@pytest.fixture
def engine(fake_clock):
    return BatchActionEngine(
        submitter=RecordingSubmitter(),
        planner=StubPlanner(),
        sender=SENDER,
        clock=fake_clock,
    )


def addr(n):
    return f"0x{n:040x}"


class TestValidation:
    """Tests for validate_batch_action."""

    def test_mixed_categories_for_hide(self, make_token):
        """
        Given DUST, MICRO, RISK and PREMIUM tokens
        When validating HIDE
        Then only PREMIUM is rejected, with a reason naming its allowed actions
        """
        # Given
        tokens = [
            make_token(symbol="D", category=Category.DUST),
            make_token(symbol="M", category=Category.MICRO),
            make_token(symbol="R", category=Category.RISK),
            make_token(symbol="P", category=Category.PREMIUM),
        ]

        # When
        result = validate_batch_action(tokens, Action.HIDE)

        # Then
        assert [token.symbol for token in result.eligible_tokens] == ["D", "M", "R"]
        assert [token.symbol for token in result.invalid_tokens] == ["P"]
        assert result.reasons == ["P: HIDE not allowed for PREMIUM tokens (allowed: HOLD, SWAP)"]
        assert not result.valid

    def test_swap_value_floor(self, make_token):
        # Given
        tokens = [
            make_token(symbol="OK", balance="0.01", price="1"),
            make_token(symbol="LOW", balance="0.009", price="1"),
        ]

        # When
        result = validate_batch_action(tokens, Action.SWAP)

        # Then
        assert [token.symbol for token in result.eligible_tokens] == ["OK"]
        assert result.reasons == ["LOW: Value too low for swap (<$0.01)"]

    def test_burn_value_ceiling(self, make_token):
        """
        Given MICRO tokens on either side of $0.1
        When validating BURN
        Then the one worth $0.1 or more is rejected
        """
        # Given
        tokens = [
            make_token(symbol="TINY", balance="0.099", price="1", category=Category.MICRO),
            make_token(symbol="BIG", balance="0.1", price="1", category=Category.MICRO),
        ]

        # When
        result = validate_batch_action(tokens, Action.BURN)

        # Then
        assert [token.symbol for token in result.eligible_tokens] == ["TINY"]
        assert result.reasons == ["BIG: Value too high for burn (>=$0.1)"]

    def test_hold_only_for_premium(self, make_token):
        result = validate_batch_action([make_token(category=Category.DUST)], Action.HOLD)
        assert result.reasons[0].endswith("HOLD not allowed for DUST tokens (allowed: SWAP, HIDE)")

    def test_accepts_action_strings(self, make_token):
        assert validate_batch_action([make_token()], "SWAP").action == Action.SWAP

    def test_is_action_allowed(self):
        assert is_action_allowed(Category.RISK, Action.HIDE)
        assert not is_action_allowed(Category.RISK, Action.SWAP)


class TestExecute:
    """Tests for BatchActionEngine.execute."""

    def test_swap_submits_one_bundle(self, engine, make_token):
        """
        Given two DUST tokens on Base
        When executing SWAP
        Then one bundle with all calls is submitted and their value is reported saved
        """
        # Given
        tokens = [
            make_token(symbol="A", address=addr(1), balance="2", price="1"),
            make_token(symbol="B", address=addr(2), balance="3", price="1"),
        ]

        # When
        result = engine.execute(Action.SWAP, tokens)

        # Then
        assert result.success
        assert result.tokens_processed == 2
        assert result.total_value_saved == Decimal("5")
        assert result.tx_ref == "0xtx1"
        assert result.gas_used == 0
        (bundle,) = engine.submitter.bundles
        assert bundle[0] == "base"
        assert bundle[1] == SENDER
        assert len(bundle[2]) == 4

    def test_burn_reports_no_value_saved(self, engine, make_token):
        token = make_token(balance="0.05", price="1", category=Category.MICRO)
        result = engine.execute("BURN", [token])
        assert result.success
        assert result.total_value_saved == Decimal("0")

    def test_any_invalid_token_refuses_whole_batch(self, engine, make_token):
        """
        Given one eligible and one ineligible token
        When executing SWAP
        Then nothing is submitted and the error names the rejected token
        """
        # Given
        tokens = [make_token(symbol="OK", balance="2"), make_token(symbol="BAD", category=Category.RISK)]

        # When
        result = engine.execute(Action.SWAP, tokens)

        # Then
        assert not result.success
        assert result.tokens_processed == 0
        assert "1 token(s) not eligible for SWAP" in result.error
        assert "BAD: SWAP not allowed for RISK tokens" in result.error
        assert engine.submitter.bundles == []

    def test_no_eligible_tokens(self, engine):
        result = engine.execute(Action.HIDE, [])
        assert not result.success
        assert result.error == "No eligible tokens for HIDE"

    def test_swap_off_reference_chain_fails(self, engine, make_token):
        result = engine.execute(Action.SWAP, [make_token(chain="ethereum", balance="2")])
        assert not result.success
        assert "only executes on Base" in result.error

    def test_swap_without_submitter_fails(self, make_token):
        result = BatchActionEngine().execute(Action.SWAP, [make_token(balance="2")])
        assert not result.success
        assert "needs a bundle submitter" in result.error

    def test_planning_errors_become_failures(self, make_token, fake_clock):
        # Given
        engine = BatchActionEngine(
            submitter=RecordingSubmitter(),
            planner=StubPlanner(error=ChainUnavailable("timeout")),
            sender=SENDER,
            clock=fake_clock,
        )

        # When
        result = engine.execute(Action.SWAP, [make_token(balance="2")])

        # Then
        assert not result.success
        assert "Could not plan SWAP bundle: timeout" in result.error

    def test_relay_rejection_is_reported(self, make_token):
        engine = BatchActionEngine(
            submitter=RecordingSubmitter(error=ExecutionFailure("Relay rejected bundle: HTTP 402")),
            planner=StubPlanner(),
            sender=SENDER,
        )
        result = engine.execute(Action.SWAP, [make_token(balance="2")])
        assert not result.success
        assert "HTTP 402" in result.error

    def test_hold_is_a_noop_success(self, engine, make_token):
        result = engine.execute(Action.HOLD, [make_token(category=Category.PREMIUM)])
        assert result.success
        assert engine.submitter.bundles == []


class TestHide:
    """Tests for the hidden-token set."""

    def test_hide_is_idempotent_and_values_risk_only(self, engine, make_token):
        """
        Given a RISK token worth $4 and a DUST token worth $1
        When hiding them twice
        Then both are hidden once, and only the RISK value counts as saved
        """
        # Given
        risk = make_token(symbol="R", address=addr(1), balance="4", category=Category.RISK)
        dust = make_token(symbol="D", address=addr(2), balance="1", category=Category.DUST)

        # When
        first = engine.execute(Action.HIDE, [risk, dust])
        second = engine.execute(Action.HIDE, [risk, dust])

        # Then
        assert first.success and second.success
        assert first.total_value_saved == Decimal("4")
        assert engine.hidden_tokens() == sorted([risk.key, dust.key])
        assert engine.is_hidden("base", addr(1).upper().replace("0X", "0x"))

    def test_filter_visible_and_unhide(self, engine, make_token):
        # Given
        hidden = make_token(symbol="H", address=addr(1))
        shown = make_token(symbol="S", address=addr(2))
        engine.execute(Action.HIDE, [hidden])

        # When / Then
        assert engine.filter_visible([hidden, shown]) == [shown]
        assert engine.unhide("base", addr(1))
        assert not engine.unhide("base", addr(1))
        assert engine.filter_visible([hidden, shown]) == [hidden, shown]

    def test_failed_save_rolls_back(self, make_token):
        """
        Given a store that cannot be written
        When hiding a token
        Then the action fails and the token is not hidden
        """
        # Given
        engine = BatchActionEngine(hidden_store=FailingStore())
        token = make_token()

        # When
        result = engine.execute(Action.HIDE, [token])

        # Then
        assert not result.success
        assert "disk full" in result.error
        assert not engine.is_hidden(token.chain, token.address)

    def test_failed_unhide_keeps_token_hidden(self, make_token):
        """
        Given a hidden token and a store that fails on the next write
        When unhiding it
        Then ExecutionFailure is raised and memory still matches the stored set
        """
        # Given
        store = FlakyStore()
        engine = BatchActionEngine(hidden_store=store)
        token = make_token(address=addr(3))
        engine.execute(Action.HIDE, [token])

        # When
        with pytest.raises(ExecutionFailure, match="disk full"):
            engine.unhide("base", addr(3))

        # Then
        assert engine.is_hidden("base", addr(3))
        assert store.load() == {token.key}

    def test_json_store_survives_restart(self, tmp_path, make_token):
        # Given
        path = tmp_path / "state" / "hidden.json"
        token = make_token(address=addr(7))
        BatchActionEngine(hidden_store=JsonFileHiddenTokenStore(path)).execute(Action.HIDE, [token])

        # When
        reloaded = BatchActionEngine(hidden_store=JsonFileHiddenTokenStore(path))

        # Then
        assert reloaded.is_hidden("base", addr(7))
        assert json.loads(path.read_text()) == [token.key]

    def test_memory_store_returns_copies(self):
        store = MemoryHiddenTokenStore(["base:0x1"])
        keys = store.load()
        keys.add("base:0x2")
        assert store.load() == {"base:0x1"}


class TestHistory:
    def test_every_execution_is_recorded(self, engine, make_token, fake_clock):
        """
        Given one successful and one refused execution
        When reading the history
        Then both appear in order with their outcome
        """
        # Given
        token = make_token(symbol="A", balance="2")
        engine.execute(Action.SWAP, [token])
        fake_clock.advance(10)
        engine.execute(Action.BURN, [token])

        # When
        history = engine.transaction_history()

        # Then
        assert [record.action for record in history] == [Action.SWAP, Action.BURN]
        assert history[0].success and history[0].tx_ref == "0xtx1"
        assert not history[1].success
        assert history[1].timestamp == history[0].timestamp + 10
        assert history[0].tokens == [token.key]

        engine.clear_transaction_history()
        assert engine.transaction_history() == []


class TestGasEstimate:
    def test_ten_tokens(self):
        estimate = estimate_gas_savings(10)
        assert estimate.individual_gas == 650000
        assert estimate.batch_gas == 500000
        assert estimate.savings == 150000
        assert estimate.savings_percent == 23

    def test_zero_tokens(self):
        assert estimate_gas_savings(0).savings_percent == 0

    def test_savings_grow_with_batch_size(self):
        savings = [estimate_gas_savings(n).savings for n in range(1, 20)]
        assert savings == sorted(savings)
