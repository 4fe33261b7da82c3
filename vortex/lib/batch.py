"""
Batch action engine: validation against the action matrix, bundle execution,
the hidden-token set and the transaction-history log.

SWAP and BURN settle as one fee-sponsored bundle on the execution chain.
HIDE never touches a chain; it only records tokens in the hidden set.
HOLD is accepted for PREMIUM tokens and does nothing.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Union

from eth_abi.exceptions import DecodingError

from .bundler import BundleCall, BundleSubmitter, SwapPlanner
from .chains import ChainDescriptor, normalize_address, reference_chain
from .errors import ChainUnavailable, ExecutionFailure, RpcResponseError, ValidationFailure
from .models import ACTION_MATRIX, Action, BatchActionResult, Category, Token, ValidationResult

logger = logging.getLogger(__name__)

SWAP_MIN_VALUE = Decimal("0.01")
BURN_MAX_VALUE = Decimal("0.1")

# Gas model for the savings estimate
GAS_PER_TOKEN = 65000
BATCH_OVERHEAD_GAS = 50000
BATCH_GAS_PER_TOKEN = 45000


class HiddenTokenStore(ABC):
    """Persistence for the set of "chain:address" keys the user has hidden."""

    @abstractmethod
    def load(self) -> Set[str]:
        pass

    @abstractmethod
    def save(self, keys: Set[str]) -> None:
        pass


class MemoryHiddenTokenStore(HiddenTokenStore):
    def __init__(self, initial: Optional[Iterable[str]] = None):
        self._keys = set(initial or ())

    def load(self) -> Set[str]:
        return set(self._keys)

    def save(self, keys: Set[str]) -> None:
        self._keys = set(keys)


class JsonFileHiddenTokenStore(HiddenTokenStore):
    """Hidden keys as a sorted JSON list, rewritten atomically on every save."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Set[str]:
        if not self.path.exists():
            return set()
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        return {str(key) for key in data}

    def save(self, keys: Set[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(sorted(keys), f, indent=2)
        os.replace(tmp_path, self.path)


@dataclass
class TransactionRecord:
    """One execute() call, successful or not."""

    action: Action
    tokens: List[str]
    timestamp: float
    success: bool
    tokens_processed: int = 0
    total_value_saved: Decimal = Decimal("0")
    gas_used: int = 0
    tx_ref: Optional[str] = None
    error: Optional[str] = None


@dataclass
class GasEstimate:
    individual_gas: int
    batch_gas: int
    savings: int
    savings_percent: int


def estimate_gas_savings(
    token_count: int,
    gas_per_token: int = GAS_PER_TOKEN,
    batch_overhead: int = BATCH_OVERHEAD_GAS,
    batch_gas_per_token: int = BATCH_GAS_PER_TOKEN,
) -> GasEstimate:
    """
    Rough gas comparison of one transaction per token against one bundle.

    Informational only; nothing gates execution on it.
    """
    individual_gas = token_count * gas_per_token
    batch_gas = batch_overhead + token_count * batch_gas_per_token
    savings = individual_gas - batch_gas
    savings_percent = round(savings / individual_gas * 100) if individual_gas else 0
    return GasEstimate(individual_gas, batch_gas, savings, savings_percent)


def is_action_allowed(category: Category, action: Action) -> bool:
    return action in ACTION_MATRIX[category]


def validate_batch_action(tokens: Iterable[Token], action: Action) -> ValidationResult:
    """
    Split tokens into those the action may touch and those it may not.

    The action matrix is checked first, then the per-action value guards.
    Every rejected token gets exactly one reason, at the same index.
    """
    action = Action(action)
    result = ValidationResult(action=action)

    for token in tokens:
        reason = None
        if not is_action_allowed(token.category, action):
            allowed = ", ".join(a.value for a in token.allowed_actions)
            reason = (
                f"{token.symbol}: {action.value} not allowed for "
                f"{token.category.value} tokens (allowed: {allowed})"
            )
        elif action == Action.SWAP and token.value_usd < SWAP_MIN_VALUE:
            reason = f"{token.symbol}: Value too low for swap (<${SWAP_MIN_VALUE})"
        elif action == Action.BURN and token.value_usd >= BURN_MAX_VALUE:
            reason = f"{token.symbol}: Value too high for burn (>=${BURN_MAX_VALUE})"
        elif action == Action.HOLD and token.category != Category.PREMIUM:
            reason = f"{token.symbol}: HOLD only allowed for PREMIUM tokens"

        if reason is None:
            result.eligible_tokens.append(token)
        else:
            result.invalid_tokens.append(token)
            result.reasons.append(reason)

    return result


class BatchActionEngine:
    """
    Validates and executes bulk actions over scanned tokens.

    Bundled actions need a submitter, a planner and the sending smart-account
    address; without them SWAP and BURN fail with a readable error while HIDE
    and HOLD keep working.
    """

    def __init__(
        self,
        submitter: Optional[BundleSubmitter] = None,
        planner: Optional[SwapPlanner] = None,
        hidden_store: Optional[HiddenTokenStore] = None,
        sender: Optional[str] = None,
        chain: Optional[ChainDescriptor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.submitter = submitter
        self.planner = planner
        self.hidden_store = hidden_store or MemoryHiddenTokenStore()
        self.sender = sender
        self.chain = chain or reference_chain()
        self._clock = clock
        self._hidden: Set[str] = self.hidden_store.load()
        self._history: List[TransactionRecord] = []

    def validate(self, tokens: Iterable[Token], action: Union[Action, str]) -> ValidationResult:
        return validate_batch_action(tokens, Action(action))

    def execute(
        self,
        action: Union[Action, str],
        tokens: List[Token],
        sender: Optional[str] = None,
    ) -> BatchActionResult:
        """
        Execute an action over a batch that validates cleanly.

        A batch with any ineligible token is refused as a whole; callers
        resubmit with the eligible subset. Never raises for validation or
        execution problems: those come back as success=False with an error.
        """
        action = Action(action)
        try:
            validation = self.validate(tokens, action)
            if not validation.eligible_tokens:
                message = f"No eligible tokens for {action.value}"
                if validation.reasons:
                    message += ": " + "; ".join(validation.reasons)
                raise ValidationFailure(message, reasons=validation.reasons)
            if validation.invalid_tokens:
                raise ValidationFailure(
                    f"{len(validation.invalid_tokens)} token(s) not eligible for {action.value}: "
                    + "; ".join(validation.reasons),
                    reasons=validation.reasons,
                )
            result = self._dispatch(action, validation.eligible_tokens, sender or self.sender)
        except (ValidationFailure, ExecutionFailure) as e:
            logger.warning("%s batch failed: %s", action.value, e)
            result = BatchActionResult(success=False, tokens_processed=0, error=str(e))

        self._history.append(
            TransactionRecord(
                action=action,
                tokens=[token.key for token in tokens],
                timestamp=self._clock(),
                success=result.success,
                tokens_processed=result.tokens_processed,
                total_value_saved=result.total_value_saved,
                gas_used=result.gas_used,
                tx_ref=result.tx_ref,
                error=result.error,
            )
        )
        return result

    def _dispatch(self, action: Action, tokens: List[Token], sender: Optional[str]) -> BatchActionResult:
        if action == Action.HIDE:
            return self._hide_all(tokens)
        if action == Action.HOLD:
            return BatchActionResult(success=True, tokens_processed=len(tokens))
        return self._submit(action, tokens, sender)

    def _submit(self, action: Action, tokens: List[Token], sender: Optional[str]) -> BatchActionResult:
        if self.submitter is None or self.planner is None or not sender:
            raise ExecutionFailure(f"{action.value} needs a bundle submitter, a swap planner and a sender")

        off_chain = [token.symbol for token in tokens if token.chain != self.chain.key]
        if off_chain:
            raise ExecutionFailure(
                f"{action.value} only executes on {self.chain.name}; not on it: {', '.join(off_chain)}"
            )

        calls: List[BundleCall] = []
        try:
            for token in tokens:
                if action == Action.SWAP:
                    calls.extend(self.planner.swap_calls(sender, token))
                else:
                    calls.extend(self.planner.burn_calls(token))
        except (ChainUnavailable, RpcResponseError, DecodingError) as e:
            raise ExecutionFailure(f"Could not plan {action.value} bundle: {e}") from e

        receipt = self.submitter.submit_bundle(self.chain, sender, calls)
        value_saved = Decimal("0")
        if action == Action.SWAP:
            value_saved = sum((token.value_usd for token in tokens), Decimal("0"))
        return BatchActionResult(
            success=True,
            tokens_processed=len(tokens),
            total_value_saved=value_saved,
            gas_used=receipt.gas_used,
            tx_ref=receipt.tx_hash,
        )

    def _hide_all(self, tokens: List[Token]) -> BatchActionResult:
        previous = set(self._hidden)
        self._hidden.update(token.key for token in tokens)
        if self._hidden != previous:
            try:
                self.hidden_store.save(self._hidden)
            except OSError as e:
                self._hidden = previous
                raise ExecutionFailure(f"Could not persist hidden tokens: {e}") from e

        value_saved = sum(
            (token.value_usd for token in tokens if token.category == Category.RISK),
            Decimal("0"),
        )
        return BatchActionResult(success=True, tokens_processed=len(tokens), total_value_saved=value_saved)

    def is_hidden(self, chain: str, address: str) -> bool:
        return f"{chain}:{normalize_address(address)}" in self._hidden

    def unhide(self, chain: str, address: str) -> bool:
        """
        Remove a token from the hidden set. Returns False if it was not hidden.

        Raises:
            ExecutionFailure: If the store cannot be written; the token stays hidden
        """
        key = f"{chain}:{normalize_address(address)}"
        if key not in self._hidden:
            return False
        remaining = self._hidden - {key}
        try:
            self.hidden_store.save(remaining)
        except OSError as e:
            raise ExecutionFailure(f"Could not persist hidden tokens: {e}") from e
        self._hidden = remaining
        return True

    def hidden_tokens(self) -> List[str]:
        return sorted(self._hidden)

    def filter_visible(self, tokens: Iterable[Token]) -> List[Token]:
        return [token for token in tokens if token.key not in self._hidden]

    def transaction_history(self) -> List[TransactionRecord]:
        return list(self._history)

    def clear_transaction_history(self) -> None:
        self._history.clear()

    def estimate_gas_savings(self, token_count: int) -> GasEstimate:
        return estimate_gas_savings(token_count)
