"""
Scan orchestrator: cache lookup, parallel per-chain fetch, enrichment,
classification and cache write-back.

Chains are fetched in fixed-size batches on a thread pool; tokens are
enriched in smaller batches with a pause between them. Worker threads only
fetch and return values. Status records, progress callbacks and the token
accumulator are touched only by the thread that called scan().
"""

import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .balance_fetchers import BaseBalanceFetcher
from .cache import CacheStats, ResultCache, scan_key
from .chains import CHAINS, ChainDescriptor, address_family, select_chains
from .classifier import classify_tokens
from .errors import ChainUnavailable, EnrichmentError, InvalidAddress, UnsupportedChain
from .models import ChainScanStatus, ChainStatus, ScanResult, Token
from .security import SecurityResult, TokenEnricher, apply_security

logger = logging.getLogger(__name__)

CHAIN_BATCH_SIZE = 3
ENRICH_BATCH_SIZE = 5
ENRICH_BATCH_DELAY = 0.2  # seconds

# Per-chain retry, on ChainUnavailable only
CHAIN_MAX_ATTEMPTS = 3
CHAIN_INITIAL_DELAY = 1.0  # seconds
CHAIN_BACKOFF_MULTIPLIER = 2.0
CHAIN_MAX_DELAY = 10.0  # seconds

ProgressCallback = Callable[[ChainScanStatus], None]


@dataclass
class ScanOptions:
    """
    Per-call scan options.

    chains: Registry keys to scan (None scans every configured chain)
    use_cache: Read a live cached result if there is one. Fresh results are
        written back either way.
    cache_ttl: TTL override in seconds for the written entry
    """

    chains: Optional[List[str]] = None
    use_cache: bool = True
    cache_ttl: Optional[int] = None


@dataclass
class ScannerStats:
    total_scans: int = 0
    tokens_scanned: int = 0
    chain_errors: int = 0
    cache: CacheStats = field(default_factory=CacheStats)


def _batches(items: Sequence, size: int) -> List[Sequence]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class Scanner:
    """Multi-chain wallet scanner with injected fetchers, cache and enricher."""

    def __init__(
        self,
        fetchers: Dict[str, BaseBalanceFetcher],
        chains: Optional[Dict[str, ChainDescriptor]] = None,
        cache: Optional[ResultCache] = None,
        enricher: Optional[TokenEnricher] = None,
        chain_batch_size: int = CHAIN_BATCH_SIZE,
        enrich_batch_size: int = ENRICH_BATCH_SIZE,
        enrich_batch_delay: float = ENRICH_BATCH_DELAY,
        max_attempts: int = CHAIN_MAX_ATTEMPTS,
        retry_delay: float = CHAIN_INITIAL_DELAY,
        max_retry_delay: float = CHAIN_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            fetchers: Chain family ("evm", "solana") -> fetcher
            chains: Chain registry (defaults to the built-in one)
            cache: Result cache for whole scans; None disables caching
            enricher: Security enricher; None skips enrichment
            sleep: Sleep function, replaceable in tests
            clock: Wall clock in epoch seconds, replaceable in tests
        """
        self.fetchers = fetchers
        self.chains = CHAINS if chains is None else chains
        self.cache = cache
        self.enricher = enricher
        self.chain_batch_size = chain_batch_size
        self.enrich_batch_size = enrich_batch_size
        self.enrich_batch_delay = enrich_batch_delay
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._sleep = sleep
        self._clock = clock
        self._stats = ScannerStats()
        self._lock = threading.Lock()

    def scan(
        self,
        address: str,
        options: Optional[ScanOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """
        Scan an address across the selected chains.

        Always returns a result for a well-formed address, even when every
        chain failed; per-chain failures are reported in the chain statuses.

        Raises:
            InvalidAddress: If the address is valid for no configured chain family
            UnsupportedChain: If the chain filter names an unknown chain
        """
        options = options or ScanOptions()
        address = address.strip()
        selected = select_chains(options.chains, self.chains)
        self._check_address(address)

        with self._lock:
            self._stats.total_scans += 1

        key = self._cache_key(address, options.chains)
        if self.cache is not None and options.use_cache:
            cached = self._read_cached(key)
            if cached is not None:
                return cached

        result = self._scan_fresh(address, selected, on_progress)

        if self.cache is not None:
            ttl = options.cache_ttl if options.cache_ttl is not None else self.cache.default_ttl
            result.cache_expiry = result.timestamp + ttl
            self.cache.set(key, result.to_dict(), ttl)

        return result

    def warmup(self, addresses: Sequence[str], options: Optional[ScanOptions] = None) -> int:
        """
        Scan and cache every address that has no live cache entry yet.

        Returns:
            Number of addresses warmed by this call (0 without a cache)
        """
        if self.cache is None:
            return 0
        options = options or ScanOptions()
        selected = select_chains(options.chains, self.chains)

        def load(address: str) -> dict:
            self._check_address(address)
            result = self._scan_fresh(address, selected)
            ttl = options.cache_ttl if options.cache_ttl is not None else self.cache.default_ttl
            result.cache_expiry = result.timestamp + ttl
            return result.to_dict()

        return self.cache.warmup(
            [address.strip() for address in addresses],
            load,
            options.cache_ttl,
            key_for=lambda address: self._cache_key(address, options.chains),
        )

    def get_stats(self) -> ScannerStats:
        with self._lock:
            stats = dataclasses.replace(self._stats)
        stats.cache = self.cache.stats() if self.cache is not None else CacheStats()
        return stats

    def clear_cache_for_address(self, address: str, chains: Optional[List[str]] = None) -> bool:
        if self.cache is None:
            return False
        return self.cache.delete(self._cache_key(address.strip(), chains))

    def _check_address(self, address: str) -> None:
        family = address_family(address)
        if family is None or not any(chain.family == family for chain in self.chains.values()):
            raise InvalidAddress(f"Address is not valid for any configured chain: {address}")

    def _cache_key(self, address: str, chains: Optional[List[str]]) -> str:
        if not chains:
            return scan_key(address)
        # Filtered scans never overwrite the full-registry entry
        wanted = sorted({chain.key for chain in select_chains(chains, self.chains)})
        return f"{scan_key(address)}:{','.join(wanted)}"

    def _read_cached(self, key: str) -> Optional[ScanResult]:
        data = self.cache.get(key)
        if data is None:
            return None
        try:
            result = ScanResult.from_dict(data)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", key, e)
            return None
        result.from_cache = True
        return result

    def _scan_fresh(
        self,
        address: str,
        selected: List[ChainDescriptor],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        timestamp = self._clock()
        family = address_family(address)
        statuses = {chain.key: ChainScanStatus(chain=chain.key) for chain in selected}
        found: Dict[str, List[Token]] = {}

        def transition(chain_key: str, status: ChainStatus, **changes) -> None:
            record = statuses[chain_key]
            record.status = status
            for name, value in changes.items():
                setattr(record, name, value)
            if on_progress is not None:
                on_progress(dataclasses.replace(record))

        for batch in _batches(selected, self.chain_batch_size):
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {}
                for chain in batch:
                    transition(chain.key, ChainStatus.SCANNING, progress=0)
                    fetcher = self.fetchers.get(chain.family)
                    if chain.family != family or fetcher is None:
                        reason = (
                            f"Address is not a valid {chain.family} address"
                            if chain.family != family
                            else f"No fetcher for {chain.family} chains"
                        )
                        transition(chain.key, ChainStatus.ERROR, error=reason)
                        continue
                    futures[executor.submit(self._fetch_with_retry, fetcher, address, chain)] = chain

                for future in as_completed(futures):
                    chain = futures[future]
                    try:
                        chain_tokens = future.result()
                    except Exception as e:  # isolate every per-chain failure
                        logger.warning("[%s] Scan failed: %s", chain.key, e)
                        transition(chain.key, ChainStatus.ERROR, error=str(e) or type(e).__name__)
                        continue
                    logger.info("[%s] Found %d tokens", chain.key, len(chain_tokens))
                    found[chain.key] = chain_tokens
                    transition(
                        chain.key,
                        ChainStatus.COMPLETE,
                        tokens_found=len(chain_tokens),
                        progress=100,
                    )

        # Registry order, whatever order the chains finished in
        tokens = [token for chain in selected for token in found.get(chain.key, [])]

        if self.enricher is not None:
            self._enrich(tokens)

        classified, summary = classify_tokens(tokens)
        chain_statuses = [statuses[chain.key] for chain in selected]

        with self._lock:
            self._stats.tokens_scanned += len(classified)
            self._stats.chain_errors += sum(1 for s in chain_statuses if s.status == ChainStatus.ERROR)

        return ScanResult(
            address=address,
            timestamp=timestamp,
            chains=chain_statuses,
            tokens=classified,
            summary=summary,
            from_cache=False,
        )

    def _fetch_with_retry(
        self, fetcher: BaseBalanceFetcher, address: str, chain: ChainDescriptor
    ) -> List[Token]:
        delay = self.retry_delay
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fetcher.fetch(address, chain)
            except ChainUnavailable as e:
                if attempt == self.max_attempts:
                    raise
                logger.info(
                    "[%s] Attempt %d/%d failed (%s), retrying in %.1fs",
                    chain.key,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                self._sleep(delay)
                delay = min(delay * CHAIN_BACKOFF_MULTIPLIER, self.max_retry_delay)
        raise ChainUnavailable("Max retries exceeded", chain=chain.key)

    def _enrich(self, tokens: List[Token]) -> None:
        candidates = [token for token in tokens if self.enricher.should_enrich(token)]
        batches = _batches(candidates, self.enrich_batch_size)

        for index, batch in enumerate(batches):
            results: List[Tuple[Token, Optional[SecurityResult]]] = []
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {executor.submit(self.enricher.lookup, token): token for token in batch}
                for future in as_completed(futures):
                    token = futures[future]
                    try:
                        results.append((token, future.result()))
                    except (EnrichmentError, UnsupportedChain) as e:
                        logger.warning("[%s] Enrichment of %s failed: %s", token.chain, token.symbol, e)

            for token, security in results:
                if security is not None:
                    apply_security(token, security)

            if index < len(batches) - 1:
                self._sleep(self.enrich_batch_delay)
