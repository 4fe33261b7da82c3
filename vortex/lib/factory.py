"""
Builders that wire scanners and batch engines from Settings.

Nothing in the library holds a process-wide instance; callers build what
they need here (or construct the pieces themselves in tests).
"""

import logging
from typing import Dict, Optional

from .balance_fetchers import BaseBalanceFetcher, create_fetcher
from .batch import BatchActionEngine, JsonFileHiddenTokenStore, MemoryHiddenTokenStore
from .bundler import RelayBundleSubmitter, SwapPlanner
from .cache import CacheBackend, DiskCacheBackend, MemoryCacheBackend, RedisCacheBackend, ResultCache
from .chains import ChainDescriptor, reference_chain, with_rpc_overrides
from .config import Settings
from .prices import CachedPriceOracle, CoinGeckoPriceOracle, PriceOracle
from .rpc_client import RpcClient
from .scanner import Scanner
from .security import GoPlusClient, TokenEnricher

logger = logging.getLogger(__name__)


def build_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "disk":
        return DiskCacheBackend(settings.cache_dir)
    if settings.cache_backend == "redis":
        if not settings.redis_url:
            raise ValueError("VORTEX_REDIS_URL is required for the redis cache backend")
        return RedisCacheBackend(url=settings.redis_url)
    return MemoryCacheBackend()


def build_chain_registry(settings: Settings) -> Dict[str, ChainDescriptor]:
    return with_rpc_overrides(settings.rpc_overrides)


def build_scanner(
    settings: Optional[Settings] = None,
    client: Optional[RpcClient] = None,
    prices: Optional[PriceOracle] = None,
    backend: Optional[CacheBackend] = None,
) -> Scanner:
    """
    Wire a Scanner: one cache backend shared by the scan, risk and price
    caches, CoinGecko prices, GoPlus enrichment and one fetcher per family.
    """
    settings = settings or Settings()
    chains = build_chain_registry(settings)
    backend = backend or build_cache_backend(settings)
    client = client or RpcClient()

    if prices is None:
        price_cache = ResultCache(backend, settings.price_cache_ttl, name="price")
        prices = CachedPriceOracle(
            CoinGeckoPriceOracle(settings.coingecko_url, settings.coingecko_api_key),
            price_cache,
            settings.price_cache_ttl,
        )

    fetchers: Dict[str, BaseBalanceFetcher] = {}
    for chain in chains.values():
        if chain.family not in fetchers:
            fetchers[chain.family] = create_fetcher(client, prices, chain)

    enricher = TokenEnricher(
        GoPlusClient(settings.goplus_url, settings.goplus_api_key),
        ResultCache(backend, settings.risk_cache_ttl, name="risk"),
        settings.risk_cache_ttl,
    )
    scan_cache = ResultCache(backend, settings.scan_cache_ttl, name="scan")

    logger.debug("Scanner wired with %s cache over %d chains", settings.cache_backend, len(chains))
    return Scanner(fetchers, chains=chains, cache=scan_cache, enricher=enricher)


def build_batch_engine(
    settings: Optional[Settings] = None,
    client: Optional[RpcClient] = None,
) -> BatchActionEngine:
    """
    Wire a BatchActionEngine on the reference chain.

    Bundled actions are only available when a relay URL is configured.
    """
    settings = settings or Settings()
    chain = reference_chain(build_chain_registry(settings))

    if settings.hidden_tokens_path:
        store = JsonFileHiddenTokenStore(settings.hidden_tokens_path)
    else:
        store = MemoryHiddenTokenStore()

    submitter = None
    planner = None
    if settings.relay_url:
        submitter = RelayBundleSubmitter(settings.relay_url, settings.relay_api_key)
        planner = SwapPlanner(client or RpcClient(), chain)

    return BatchActionEngine(
        submitter=submitter,
        planner=planner,
        hidden_store=store,
        sender=settings.smart_account,
        chain=chain,
    )
