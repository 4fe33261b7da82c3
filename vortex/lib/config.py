"""
Runtime settings read from the environment (and an optional .env file).
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .chains import CHAINS
from .prices import DEFAULT_COINGECKO_URL
from .security import DEFAULT_GOPLUS_URL

CACHE_BACKENDS = ("memory", "disk", "redis")
RPC_ENV_PREFIX = "VORTEX_RPC_"


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass
class Settings:
    goplus_url: str = DEFAULT_GOPLUS_URL
    goplus_api_key: Optional[str] = None
    coingecko_url: str = DEFAULT_COINGECKO_URL
    coingecko_api_key: Optional[str] = None
    cache_backend: str = "memory"
    cache_dir: str = ".vortex-cache"
    redis_url: Optional[str] = None
    scan_cache_ttl: int = 300
    risk_cache_ttl: int = 3600
    price_cache_ttl: int = 60
    relay_url: Optional[str] = None
    relay_api_key: Optional[str] = None
    smart_account: Optional[str] = None
    hidden_tokens_path: Optional[str] = None
    rpc_overrides: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
    ) -> "Settings":
        """
        Build settings from environment variables.

        When env is None the process environment is used, after loading
        dotenv_path (or a .env found from the working directory) without
        overriding variables that are already set.

        Raises:
            ValueError: For malformed integers or an unknown cache backend
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        cache_backend = env.get("VORTEX_CACHE_BACKEND", "memory").strip().lower() or "memory"
        if cache_backend not in CACHE_BACKENDS:
            raise ValueError(
                f"VORTEX_CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}, got {cache_backend!r}"
            )

        rpc_overrides = {}
        for name, value in env.items():
            if name.startswith(RPC_ENV_PREFIX) and value:
                chain = name[len(RPC_ENV_PREFIX) :].lower()
                if chain not in CHAINS:
                    raise ValueError(f"{name} names an unsupported chain")
                rpc_overrides[chain] = value

        return cls(
            goplus_url=env.get("VORTEX_GOPLUS_URL") or DEFAULT_GOPLUS_URL,
            goplus_api_key=env.get("VORTEX_GOPLUS_API_KEY") or None,
            coingecko_url=env.get("VORTEX_COINGECKO_URL") or DEFAULT_COINGECKO_URL,
            coingecko_api_key=env.get("VORTEX_COINGECKO_API_KEY") or None,
            cache_backend=cache_backend,
            cache_dir=env.get("VORTEX_CACHE_DIR") or ".vortex-cache",
            redis_url=env.get("VORTEX_REDIS_URL") or None,
            scan_cache_ttl=_int_setting(env, "VORTEX_SCAN_CACHE_TTL", 300),
            risk_cache_ttl=_int_setting(env, "VORTEX_RISK_CACHE_TTL", 3600),
            price_cache_ttl=_int_setting(env, "VORTEX_PRICE_CACHE_TTL", 60),
            relay_url=env.get("VORTEX_RELAY_URL") or None,
            relay_api_key=env.get("VORTEX_RELAY_API_KEY") or None,
            smart_account=env.get("VORTEX_SMART_ACCOUNT") or None,
            hidden_tokens_path=env.get("VORTEX_HIDDEN_TOKENS_PATH") or None,
            rpc_overrides=rpc_overrides,
        )
