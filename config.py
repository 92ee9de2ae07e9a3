import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()


def _parse_csv(value: str, *, lower: bool = False) -> List[str]:
    if not value:
        return []
    items = [x.strip() for x in value.split(",")]
    items = [x for x in items if x]
    if lower:
        items = [x.lower() for x in items]
    return items


def _parse_mapping(value: str) -> Dict[str, str]:
    """
    Parse "key=value,key2=value2" into a dict. Keys are lower-cased.
    """
    out: Dict[str, str] = {}
    for item in _parse_csv(value):
        if "=" not in item:
            continue
        k, v = item.split("=", 1)
        k = k.strip().lower()
        v = v.strip()
        if k and v:
            out[k] = v
    return out


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass
class Settings:
    # MongoDB
    MONGO_URI: str
    MONGO_DB: str

    # chains
    CHAIN_RPC_URLS: Dict[str, str]
    SOLANA_RPC_URL: str
    SUI_RPC_URL: str

    # external providers
    QUOTE_PROVIDER_URL: str
    QUOTE_PROVIDER_API_KEY: str
    API_MARKET_DATA_URL: str
    BRIDGE_STATUS_URL: str
    CEX_GATEWAY_URL: str
    NOTIFICATION_GATEWAY_URL: str
    TELEGRAM_BOT_TOKEN: str

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    API_VERSION: str = "1.0.0"
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])

    # fees / quotes / pricing
    PLATFORM_FEE_BPS: int = 40
    QUOTE_TTL_SECONDS: int = 30
    PRICE_CACHE_TTL_SECONDS: int = 10

    # schedulers / workers
    ALERT_CHECK_INTERVAL_SECONDS: int = 30
    LIMIT_ORDER_CHECK_INTERVAL_SECONDS: int = 15
    DCA_CHECK_INTERVAL_SECONDS: int = 60
    MONITOR_MAX_DROP_RECHECKS: int = 5
    JOB_RETENTION_SECONDS: int = 86_400

    # chain key -> USD stable token used for degraded price estimates
    STABLE_TOKEN_ADDRESSES: Dict[str, str] = field(default_factory=dict)

    # operator auth (Privy access tokens)
    PRIVY_APP_ID: str = ""
    PRIVY_JWKS_URL: str = ""
    OPERATOR_WALLETS: str = ""


@lru_cache()
def get_settings() -> Settings:
    stable_default = {
        "ethereum": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        "base": "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
        "arbitrum": "0xaf88d065e77c8cc2239327c5edb3a432268e5831",
        "solana": "EPjFWzd5GCDPLGauXxBd6jJmFr5uU76UvYNt3dtbxn8",
    }
    stable_map = _parse_mapping(os.getenv("STABLE_TOKEN_ADDRESSES", "")) or dict(stable_default)

    return Settings(
        # Mongo
        MONGO_URI=os.getenv("MONGO_URI", "mongodb://mongo:27017/omniswap"),
        MONGO_DB=os.getenv("MONGO_DB", "omniswap"),

        # Chains
        CHAIN_RPC_URLS=_parse_mapping(os.getenv("CHAIN_RPC_URLS", "")),
        SOLANA_RPC_URL=os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"),
        SUI_RPC_URL=os.getenv("SUI_RPC_URL", "https://fullnode.mainnet.sui.io:443"),

        # Providers
        QUOTE_PROVIDER_URL=os.getenv("QUOTE_PROVIDER_URL", "http://172.17.0.1:8090"),
        QUOTE_PROVIDER_API_KEY=os.getenv("QUOTE_PROVIDER_API_KEY", ""),
        API_MARKET_DATA_URL=os.getenv("API_MARKET_DATA_URL", "http://172.17.0.1:8081"),
        BRIDGE_STATUS_URL=os.getenv("BRIDGE_STATUS_URL", "https://li.quest/v1"),
        CEX_GATEWAY_URL=os.getenv("CEX_GATEWAY_URL", "http://172.17.0.1:8092"),
        NOTIFICATION_GATEWAY_URL=os.getenv("NOTIFICATION_GATEWAY_URL", "http://172.17.0.1:8093"),
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        API_VERSION=os.getenv("API_VERSION", "1.0.0"),
        CORS_ORIGINS=_parse_csv(os.getenv("CORS_ORIGINS", "")) or ["*"],

        PLATFORM_FEE_BPS=_int_env("PLATFORM_FEE_BPS", 40),
        QUOTE_TTL_SECONDS=_int_env("QUOTE_TTL_SECONDS", 30),
        PRICE_CACHE_TTL_SECONDS=_int_env("PRICE_CACHE_TTL_SECONDS", 10),

        ALERT_CHECK_INTERVAL_SECONDS=_int_env("ALERT_CHECK_INTERVAL_SECONDS", 30),
        LIMIT_ORDER_CHECK_INTERVAL_SECONDS=_int_env("LIMIT_ORDER_CHECK_INTERVAL_SECONDS", 15),
        DCA_CHECK_INTERVAL_SECONDS=_int_env("DCA_CHECK_INTERVAL_SECONDS", 60),
        MONITOR_MAX_DROP_RECHECKS=_int_env("MONITOR_MAX_DROP_RECHECKS", 5),
        JOB_RETENTION_SECONDS=_int_env("JOB_RETENTION_SECONDS", 86_400),

        STABLE_TOKEN_ADDRESSES=stable_map,

        PRIVY_APP_ID=os.getenv("PRIVY_APP_ID", ""),
        PRIVY_JWKS_URL=os.getenv("PRIVY_JWKS_URL", ""),
        OPERATOR_WALLETS=os.getenv("OPERATOR_WALLETS", ""),
    )


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logging for the API and the worker process.
    """
    lvl = (level or get_settings().LOG_LEVEL or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, lvl, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
