"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from marketsync.core.json_utils import dumps

load_dotenv()

DEFAULT_NODE_URL = "https://fullnode.devnet.aptoslabs.com/v1"


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    node_url: str
    marketplace_addr: str
    module: str
    owner_address: str | None
    owner_page_limit: int
    join_auction_items: bool
    http_timeout: float
    batch_size: int
    inter_batch_delay_ms: int
    fetch_cooldown_sec: float
    reconcile_interval_sec: float
    clock_tick_sec: float
    expiry_scan_interval_sec: float
    tx_timeout_sec: float
    tx_poll_sec: float
    log_level: str
    log_file: str
    metrics_port: int

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        cfg = cls(
            node_url=os.getenv("MKT_NODE_URL", DEFAULT_NODE_URL),
            marketplace_addr=os.getenv("MKT_MARKETPLACE_ADDR", ""),
            module=os.getenv("MKT_MODULE", "nft_marketplace"),
            owner_address=os.getenv("MKT_OWNER_ADDRESS") or None,
            owner_page_limit=_int_env("MKT_OWNER_PAGE_LIMIT", 100),
            join_auction_items=env_bool("MKT_JOIN_AUCTION_ITEMS", True),
            http_timeout=_float_env("MKT_HTTP_TIMEOUT", 10.0),
            batch_size=_int_env("MKT_BATCH_SIZE", 5),
            inter_batch_delay_ms=_int_env("MKT_INTER_BATCH_DELAY_MS", 200),
            fetch_cooldown_sec=_float_env("MKT_FETCH_COOLDOWN_SEC", 5.0),
            reconcile_interval_sec=_float_env("MKT_RECONCILE_INTERVAL_SEC", 15.0),
            clock_tick_sec=_float_env("MKT_CLOCK_TICK_SEC", 1.0),
            expiry_scan_interval_sec=_float_env("MKT_EXPIRY_SCAN_INTERVAL_SEC", 30.0),
            tx_timeout_sec=_float_env("MKT_TX_TIMEOUT_SEC", 30.0),
            tx_poll_sec=_float_env("MKT_TX_POLL_SEC", 1.0),
            log_level=os.getenv("MKT_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("MKT_LOG_FILE", "marketsync.log"),
            metrics_port=_int_env("MKT_METRICS_PORT", 0),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    @property
    def inter_batch_delay_sec(self) -> float:
        return self.inter_batch_delay_ms / 1000.0

    def _validate(self) -> None:
        if not self.marketplace_addr:
            raise ValueError("MKT_MARKETPLACE_ADDR is required")
        if not self.marketplace_addr.startswith("0x"):
            raise ValueError("MKT_MARKETPLACE_ADDR must be a 0x-prefixed address")
        if self.batch_size <= 0:
            raise ValueError("MKT_BATCH_SIZE must be > 0")
        if self.inter_batch_delay_ms < 0:
            raise ValueError("MKT_INTER_BATCH_DELAY_MS must be >= 0")
        if self.fetch_cooldown_sec < 0:
            raise ValueError("MKT_FETCH_COOLDOWN_SEC must be >= 0")
        if self.reconcile_interval_sec <= 0 or self.clock_tick_sec <= 0 or self.expiry_scan_interval_sec <= 0:
            raise ValueError("Scheduler intervals must be > 0")
        if self.http_timeout <= 0 or self.tx_timeout_sec <= 0 or self.tx_poll_sec <= 0:
            raise ValueError("Timeouts must be > 0")
        if self.owner_page_limit <= 0:
            raise ValueError("MKT_OWNER_PAGE_LIMIT must be > 0")
        if not 0 <= self.metrics_port <= 65535:
            raise ValueError("MKT_METRICS_PORT must be 0-65535")

        logger = logging.getLogger("marketsync")
        if self.fetch_cooldown_sec < 2.0:
            logger.warning(
                f"WARNING: MKT_FETCH_COOLDOWN_SEC is {self.fetch_cooldown_sec}s. "
                "Bursty triggers may hit the fullnode rate limit."
            )
        if self.batch_size > 10:
            logger.warning(
                f"WARNING: MKT_BATCH_SIZE is {self.batch_size}. "
                "Public fullnodes throttle large bursts of view calls."
            )
        if self.reconcile_interval_sec < self.fetch_cooldown_sec:
            logger.warning(
                "WARNING: MKT_RECONCILE_INTERVAL_SEC is shorter than MKT_FETCH_COOLDOWN_SEC; "
                "some scheduled cycles will be skipped."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log the effective settings once at startup so overrides are obvious.
    """
    payload = {
        "event": "config_loaded",
        "node_url": cfg.node_url,
        "marketplace_addr": cfg.marketplace_addr,
        "scope": cfg.owner_address or "marketplace",
        "batch_size": cfg.batch_size,
        "inter_batch_delay_ms": cfg.inter_batch_delay_ms,
        "fetch_cooldown_sec": cfg.fetch_cooldown_sec,
        "reconcile_interval_sec": cfg.reconcile_interval_sec,
        "expiry_scan_interval_sec": cfg.expiry_scan_interval_sec,
    }
    logging.getLogger("marketsync").info(dumps(payload))
