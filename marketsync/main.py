"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

import httpx
from prometheus_client import start_http_server

from marketsync.config.config import Settings
from marketsync.core.event_bus import Event, EventBus, EventType
from marketsync.execution.batch_executor import BatchExecutorConfig, ThrottledBatchExecutor
from marketsync.execution.cooldown import CooldownConfig, CooldownGate
from marketsync.execution.expiry_watcher import ExpiryWatcher
from marketsync.execution.reconciliation_service import ReconciliationConfig, ReconciliationEngine
from marketsync.infra.ledger_client import LedgerQueryClient, WalletProvider
from marketsync.infra.logging_cfg import build_logger, log_event
from marketsync.monitoring.metrics_rich import SyncMetrics
from marketsync.orchestrator.polling_scheduler import PollingScheduler, SchedulerConfig
from marketsync.state.snapshot_store import SnapshotStore

log = logging.getLogger("marketsync")


async def main(wallet: Optional[WalletProvider] = None) -> None:
    cfg = Settings.load()
    build_logger(
        "marketsync",
        level=getattr(logging, cfg.log_level, logging.INFO),
        file_path=cfg.log_file or None,
    )

    # One shared HTTP/2 client for every ledger read and transaction poll
    shared_client = httpx.AsyncClient(base_url=cfg.node_url.rstrip("/"), http2=True, timeout=cfg.http_timeout)
    client = LedgerQueryClient(
        cfg.node_url,
        cfg.marketplace_addr,
        module=cfg.module,
        wallet=wallet,
        tx_timeout=cfg.tx_timeout_sec,
        tx_poll_interval=cfg.tx_poll_sec,
        client=shared_client,
    )

    metrics = SyncMetrics()
    if cfg.metrics_port > 0:
        start_http_server(cfg.metrics_port, registry=metrics.get_registry())
        log_event(log, "metrics_server_started", port=cfg.metrics_port)

    bus = EventBus()
    store = SnapshotStore()
    engine = ReconciliationEngine(
        client=client,
        store=store,
        config=ReconciliationConfig(
            marketplace_addr=cfg.marketplace_addr,
            owner=cfg.owner_address,
            owner_page_limit=cfg.owner_page_limit,
            join_auction_items=cfg.join_auction_items,
        ),
        executor=ThrottledBatchExecutor(BatchExecutorConfig(
            batch_size=cfg.batch_size,
            inter_batch_delay_sec=cfg.inter_batch_delay_sec,
        )),
        cooldown=CooldownGate(CooldownConfig(min_interval_sec=cfg.fetch_cooldown_sec)),
        event_bus=bus,
        metrics=metrics,
    )

    watcher: Optional[ExpiryWatcher] = None
    if client.can_write:
        watcher = ExpiryWatcher(
            client,
            store,
            cfg.marketplace_addr,
            on_refresh=engine.refresh_auctions,
            metrics=metrics,
            event_bus=bus,
        )
    else:
        log.warning("No wallet provider configured; overdue auctions will not be finalized")

    scheduler = PollingScheduler(
        engine,
        store,
        watcher=watcher,
        event_bus=bus,
        config=SchedulerConfig(
            reconcile_interval_sec=cfg.reconcile_interval_sec,
            clock_tick_sec=cfg.clock_tick_sec,
            expiry_scan_interval_sec=cfg.expiry_scan_interval_sec,
        ),
    )

    def on_published(_event: Event) -> None:
        snap = store.current
        now = scheduler.cursor.now
        log_event(
            log,
            "marketplace_status",
            generation=snap.generation,
            items=len(snap.items),
            buy_now=len(snap.buy_now()),
            live_auctions=len(snap.live_auctions(now)),
            overdue=len(snap.overdue_auctions(now)),
        )

    bus.subscribe(EventType.SNAPSHOT_PUBLISHED, on_published, name="status_log")

    log_event(log, "startup", marketplace=cfg.marketplace_addr, scope=cfg.owner_address or "marketplace")

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            pass

    await scheduler.start()
    try:
        await stop_requested.wait()
        log.info("Shutdown signal received, cleaning up...")
    except asyncio.CancelledError:
        log.info("Cancelled, cleaning up...")
    finally:
        await scheduler.stop()
        await bus.drain()
        await client.close()
        await shared_client.aclose()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
