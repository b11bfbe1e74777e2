#!/usr/bin/env python3
"""
Signal Trader CLI: scan | run | reconcile
Usage:
  python main.py scan [--config config.yaml]
  python main.py run [--config config.yaml]
  python main.py reconcile [--config config.yaml]
"""

from __future__ import annotations
import argparse
import logging
import sys
import time
from datetime import timedelta
from pathlib import Path

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from signal_trader.core.config import Config, load_config
from signal_trader.core.errors import InfrastructureError
from signal_trader.core.logger import setup_logging
from signal_trader.execution.auto import AutoTrader
from signal_trader.execution.base import ExchangeClient
from signal_trader.execution.engine import OrderExecutor
from signal_trader.risk.sizer import PositionSizer
from signal_trader.scanner.orchestrator import ScanOrchestrator
from signal_trader.store.cooldown import CooldownStore, InMemoryCooldownStore, SqliteCooldownStore
from signal_trader.store.executions import ExecutionLog
from signal_trader.store.signals import SignalStore

logger = logging.getLogger("signal_trader")


def build_client(config: Config) -> ExchangeClient:
    if config.exchange == "binance":
        from signal_trader.execution.binance_futures import BinanceFuturesClient
        return BinanceFuturesClient(
            config.api_key,
            config.api_secret,
            testnet=config.use_testnet,
            timeout_s=config.request_timeout_s,
            instrument_cache_ttl_s=config.instrument_cache_ttl_s,
        )
    if config.exchange != "bybit":
        raise InfrastructureError(f"Unsupported exchange: {config.exchange}")
    from signal_trader.execution.bybit import BybitClient
    return BybitClient(
        config.api_key,
        config.api_secret,
        testnet=config.use_testnet,
        recv_window_ms=config.recv_window_ms,
        timeout_s=config.request_timeout_s,
        instrument_cache_ttl_s=config.instrument_cache_ttl_s,
    )


def build_cooldown(config: Config) -> CooldownStore:
    if config.durable_cooldown:
        return SqliteCooldownStore(ROOT / config.db_path)
    return InMemoryCooldownStore()


def build_executor(config: Config, client: ExchangeClient) -> OrderExecutor:
    return OrderExecutor(
        client,
        ExecutionLog(ROOT / config.db_path),
        sizer=PositionSizer(min_order_value=config.min_order_value_usd, max_leverage=config.max_leverage),
        idempotency_window=timedelta(seconds=config.idempotency_window_s),
    )


def build_scanner(
    config: Config,
    client: ExchangeClient,
    cooldown: CooldownStore,
    executor: OrderExecutor | None = None,
) -> ScanOrchestrator:
    signals = SignalStore(ROOT / config.db_path)
    on_signal = None
    if executor is not None:
        on_signal = AutoTrader.from_config(config, executor, signals).handle
    return ScanOrchestrator.from_config(config, client, cooldown, signals, on_signal=on_signal)


def run_scan(config_path: Path | None) -> int:
    """Run a single scan and print accepted signals."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, ROOT / config.log_dir, config.log_file)
    client = None
    try:
        client = build_client(config)
        executor = build_executor(config, client) if config.auto_execute else None
        scanner = build_scanner(config, client, build_cooldown(config), executor)
        report = scanner.scan()
    except InfrastructureError as e:
        logger.error("Scan failed: %s", e)
        return 1
    finally:
        if client is not None:
            client.close()
    print("\n--- Scan Results ---")
    print(report.summary())
    for s in report.signals:
        print(
            f"#{s.id} {s.symbol} {s.timeframe} {s.direction.value} entry={s.entry_price:.6g} "
            f"SL={s.stop_loss:.6g} TP={s.take_profit:.6g} conf={s.confidence:.1f} grade={s.grade.value} "
            f"R:R={s.risk_reward:.2f}"
        )
    for label, reason in report.skipped.items():
        print(f"skipped {label}: {reason}")
    return 0


def run_loop(config_path: Path | None) -> int:
    """Scan every scan_interval_s; auto-execute and reconcile when enabled."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, ROOT / config.log_dir, config.log_file)
    try:
        client = build_client(config)
    except InfrastructureError as e:
        logger.error("Startup failed: %s", e)
        return 1
    executor = build_executor(config, client) if config.auto_execute else None
    scanner = build_scanner(config, client, build_cooldown(config), executor)
    logger.info(
        "Signal trader starting | %s | testnet=%s | auto_execute=%s | symbols=%d | timeframes=%s",
        config.exchange, config.use_testnet, config.auto_execute,
        len(config.scan_symbols()), ",".join(config.timeframes),
    )
    try:
        while True:
            started = time.monotonic()
            try:
                scanner.scan()
                if executor is not None:
                    executor.reconcile()
            except InfrastructureError as e:
                logger.error("Scan aborted: %s", e)
            except Exception as e:
                logger.exception("Scan loop error: %s", e)
            elapsed = time.monotonic() - started
            time.sleep(max(1.0, config.scan_interval_s - elapsed))
    except KeyboardInterrupt:
        logger.info("Shutdown by user")
    finally:
        client.close()
    return 0


def run_reconcile(config_path: Path | None) -> int:
    """Mark logged orders closed when the exchange reports no open position."""
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, ROOT / config.log_dir, config.log_file)
    try:
        client = build_client(config)
    except InfrastructureError as e:
        logger.error("Reconcile failed: %s", e)
        return 1
    try:
        closed = build_executor(config, client).reconcile()
    except InfrastructureError as e:
        logger.error("Reconcile failed: %s", e)
        return 1
    finally:
        client.close()
    print(f"Closed {len(closed)} order(s)")
    for order_id in closed:
        print(f"  {order_id}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Signal Trader CLI")
    parser.add_argument("mode", choices=["scan", "run", "reconcile"], help="Single scan, scan loop, or reconcile orders")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    args = parser.parse_args()
    if args.mode == "scan":
        return run_scan(args.config)
    if args.mode == "reconcile":
        return run_reconcile(args.config)
    return run_loop(args.config)


if __name__ == "__main__":
    sys.exit(main())
