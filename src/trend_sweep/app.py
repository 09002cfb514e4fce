#!/usr/bin/env python3
"""
Process entry for the trend sweep bot.

Loads and validates configuration, wires the fetch / analysis / alert
components together, starts the health endpoint and runs the hourly sweep
loop until SIGINT or SIGTERM.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from typing import List, Optional

import psutil

from . import __version__
from .aggregator import InstrumentAnalyzer
from .bot import TrendAlertBot
from .config import BotConfig, load_config
from .dedup import AlertDeduplicator
from .errors import ConfigError
from .fetcher import KlinesClient, RetryingFetcher, SessionManager
from .health import HealthHttpServer
from .log_setup import setup_logging
from .notifier import LoggingNotifier, Notifier, TelegramNotifier
from .rate_limiter import RateLimiter
from .scheduler import Scheduler
from .state_store import AlertStateStore, SubscriberStore

logger = logging.getLogger("trend_sweep.app")

try:
    import uvloop
    UVLOOP_ENABLED = True
except ImportError:
    UVLOOP_ENABLED = False


@dataclass
class Components:
    sessions: SessionManager
    rate_limiter: RateLimiter
    fetcher: RetryingFetcher
    analyzer: InstrumentAnalyzer
    alert_states: AlertStateStore
    subscribers: SubscriberStore
    notifier: Notifier
    scheduler: Scheduler
    bot: TrendAlertBot


def build_components(cfg: BotConfig) -> Components:
    sessions = SessionManager(cfg)
    rate_limiter = RateLimiter(cfg.WEIGHT_BUDGET_PER_MINUTE, cfg.RATE_LIMIT_SAFETY_FACTOR)
    fetcher = RetryingFetcher(
        KlinesClient(cfg.MARKET_API_BASE, sessions),
        rate_limiter,
        max_retries=cfg.FETCH_MAX_RETRIES,
        backoff_seconds=cfg.RETRY_BACKOFF_SECONDS,
        quota_cooldown_seconds=cfg.QUOTA_COOLDOWN_SECONDS,
    )
    analyzer = InstrumentAnalyzer(
        fetcher,
        cfg.TIMEFRAMES,
        candle_limit=cfg.CANDLE_LIMIT,
        trend_period=cfg.TREND_EMA_PERIOD,
        baseline_period=cfg.BASELINE_PERIOD,
        buffer_pct=cfg.NOISE_BUFFER_PCT,
    )
    alert_states = AlertStateStore()
    subscribers = SubscriberStore(cfg.TELEGRAM_CHAT_IDS)

    if cfg.notifications_enabled:
        notifier: Notifier = TelegramNotifier(
            cfg.TELEGRAM_BOT_TOKEN, rate_limiter, sessions, retries=cfg.TELEGRAM_RETRIES
        )
    else:
        logger.warning("⚠️ Notifications in dry-run mode (DRY_RUN_MODE set or no TELEGRAM_BOT_TOKEN)")
        notifier = LoggingNotifier()

    scheduler = Scheduler(cfg, analyzer, AlertDeduplicator(alert_states), subscribers, notifier)
    bot = TrendAlertBot(cfg, analyzer, scheduler, subscribers, notifier)
    return Components(
        sessions=sessions,
        rate_limiter=rate_limiter,
        fetcher=fetcher,
        analyzer=analyzer,
        alert_states=alert_states,
        subscribers=subscribers,
        notifier=notifier,
        scheduler=scheduler,
        bot=bot,
    )


def log_resource_usage(stage: str) -> None:
    try:
        process = psutil.Process(os.getpid())
        mem_mb = process.memory_info().rss / 1024 / 1024
        cpu_percent = process.cpu_percent(interval=0.1)
        logger.info(f"📊 Resource Usage [{stage}] | Memory: {mem_mb:.1f}MB | CPU: {cpu_percent:.1f}%")
    except psutil.Error as e:
        logger.debug(f"Could not log resource usage: {e}")


async def run(cfg: BotConfig, once: bool = False) -> int:
    components = build_components(cfg)
    scheduler = components.scheduler
    health: Optional[HealthHttpServer] = None

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _request_shutdown(signame: str) -> None:
        logger.warning(f"⚠️ Received {signame} – shutting down")
        scheduler.stop()
        if main_task is not None:
            main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        if cfg.HEALTH_SERVER_ENABLED and not once:
            health = HealthHttpServer(cfg.HEALTH_HOST, cfg.HEALTH_PORT)
            await health.start()

        if once:
            report = await components.bot.run_periodic_check()
            return 0 if report.analyses or not cfg.SYMBOLS else 2

        await scheduler.run()
        return 0
    except asyncio.CancelledError:
        return 130
    finally:
        logger.info("🧹 Shutting down persistent connections...")
        if health is not None:
            await health.stop()
        await components.sessions.close()
        stats = components.fetcher.get_stats()
        logger.info(
            f"📡 Fetch statistics | Candles: {stats['candles_success']}✅/{stats['candles_failed']}❌ | "
            f"Retries: {stats['retries']} | Rate limiter waits: {stats['rate_limiter']['total_waits']}"
        )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="trend-sweep",
        description="Multi-timeframe EMA/baseline alignment alerts",
    )
    parser.add_argument("--config", help="Path to JSON config (default: $CONFIG_FILE or config_trend.json)")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    parser.add_argument("--validate-only", action="store_true", help="Validate config and exit")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    return parser.parse_args(argv)


def cli(argv: Optional[List[str]] = None) -> int:
    """
    Returns:
        0: Success
        1: Configuration error
        2: Sweep produced no analyses
        3: Unhandled exception
        130: Interrupted (SIGINT/SIGTERM)
    """
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"❌ ERROR: {e}", file=sys.stderr)
        return 1

    if args.debug:
        cfg = cfg.model_copy(update={"DEBUG_MODE": True})
    setup_logging(cfg)

    if args.validate_only:
        logger.info(
            f"Configuration validation passed | Symbols: {len(cfg.SYMBOLS)} | "
            f"Timeframes: {','.join(cfg.TIMEFRAMES)}"
        )
        return 0

    if UVLOOP_ENABLED:
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())

    logger.info(
        f"🚀 Bot v{__version__} starting | uvloop: {'enabled' if UVLOOP_ENABLED else 'disabled'} | "
        f"Symbols: {len(cfg.SYMBOLS)} | Timeframes: {','.join(cfg.TIMEFRAMES)} | "
        f"Interval: {cfg.CHECK_INTERVAL_SECONDS:.0f}s | Min request spacing: {cfg.min_request_interval * 1000:.0f}ms"
    )
    log_resource_usage("startup")
    start_time = time.time()

    try:
        code = asyncio.run(run(cfg, once=args.once))
    except KeyboardInterrupt:
        code = 130
    except Exception as exc:
        logger.exception(f"❌ UNHANDLED EXCEPTION: {exc}")
        code = 3

    logger.info(f"⏱️ Uptime: {time.time() - start_time:.1f}s | Exit code: {code}")
    log_resource_usage("complete")
    return code
