from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence

from .aggregator import InstrumentAnalyzer
from .config import BotConfig
from .dedup import AlertDeduplicator
from .errors import FetchExhausted
from .log_setup import SYMBOL_ID, TRACE_ID
from .models import SweepReport
from .notifier import Notifier, format_alert
from .state_store import SubscriberStore

logger = logging.getLogger("trend_sweep.scheduler")


def compute_wait(interval: float, last_sweep_start: Optional[float], now: float) -> float:
    """Time left until the next sweep; sweep duration is subtracted so periods don't drift."""
    if last_sweep_start is None:
        return 0.0
    return max(0.0, interval - (now - last_sweep_start))


def batched(items: Sequence[str], size: int) -> Iterator[List[str]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


class Scheduler:
    """
    Hourly sweep loop over the instrument universe.

    WAITING -> SWEEPING -> WAITING. Batches and the instruments inside them run
    strictly in order; a failing instrument is logged and skipped, never
    aborting the sweep.
    """

    def __init__(
        self,
        cfg: BotConfig,
        analyzer: InstrumentAnalyzer,
        deduplicator: AlertDeduplicator,
        subscribers: SubscriberStore,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cfg = cfg
        self.analyzer = analyzer
        self.deduplicator = deduplicator
        self.subscribers = subscribers
        self.notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self.last_sweep_start: Optional[float] = None
        self.sweeps_completed = 0
        self._stop = asyncio.Event()
        self._sweep_lock = asyncio.Lock()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def sweep_running(self) -> bool:
        return self._sweep_lock.locked()

    async def deliver(self, text: str) -> int:
        delivered = 0
        for chat_id in self.subscribers.active_chat_ids():
            try:
                await self.notifier.send_text(chat_id, text)
            except Exception as e:
                logger.error(f"Alert delivery failed for a subscriber: {e}")
                continue
            self.subscribers.mark_alerted(chat_id, self._clock())
            delivered += 1
        return delivered

    async def _process_symbol(self, symbol: str, report: SweepReport) -> None:
        token = SYMBOL_ID.set(symbol)
        try:
            analysis = await self.analyzer.analyze(symbol)
        except FetchExhausted as e:
            logger.warning(f"Skipping {symbol}: {e}")
            report.skipped.append((symbol, str(e)))
            return
        except Exception as e:
            logger.exception(f"Skipping {symbol}: unexpected error {e}")
            report.skipped.append((symbol, str(e)))
            return
        finally:
            SYMBOL_ID.reset(token)

        report.analyses.append(analysis)
        transition = self.deduplicator.observe(symbol, analysis)
        if transition.notify:
            logger.info(f"🔔 {symbol} alignment change | {transition.previous} -> {transition.current}")
            if await self.deliver(format_alert(analysis, transition.previous)) > 0:
                report.alerts_sent += 1

    async def run_sweep(self) -> SweepReport:
        """One pass over the universe; concurrent callers queue behind the running sweep."""
        async with self._sweep_lock:
            return await self._sweep()

    async def _sweep(self) -> SweepReport:
        trace = TRACE_ID.set(uuid.uuid4().hex[:8])
        started = self._clock()
        report = SweepReport(started_at=started)
        symbols = list(self.cfg.SYMBOLS)
        batches = list(batched(symbols, self.cfg.BATCH_SIZE))
        logger.info(f"🚀 Sweep started | Symbols: {len(symbols)} | Batches: {len(batches)}")

        try:
            for idx, batch in enumerate(batches):
                for symbol in batch:
                    await self._process_symbol(symbol, report)
                if idx < len(batches) - 1 and self.cfg.BATCH_DELAY_SECONDS > 0:
                    await self._sleep(self.cfg.BATCH_DELAY_SECONDS)

            report.duration = self._clock() - started
            logger.info(
                f"✅ Sweep complete | Duration: {report.duration:.1f}s | "
                f"Analyzed: {len(report.analyses)}/{len(symbols)} | "
                f"Skipped: {len(report.skipped)} | Alerts: {report.alerts_sent}"
            )
            return report
        finally:
            TRACE_ID.reset(trace)

    async def run(self, max_sweeps: Optional[int] = None) -> None:
        """Sweep, wait out the rest of the interval, repeat until stopped."""
        interval = self.cfg.CHECK_INTERVAL_SECONDS
        if not self.cfg.RUN_ON_STARTUP:
            self.last_sweep_start = self._clock()

        runs = 0
        while not self.stopped:
            wait = compute_wait(interval, self.last_sweep_start, self._clock())
            if wait > 0:
                logger.info(f"⏳ Next sweep in {wait:.0f}s")
                await self._sleep(wait)
                if self.stopped:
                    break

            self.last_sweep_start = self._clock()
            try:
                await self.run_sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"❌ Sweep aborted: {e}")
            self.sweeps_completed += 1
            runs += 1
            if max_sweeps is not None and runs >= max_sweeps:
                break
