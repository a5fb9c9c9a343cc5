"""
Scheduler that keeps daily market data in sync with the upstream provider.

A low-resolution APScheduler interval job polls the wall clock and launches a
full pass whenever a fire time of the configured cron expression falls inside
the last polling window. A pass pulls the instrument universe, walks it in
fixed-size batches, fetches each instrument's daily bar concurrently within a
batch and records per-instrument failures instead of aborting the run. Only
one pass may be in flight at a time; a second request fails fast with
``SyncInProgressError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.runtime_config import SchedulerConfig
from ..data_sources.types import (
    StockBasicInfo,
    StockBasicResponse,
    StockDailyData,
    SyncInProgressError,
)

if TYPE_CHECKING:
    from ..state import SyncMonitor

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y%m%d"
JOB_NAME = "daily_sync"
UNIVERSE_JOB_NAME = "stock_basic"
POLL_JOB_ID = "daily_sync_poll"


class MarketDataProvider(Protocol):
    async def fetch_stock_basic_info(self) -> StockBasicResponse:
        ...

    async def fetch_daily_data(self, symbol: str, start_date: str, end_date: str) -> List[StockDailyData]:
        ...


class MarketDataSink(Protocol):
    async def store_stock_basic(self, stocks: Sequence[StockBasicInfo]) -> int:
        ...

    async def store_daily_data(self, ts_code: str, bars: Sequence[StockDailyData]) -> int:
        ...


@dataclass(frozen=True)
class SyncResult:
    success: bool
    processed_stocks: int
    errors: Tuple[str, ...]
    duration: float
    timestamp: datetime
    total_stocks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processedStocks": self.processed_stocks,
            "totalStocks": self.total_stocks,
            "errors": list(self.errors),
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat(),
        }


class DataSyncScheduler:
    def __init__(
        self,
        manager: MarketDataProvider,
        config: Optional[SchedulerConfig] = None,
        *,
        sink: Optional[MarketDataSink] = None,
        monitor: Optional[SyncMonitor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        if self._config.batch_size <= 0:
            raise ValueError("batch_size must be greater than zero.")
        self._manager = manager
        self._sink = sink
        self._monitor = monitor
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(self._config.tzinfo))
        self._trigger = self._config.build_trigger()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._sync_running = False
        self._last_result: Optional[SyncResult] = None

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    # Timer -------------------------------------------------------------------

    def start(self) -> None:
        """Activate the polling timer. Must be called from a running event loop."""
        if not self._config.enabled:
            logger.info("Data sync scheduler is disabled; not starting.")
            return
        if self.is_scheduler_running():
            logger.debug("Data sync scheduler already running.")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise RuntimeError("DataSyncScheduler.start() requires a running event loop") from exc

        scheduler = AsyncIOScheduler(timezone=self._config.tzinfo, event_loop=loop)
        scheduler.add_job(
            self._poll,
            IntervalTrigger(seconds=self._config.poll_interval_seconds, timezone=self._config.tzinfo),
            id=POLL_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Data sync scheduler started (cron '%s', polling every %ss)",
            self._config.cron_expression,
            self._config.poll_interval_seconds,
        )

    def stop(self) -> None:
        """Cancel the polling timer. An in-flight pass keeps running."""
        scheduler = self._scheduler
        self._scheduler = None
        if scheduler is None:
            return
        if scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("Data sync scheduler stopped.")

    def is_scheduler_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def is_sync_running(self) -> bool:
        return self._sync_running

    def is_trigger_due(self, now: datetime) -> bool:
        """True when a cron fire time falls in ``(now - poll_interval, now]``."""
        window_start = now - timedelta(seconds=self._config.poll_interval_seconds)
        # The window is open at its start; a fire time equal to it belongs to the previous poll.
        fire_time = self._trigger.get_next_fire_time(None, window_start + timedelta(microseconds=1))
        return fire_time is not None and window_start < fire_time <= now

    async def _poll(self) -> None:
        if not self.is_trigger_due(self._now()):
            return
        try:
            result = await self.execute_daily_sync()
        except SyncInProgressError as exc:
            logger.info("Scheduled data sync skipped: %s", exc)
            return
        except Exception:  # pragma: no cover - defensive
            logger.exception("Scheduled data sync crashed")
            return
        logger.info(
            "Scheduled data sync finished: success=%s processed=%s/%s errors=%s",
            result.success,
            result.processed_stocks,
            result.total_stocks,
            len(result.errors),
        )

    # Sync pass ---------------------------------------------------------------

    async def trigger_manual_sync(self) -> SyncResult:
        logger.info("Manual data sync triggered.")
        return await self.execute_daily_sync()

    async def execute_daily_sync(self) -> SyncResult:
        if self._sync_running:
            raise SyncInProgressError()
        self._sync_running = True

        started = time.perf_counter()
        errors: List[str] = []
        processed = 0
        total = 0
        fetched_rows = 0
        attempted = 0

        try:
            if self._monitor:
                self._monitor.start(JOB_NAME, message="Syncing daily market data")

            stocks = await self._refresh_universe(errors)
            total = len(stocks)
            if self._monitor:
                self._monitor.update(JOB_NAME, total=total, completed=0)

            trade_date = self._now().strftime(DATE_FORMAT)
            batch_size = self._config.batch_size
            batches = [stocks[idx : idx + batch_size] for idx in range(0, total, batch_size)]
            total_batches = len(batches)
            logger.info(
                "Processing %s batches (batch size %s) covering %s stocks for %s.",
                total_batches,
                batch_size,
                total,
                trade_date,
            )

            for batch_index, batch in enumerate(batches, start=1):
                logger.info("Processing batch %s/%s (%s stocks)", batch_index, total_batches, len(batch))
                outcomes = await asyncio.gather(
                    *(self._sync_stock(stock, trade_date) for stock in batch),
                    return_exceptions=True,
                )
                attempted += len(batch)
                for stock, outcome in zip(batch, outcomes):
                    if isinstance(outcome, BaseException):
                        message = f"Stock {stock.ts_code} sync failed: {outcome}"
                        logger.warning(message)
                        errors.append(message)
                    else:
                        processed += 1
                        fetched_rows += outcome

                if self._monitor:
                    self._monitor.update(
                        JOB_NAME,
                        completed=attempted,
                        error_count=len(errors),
                        total_rows=fetched_rows,
                        message=f"Processed batch {batch_index}/{total_batches}",
                    )

                if batch_index < total_batches and self._config.batch_pause_seconds > 0:
                    await self._sleep(self._config.batch_pause_seconds)
        except Exception as exc:
            logger.error("Daily data sync failed: %s", exc)
            errors.append(f"Sync failed: {exc}")
        finally:
            self._sync_running = False

        elapsed = time.perf_counter() - started
        result = SyncResult(
            success=not errors,
            processed_stocks=processed,
            errors=tuple(errors),
            duration=elapsed,
            timestamp=self._now(),
            total_stocks=total,
        )
        self._last_result = result

        if self._monitor:
            self._monitor.finish(
                JOB_NAME,
                success=result.success,
                error_count=len(errors),
                total_rows=fetched_rows,
                message=f"Processed {processed}/{total} stocks",
                error="; ".join(errors[:3]) if errors else None,
                last_duration=elapsed,
            )
        logger.info(
            "Daily data sync completed in %.2fs: %s/%s stocks processed, %s errors.",
            elapsed,
            processed,
            total,
            len(errors),
        )
        return result

    async def _refresh_universe(self, errors: List[str]) -> List[StockBasicInfo]:
        """Fetch and persist the instrument universe, reported as the stock_basic job."""
        started = time.perf_counter()
        if self._monitor:
            self._monitor.start(UNIVERSE_JOB_NAME, message="Fetching stock universe")
        stocks: List[StockBasicInfo] = []
        failure: Optional[str] = "Universe fetch interrupted"
        try:
            response = await self._manager.fetch_stock_basic_info()
            stocks = list(response.data)
            logger.info("Fetched %s stocks for daily sync.", len(stocks))
            failure = None
            if self._sink is not None:
                try:
                    await self._sink.store_stock_basic(stocks)
                except Exception as exc:
                    logger.warning("Failed to store stock basics: %s", exc)
                    failure = f"Stock basic persistence failed: {exc}"
                    errors.append(failure)
        except Exception as exc:
            failure = f"Universe fetch failed: {exc}"
            raise
        finally:
            if self._monitor:
                self._monitor.finish(
                    UNIVERSE_JOB_NAME,
                    success=failure is None,
                    total_rows=len(stocks),
                    message=f"Fetched {len(stocks)} stocks",
                    error=failure,
                    last_duration=time.perf_counter() - started,
                )
        return stocks

    async def _sync_stock(self, stock: StockBasicInfo, trade_date: str) -> int:
        bars = await self._manager.fetch_daily_data(
            symbol=stock.ts_code,
            start_date=trade_date,
            end_date=trade_date,
        )
        if self._sink is not None:
            await self._sink.store_daily_data(stock.ts_code, bars)
        return len(bars)


__all__ = [
    "DataSyncScheduler",
    "MarketDataProvider",
    "MarketDataSink",
    "SyncResult",
]
