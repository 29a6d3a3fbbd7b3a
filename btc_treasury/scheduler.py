from __future__ import annotations

"""Recurring refresh cycles for Bitcoin prices, stock prices and holdings."""

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import Engine

from btc_treasury.config import (
    get_refresh_intervals,
    get_scheduler_max_workers,
    get_stock_market_hours_gating,
)
from btc_treasury.io.bitcoin_prices import update_price
from btc_treasury.io.holdings import update_companies_from_source
from btc_treasury.io.stock_prices import update_all_stock_prices
from btc_treasury.logic.market_hours import is_market_open


logger = logging.getLogger(__name__)

STATE_STOPPED = "stopped"
STATE_RUNNING = "running"


@dataclass(frozen=True)
class SchedulerSettings:
    """Cadence settings for the refresh cycles."""

    bitcoin_interval_minutes: int = 30
    stock_interval_minutes: int = 30
    holdings_interval_minutes: int = 360
    stock_market_hours_gating: bool = False
    max_workers: int = 1

    @classmethod
    def from_config(cls) -> "SchedulerSettings":
        bitcoin, stock, holdings = get_refresh_intervals()
        return cls(
            bitcoin_interval_minutes=bitcoin,
            stock_interval_minutes=stock,
            holdings_interval_minutes=holdings,
            stock_market_hours_gating=get_stock_market_hours_gating(),
            max_workers=get_scheduler_max_workers(),
        )

    @property
    def holdings_interval_hours(self) -> int:
        """Holdings cadence in whole hours, never below one."""
        return max(1, self.holdings_interval_minutes // 60)


class RefreshScheduler:
    """Owns the timers for the three refresh cycles and the startup burst.

    Each cycle swallows and logs its own failures so one failing upstream
    never stops future ticks. ``stop`` cancels future ticks only; work that
    is already running completes on its own.
    """

    def __init__(
        self,
        engine: Engine,
        settings: SchedulerSettings | None = None,
        bitcoin_refresh: Callable[[], object] | None = None,
        stock_refresh: Callable[[], object] | None = None,
        holdings_refresh: Callable[[], object] | None = None,
        market_open: Callable[[], bool] = is_market_open,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.engine = engine
        self.settings = settings or SchedulerSettings.from_config()
        self._bitcoin_refresh = bitcoin_refresh or (lambda: update_price(engine))
        self._stock_refresh = stock_refresh or (lambda: update_all_stock_prices(engine))
        self._holdings_refresh = holdings_refresh or (
            lambda: update_companies_from_source(engine)
        )
        self._market_open = market_open
        self._clock = clock
        self._scheduler: BackgroundScheduler | None = None
        self._last_stock_refresh: datetime | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return STATE_RUNNING if self._scheduler is not None else STATE_STOPPED

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self, run_startup: bool = True) -> None:
        """Register the recurring cycles and queue the startup burst.

        Args:
            run_startup (bool): Queue the immediate refresh pass.

        Returns:
            None

        Raises:
            RuntimeError: When the scheduler is already running.
        """
        with self._lock:
            if self._scheduler is not None:
                raise RuntimeError("Refresh scheduler is already running")
            settings = self.settings
            for label, minutes in (
                ("Bitcoin", settings.bitcoin_interval_minutes),
                ("stock", settings.stock_interval_minutes),
            ):
                if minutes < 1:
                    raise ValueError(f"{label} refresh interval must be at least 1 minute, got {minutes}")
            if settings.holdings_interval_minutes < 60:
                logger.warning(
                    "Holdings refresh interval of %d minutes is below one hour; using 1 hour",
                    settings.holdings_interval_minutes,
                )
            scheduler = BackgroundScheduler(
                executors={"default": ThreadPoolExecutor(max(1, settings.max_workers))},
                # Late ticks run once when the worker frees up instead of being dropped.
                job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
                timezone="UTC",
            )
            scheduler.add_job(
                self.run_bitcoin_cycle,
                IntervalTrigger(minutes=settings.bitcoin_interval_minutes, timezone="UTC"),
                id="bitcoin",
                name="Bitcoin price update",
            )
            scheduler.add_job(
                self.run_stock_cycle,
                IntervalTrigger(minutes=settings.stock_interval_minutes, timezone="UTC"),
                id="stocks",
                name="Stock price update",
            )
            scheduler.add_job(
                self.run_holdings_cycle,
                IntervalTrigger(hours=settings.holdings_interval_hours, timezone="UTC"),
                id="holdings",
                name="Holdings update",
            )
            if run_startup:
                scheduler.add_job(self.run_startup_burst, id="startup", name="Initial data updates")
            scheduler.start()
            self._scheduler = scheduler
        logger.info("Scheduler service started with the following tasks:")
        logger.info("- Bitcoin price update: every %d minutes", settings.bitcoin_interval_minutes)
        logger.info(
            "- Stock price update: every %d minutes (%s)",
            settings.stock_interval_minutes,
            "half frequency off-hours" if settings.stock_market_hours_gating else "always",
        )
        logger.info("- Holdings update: every %d hours", settings.holdings_interval_hours)

    def stop(self) -> None:
        """Cancel all future ticks; running jobs are left to finish."""
        with self._lock:
            scheduler = self._scheduler
            self._scheduler = None
        if scheduler is None:
            logger.debug("Scheduler service already stopped")
            return
        scheduler.shutdown(wait=False)
        logger.info("Scheduler service stopped")

    def job_ids(self) -> list[str]:
        """Return the ids of currently scheduled jobs."""
        scheduler = self._scheduler
        if scheduler is None:
            return []
        return [job.id for job in scheduler.get_jobs()]

    def run_startup_burst(self) -> None:
        """Refresh holdings, then Bitcoin, then stocks, tolerating each failure."""
        logger.info("Running initial data updates")
        try:
            self._holdings_refresh()
        except Exception as exc:
            logger.warning("Holdings refresh failed, using existing company data: %s", exc)
        self.run_bitcoin_cycle()
        logger.info("Fetching initial stock prices")
        self._refresh_stocks()

    def run_bitcoin_cycle(self) -> None:
        logger.info("Running scheduled Bitcoin price update")
        try:
            self._bitcoin_refresh()
        except Exception:
            logger.exception("Failed to update Bitcoin price")

    def run_stock_cycle(self) -> None:
        """Run one stock tick, applying the optional off-hours gating."""
        if self.settings.stock_market_hours_gating and not self._stock_refresh_due():
            logger.info("Market closed; skipping stock price update this tick")
            return
        logger.info("Running scheduled stock price update")
        self._refresh_stocks()

    def run_holdings_cycle(self) -> None:
        logger.info("Running scheduled holdings update")
        try:
            self._holdings_refresh()
        except Exception:
            logger.exception("Failed to update holdings data")

    def _refresh_stocks(self) -> None:
        self._last_stock_refresh = self._clock()
        try:
            self._stock_refresh()
        except Exception:
            logger.exception("Failed to update stock prices")

    def _stock_refresh_due(self) -> bool:
        """Return True when a gated stock refresh should run now."""
        if self._market_open():
            return True
        last = self._last_stock_refresh
        if last is None:
            return True
        off_hours_interval = timedelta(minutes=2 * self.settings.stock_interval_minutes)
        # Allow a little jitter in tick timing.
        return self._clock() - last >= off_hours_interval - timedelta(seconds=30)
