"""Scheduler service - drives periodic monitoring ticks.

Each tick:
1. reads the due-for-resume and due-for-check sets from the registry,
2. resumes suspended sites whose pause window has elapsed (no probe),
3. probes the due sites through the shared engine with bounded
   concurrency and a short pause after each probe.

Ticks are single-flight: a tick that fires while the previous one is still
running is skipped, never queued. One tick runs immediately at start-up.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.result import CheckResult
from ..core.site import MonitoredSite
from ..core.state_machine import is_due_for_check, is_due_for_resume, resume
from ..utils.clock import utcnow
from .checker import CheckerService
from .engine import EngineFailure
from .registry import RegistryFailure, SiteRegistry
from .site_monitor import SiteMonitor

logger = logging.getLogger(__name__)

# Default scheduler tick interval in seconds
SCHEDULER_TICK_SECONDS = 60

# Default probes in flight per tick
MAX_CONCURRENT_PROBES = 2

# Default pause after each probe, in seconds
INTER_PROBE_DELAY_SECONDS = 1.0


@dataclass
class TickReport:
    """What one tick did."""
    resumed: int = 0
    checked: int = 0
    skipped: int = 0
    failed: int = 0
    engine_restarted: bool = False
    aborted: bool = False
    duration_seconds: float = 0.0


class SchedulerService:
    """Service for scheduling and running periodic checks."""

    def __init__(
        self,
        registry: SiteRegistry,
        checker: CheckerService,
        monitor: SiteMonitor,
        tick_interval_seconds: int = SCHEDULER_TICK_SECONDS,
        probe_timeout_ms: int = 30_000,
        max_concurrent_probes: int = MAX_CONCURRENT_PROBES,
        inter_probe_delay_seconds: float = INTER_PROBE_DELAY_SECONDS,
    ):
        if max_concurrent_probes < 1:
            raise ValueError("max_concurrent_probes must be at least 1")
        self.registry = registry
        self.checker = checker
        self.engine = checker.engine
        self.monitor = monitor
        self.tick_interval_seconds = tick_interval_seconds
        self.probe_timeout_ms = probe_timeout_ms
        self.max_concurrent_probes = max_concurrent_probes
        self.inter_probe_delay_seconds = inter_probe_delay_seconds

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._tick_in_progress = False
        self._idle = asyncio.Event()
        self._idle.set()

        self._started_at = time.monotonic()
        self._probes_completed = 0
        self._ticks_run = 0
        self._ticks_skipped = 0
        self._engine_restarts = 0
        self._last_tick_at: Optional[datetime] = None

    def start(self):
        """Start the scheduler; the first tick fires immediately."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self.tick_interval_seconds),
            id="run_tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.tick_interval_seconds,
            next_run_time=datetime.now(),
        )
        self.scheduler.add_job(
            self.log_stats,
            trigger=IntervalTrigger(hours=1),
            id="log_stats",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (tick={self.tick_interval_seconds}s, "
            f"max_concurrent={self.max_concurrent_probes})"
        )

    async def stop(self):
        """Stop scheduling and wait for an in-flight tick to finish."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            if self._tick_in_progress:
                logger.info("Waiting for current tick to finish...")
            await self._idle.wait()
            logger.info("Scheduler stopped")
            self.log_stats()

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    async def run_tick(self) -> Optional[TickReport]:
        """Run one tick. Returns None if another tick is still running."""
        if self._tick_in_progress:
            self._ticks_skipped += 1
            logger.warning("Tick already in progress, skipping")
            return None

        self._tick_in_progress = True
        self._idle.clear()
        t0 = time.perf_counter()
        report = TickReport()
        try:
            now = utcnow()
            self._last_tick_at = now
            try:
                resumable = await self.registry.list_resumable(now)
                due = await self.registry.list_due(now)
            except RegistryFailure as e:
                logger.error(f"Registry unavailable, aborting tick: {e}")
                report.aborted = True
                return report

            try:
                await self._resume_sites(resumable, now, report)
            except RegistryFailure as e:
                logger.error(f"Registry failure while resuming sites, aborting tick: {e}")
                report.aborted = True
                return report

            due = [site for site in due if is_due_for_check(site, now)]
            if due:
                logger.debug(f"Checking {len(due)} due site(s)")
                await self._check_sites(due, report)
            return report
        finally:
            report.duration_seconds = round(time.perf_counter() - t0, 2)
            self._ticks_run += 1
            self._tick_in_progress = False
            self._idle.set()
            if report.resumed or report.checked or report.failed or report.aborted:
                logger.info(
                    f"Tick completed in {report.duration_seconds}s: checked={report.checked} "
                    f"resumed={report.resumed} skipped={report.skipped} failed={report.failed}"
                    f"{' (aborted)' if report.aborted else ''}"
                )

    async def _resume_sites(self, sites: List[MonitoredSite], now: datetime, report: TickReport):
        for site in sites:
            if not is_due_for_resume(site, now):
                continue
            stored = await self.registry.upsert(resume(site, now))
            if stored is not None:
                report.resumed += 1
                logger.info(f"Resumed monitoring for {site.name}")

    async def _check_sites(self, sites: List[MonitoredSite], report: TickReport):
        """Probe ``sites`` with bounded concurrency.

        A probe that fails on its own is recorded and the tick carries on.
        An engine failure or registry failure stops new probes for the rest
        of the tick; the engine is restarted once the in-flight probes drain.
        """
        try:
            await self.engine.ensure_healthy()
        except EngineFailure as e:
            logger.error(f"Probe engine unavailable: {e}")
            report.skipped += len(sites)
            await self._restart_engine(report)
            return

        semaphore = asyncio.Semaphore(self.max_concurrent_probes)
        engine_failed = asyncio.Event()
        registry_failed = asyncio.Event()

        async def check_with_limit(site: MonitoredSite):
            async with semaphore:
                if engine_failed.is_set() or registry_failed.is_set():
                    report.skipped += 1
                    return
                try:
                    await self._check_site(site)
                    report.checked += 1
                    self._probes_completed += 1
                except EngineFailure as e:
                    logger.error(f"Probe engine failed while checking {site.name}: {e}")
                    engine_failed.set()
                    report.skipped += 1
                except RegistryFailure as e:
                    logger.error(f"Registry failure while recording {site.name}: {e}")
                    registry_failed.set()
                    report.failed += 1
                except Exception:
                    logger.exception(f"Could not record check for {site.name}")
                    report.failed += 1
                finally:
                    if self.inter_probe_delay_seconds > 0:
                        await asyncio.sleep(self.inter_probe_delay_seconds)

        await asyncio.gather(*[check_with_limit(site) for site in sites])

        if registry_failed.is_set():
            report.aborted = True
        if engine_failed.is_set():
            await self._restart_engine(report)

    async def _check_site(self, site: MonitoredSite):
        try:
            await self.monitor.check_and_record(site, self.checker, self.probe_timeout_ms)
        except (EngineFailure, RegistryFailure, asyncio.CancelledError):
            raise
        except Exception as e:
            # anything else is local to this probe: record it as a failed check
            logger.exception(f"Unexpected error checking {site.name}")
            result = CheckResult.failure(utcnow(), 0, f"UNKNOWN: {type(e).__name__}: {e}")
            await self.monitor.record(site, result)

    async def _restart_engine(self, report: TickReport):
        try:
            await self.engine.restart()
            self._engine_restarts += 1
            report.engine_restarted = True
        except Exception:
            logger.exception("Probe engine restart failed, will retry next tick")

    def stats(self) -> dict:
        uptime = int(time.monotonic() - self._started_at)
        return {
            "uptime_seconds": uptime,
            "probes_completed": self._probes_completed,
            "ticks_run": self._ticks_run,
            "ticks_skipped": self._ticks_skipped,
            "engine_restarts": self._engine_restarts,
            "tick_in_progress": self._tick_in_progress,
            "last_tick_at": self._last_tick_at,
            "engine": self.engine.name,
            "engine_running": self.engine.is_running,
        }

    def log_stats(self):
        stats = self.stats()
        hours, remainder = divmod(stats["uptime_seconds"], 3600)
        logger.info(
            f"Worker statistics: uptime {hours}h {remainder // 60}m, "
            f"probes completed {stats['probes_completed']}, ticks {stats['ticks_run']} "
            f"(skipped {stats['ticks_skipped']}), engine restarts {stats['engine_restarts']}, "
            f"tick {'running' if stats['tick_in_progress'] else 'idle'}"
        )
