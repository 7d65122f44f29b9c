"""Immediate check service - probes a newly registered site before the scheduler sees it.

Uses its own engine, separate from the scheduler's, started on demand and
shut down as soon as no registration is in flight.
"""
import asyncio
import logging
from typing import Callable, Optional

from ..core.policy import MonitoringPolicy
from ..core.site import MonitoredSite
from ..utils.clock import utcnow
from .checker import CheckerService
from .engine import EngineFailure, ProbeEngine
from .registry import SiteRegistry
from .site_monitor import SiteMonitor

logger = logging.getLogger(__name__)

IMMEDIATE_PROBE_TIMEOUT_MS = 15_000


class ImmediateCheckService:
    """Registers sites and gives the caller a fresh status synchronously."""

    def __init__(
        self,
        engine_factory: Callable[[], ProbeEngine],
        registry: SiteRegistry,
        monitor: SiteMonitor,
        policy: MonitoringPolicy,
        timeout_ms: int = IMMEDIATE_PROBE_TIMEOUT_MS,
    ):
        self._engine_factory = engine_factory
        self.registry = registry
        self.monitor = monitor
        self.policy = policy
        self.timeout_ms = timeout_ms
        self._engine: Optional[ProbeEngine] = None
        self._in_flight = 0
        self._lock = asyncio.Lock()

    @property
    def engine_running(self) -> bool:
        return self._engine is not None and self._engine.is_running

    async def register(self, url: str, name: str, notify_email: str) -> MonitoredSite:
        """Probe a new site once, then store it with the outcome applied.

        The site is only written after its probe, so the scheduler cannot pick
        it up (and probe it concurrently) first. If the probe cannot run at
        all, the site is stored PENDING and due now.
        """
        site = MonitoredSite.register(url, name, notify_email, utcnow(), self.policy.history_cap)
        logger.info(f"Immediate check: {name} ({url})")

        result = None
        try:
            engine = await self._acquire()
            checker = CheckerService(engine, self.timeout_ms)
            result = await checker.probe(site.url)
        except EngineFailure as e:
            logger.error(f"Immediate check engine unavailable for {name}: {e}")
        finally:
            await self._release()

        if result is None:
            return await self.registry.upsert(site)

        return await self.monitor.record(site, result)

    async def _acquire(self) -> ProbeEngine:
        async with self._lock:
            self._in_flight += 1
            if self._engine is None:
                self._engine = self._engine_factory()
            await self._engine.ensure_healthy()
            return self._engine

    async def _release(self):
        async with self._lock:
            self._in_flight -= 1
            if self._in_flight == 0 and self._engine is not None:
                engine, self._engine = self._engine, None
                try:
                    await engine.shutdown()
                except Exception as e:
                    logger.warning(f"Error shutting down immediate check engine: {e}")

    async def close(self):
        """Tear the engine down regardless of in-flight work (process shutdown)."""
        async with self._lock:
            if self._engine is not None:
                engine, self._engine = self._engine, None
                await engine.shutdown()
