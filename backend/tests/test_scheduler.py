"""Tests for scheduler ticks."""
import asyncio
from datetime import timedelta

import pytest

from sentinel.core.site import SiteStatus
from sentinel.services.alerter import AlerterService
from sentinel.services.checker import CheckerService
from sentinel.services.engine import PageResponse
from sentinel.services.registry import RegistryFailure
from sentinel.services.scheduler import SchedulerService
from sentinel.services.site_monitor import SiteMonitor
from sentinel.utils.clock import utcnow

from .fakes import FakeEngine, FakeNotifier


def _scheduler(registry, engine, policy, monitor=None, **kwargs) -> SchedulerService:
    monitor = monitor or SiteMonitor(registry, AlerterService(FakeNotifier()), policy)
    kwargs.setdefault("inter_probe_delay_seconds", 0)
    return SchedulerService(registry, CheckerService(engine), monitor, **kwargs)


async def _add(registry, make_site, url, **overrides):
    overrides.setdefault("next_check_at", utcnow() - timedelta(minutes=1))
    return await registry.upsert(make_site(url=url, name=url.split("//")[1], **overrides))


class FlakyRegistry:
    """Delegates to a real registry, failing writes for one URL."""

    def __init__(self, registry, failing_url):
        self._registry = registry
        self.failing_url = failing_url

    def __getattr__(self, name):
        return getattr(self._registry, name)

    async def upsert(self, site):
        if site.url == self.failing_url:
            raise RegistryFailure("disk I/O error")
        return await self._registry.upsert(site)


class BrokenListingRegistry:
    async def list_resumable(self, now):
        raise RegistryFailure("database is locked")

    async def list_due(self, now):
        raise AssertionError("not reached")


class CrashingMonitor(SiteMonitor):
    """Raises from the probe path for one URL, behaves normally otherwise."""

    def __init__(self, *args, crash_url, **kwargs):
        super().__init__(*args, **kwargs)
        self.crash_url = crash_url

    async def check_and_record(self, site, checker, timeout_ms=None):
        if site.url == self.crash_url:
            raise KeyError("malformed snapshot")
        return await super().check_and_record(site, checker, timeout_ms)


class TestTick:
    def test_checks_only_due_sites(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://due.example.com")
                await _add(registry, make_site, "https://later.example.com", next_check_at=utcnow() + timedelta(minutes=4))
                await _add(registry, make_site, "https://paused.example.com", suspended=True,
                           next_check_at=utcnow() + timedelta(hours=20))
                report = await _scheduler(registry, engine, policy).run_tick()
                return report, await registry.get_by_url("https://due.example.com")

        report, site = asyncio.run(scenario())
        assert engine.probed_urls == ["https://due.example.com"]
        assert report.checked == 1
        assert report.skipped == report.failed == 0
        assert site.status == SiteStatus.UP
        assert site.next_check_at > utcnow() + timedelta(minutes=4)

    def test_probe_timeout_forwarded(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://due.example.com")
                await _scheduler(registry, engine, policy, probe_timeout_ms=30_000).run_tick()

        asyncio.run(scenario())
        assert engine.fetch_calls == [("https://due.example.com", 30.0)]

    def test_resumes_paused_site_without_probing(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(responses={"https://paused.example.com": PageResponse(500, "")})

        async def scenario():
            async with memory_registry() as registry:
                await _add(
                    registry, make_site, "https://paused.example.com",
                    status=SiteStatus.DOWN, suspended=True, consecutive_failures=145,
                    notified_for_current_incident=True,
                )
                scheduler = _scheduler(registry, engine, policy)
                first = await scheduler.run_tick()
                resumed = await registry.get_by_url("https://paused.example.com")
                second = await scheduler.run_tick()
                checked = await registry.get_by_url("https://paused.example.com")
                return first, resumed, second, checked

        first, resumed, second, checked = asyncio.run(scenario())
        assert (first.resumed, first.checked) == (1, 0)
        assert resumed.suspended is False
        assert resumed.consecutive_failures == 145
        assert (second.resumed, second.checked) == (0, 1)
        assert checked.consecutive_failures == 146
        assert checked.downtime_deadline is not None
        assert checked.notified_for_current_incident is True

    def test_concurrency_bounded(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(delay=0.05)

        async def scenario():
            async with memory_registry() as registry:
                for i in range(6):
                    await _add(registry, make_site, f"https://site{i}.example.com")
                return await _scheduler(registry, engine, policy, max_concurrent_probes=2).run_tick()

        report = asyncio.run(scenario())
        assert report.checked == 6
        assert engine.max_in_flight == 2
        assert engine.opened_sessions == engine.closed_sessions == 6

    def test_overlapping_tick_is_skipped(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(delay=0.05)

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://slow.example.com")
                scheduler = _scheduler(registry, engine, policy)
                reports = await asyncio.gather(scheduler.run_tick(), scheduler.run_tick())
                return reports, scheduler.stats()

        (first, second), stats = asyncio.run(scenario())
        assert first.checked == 1
        assert second is None
        assert engine.probed_urls == ["https://slow.example.com"]
        assert stats["ticks_run"] == 1
        assert stats["ticks_skipped"] == 1
        assert stats["tick_in_progress"] is False

    def test_unexpected_error_recorded_as_failed_check(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as registry:
                for name in ("a", "b", "c"):
                    await _add(registry, make_site, f"https://{name}.example.com")
                monitor = CrashingMonitor(
                    registry, AlerterService(FakeNotifier()), policy, crash_url="https://b.example.com",
                )
                report = await _scheduler(registry, engine, policy, monitor=monitor).run_tick()
                return report, {s.url: s for s in await registry.list_all()}

        report, sites = asyncio.run(scenario())
        assert report.checked == 3
        assert sorted(engine.probed_urls) == ["https://a.example.com", "https://c.example.com"]
        crashed = sites["https://b.example.com"]
        assert crashed.status == SiteStatus.DOWN
        assert crashed.history.latest().detail.startswith("UNKNOWN: KeyError")
        assert sites["https://a.example.com"].status == SiteStatus.UP


class TestFailures:
    def test_engine_crash_skips_rest_of_tick(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as registry:
                for name in ("a", "b", "c"):
                    await _add(registry, make_site, f"https://{name}.example.com")
                await engine.start()
                engine.fail_sessions = True
                scheduler = _scheduler(registry, engine, policy)
                report = await scheduler.run_tick()
                return report, scheduler.stats(), await registry.list_all()

        report, stats, sites = asyncio.run(scenario())
        assert report.checked == 0
        assert report.skipped == 3
        assert report.engine_restarted is True
        assert engine.starts == 2
        assert stats["engine_restarts"] == 1
        assert stats["engine_running"] is True
        # nothing recorded for sites that never got a probe
        assert all(s.status == SiteStatus.PENDING and len(s.history) == 0 for s in sites)

    def test_engine_dying_mid_fetch_leaves_site_untouched(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(crash_urls={"https://a.example.com"})

        async def scenario():
            async with memory_registry() as registry:
                before = await _add(registry, make_site, "https://a.example.com")
                scheduler = _scheduler(registry, engine, policy)
                report = await scheduler.run_tick()
                return before, report, await registry.get_by_url("https://a.example.com")

        before, report, after = asyncio.run(scenario())
        assert report.checked == 0
        assert report.failed == 0
        assert report.skipped == 1
        assert report.engine_restarted is True
        assert engine.starts == 2
        assert after.status == SiteStatus.PENDING
        assert after.consecutive_failures == 0
        assert len(after.history) == 0
        assert after.next_check_at == before.next_check_at

    def test_session_setup_error_restarts_engine(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(session_error=RuntimeError("Browser has been closed"))

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://a.example.com")
                report = await _scheduler(registry, engine, policy).run_tick()
                return report, await registry.get_by_url("https://a.example.com")

        report, site = asyncio.run(scenario())
        assert report.skipped == 1
        assert report.engine_restarted is True
        assert site.status == SiteStatus.PENDING
        assert len(site.history) == 0

    def test_engine_that_cannot_start(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine(fail_start=True)

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://a.example.com")
                scheduler = _scheduler(registry, engine, policy)
                return await scheduler.run_tick(), await scheduler.run_tick()

        first, second = asyncio.run(scenario())
        assert first.skipped == second.skipped == 1
        assert first.engine_restarted is False
        assert engine.fetch_calls == []

    def test_registry_unavailable_aborts_tick(self, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            registry = BrokenListingRegistry()
            scheduler = SchedulerService(registry, CheckerService(engine), monitor=None)
            return await scheduler.run_tick(), scheduler.stats()

        report, stats = asyncio.run(scenario())
        assert report.aborted is True
        assert engine.fetch_calls == []
        assert stats["tick_in_progress"] is False

    def test_registry_write_failure_stops_tick(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as real:
                for name in ("a", "b", "c"):
                    await _add(real, make_site, f"https://{name}.example.com")
                registry = FlakyRegistry(real, failing_url="https://a.example.com")
                monitor = SiteMonitor(registry, AlerterService(FakeNotifier()), policy)
                scheduler = _scheduler(registry, engine, policy, monitor=monitor, max_concurrent_probes=1)
                return await scheduler.run_tick()

        report = asyncio.run(scenario())
        assert report.aborted is True
        assert report.failed == 1
        assert report.skipped == 2
        assert report.checked == 0


class TestLifecycle:
    def test_start_runs_first_tick_immediately(self, memory_registry, make_site, policy) -> None:
        engine = FakeEngine()

        async def scenario():
            async with memory_registry() as registry:
                await _add(registry, make_site, "https://a.example.com")
                scheduler = _scheduler(registry, engine, policy, tick_interval_seconds=3600)
                scheduler.start()
                try:
                    for _ in range(200):
                        if scheduler.stats()["ticks_run"] >= 1:
                            break
                        await asyncio.sleep(0.01)
                finally:
                    await scheduler.stop()
                return scheduler.stats()

        stats = asyncio.run(scenario())
        assert stats["ticks_run"] == 1
        assert stats["probes_completed"] == 1
        assert stats["engine"] == "fake"
        assert engine.probed_urls == ["https://a.example.com"]

    def test_rejects_zero_concurrency(self, policy) -> None:
        with pytest.raises(ValueError):
            SchedulerService(None, CheckerService(FakeEngine()), None, max_concurrent_probes=0)
