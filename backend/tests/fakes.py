"""Test doubles for the probing engine and notification channels."""
import asyncio
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sentinel.services.engine import EngineFailure, PageResponse, ProbeEngine, ProbeSession

Outcome = Union[PageResponse, BaseException]


class FakeSession(ProbeSession):
    def __init__(self, engine: "FakeEngine"):
        self.engine = engine

    async def fetch(self, url: str, timeout_seconds: float) -> PageResponse:
        engine = self.engine
        engine.fetch_calls.append((url, timeout_seconds))
        engine.in_flight += 1
        engine.max_in_flight = max(engine.max_in_flight, engine.in_flight)
        try:
            if engine.delay:
                await asyncio.sleep(engine.delay)
            if url in engine.crash_urls:
                # the whole engine goes down mid-fetch
                engine.running = False
                raise RuntimeError("Target page, context or browser has been closed")
            outcome = engine.responses.get(url, PageResponse(status_code=200, body="<html>ok</html>"))
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            engine.in_flight -= 1

    async def close(self) -> None:
        self.engine.closed_sessions += 1


class FakeEngine(ProbeEngine):
    """Scripted engine: responses keyed by URL, default HTTP 200."""

    name = "fake"

    def __init__(
        self,
        responses: Optional[Dict[str, Outcome]] = None,
        delay: float = 0.0,
        fail_start: bool = False,
        crash_urls: Iterable[str] = (),
        session_error: Optional[Exception] = None,
    ):
        self.responses: Dict[str, Outcome] = dict(responses or {})
        self.delay = delay
        self.fail_start = fail_start
        self.crash_urls = set(crash_urls)
        self.session_error = session_error
        self.fail_sessions = False
        self.running = False
        self.starts = 0
        self.shutdowns = 0
        self.opened_sessions = 0
        self.closed_sessions = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.fetch_calls: List[Tuple[str, float]] = []

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        if self.fail_start:
            raise EngineFailure("engine cannot start")
        self.running = True
        self.fail_sessions = False
        self.starts += 1

    async def shutdown(self) -> None:
        self.running = False
        self.shutdowns += 1

    async def open_session(self) -> ProbeSession:
        if not self.running or self.fail_sessions:
            raise EngineFailure("engine crashed")
        if self.session_error is not None:
            raise self.session_error
        self.opened_sessions += 1
        return FakeSession(self)

    @property
    def probed_urls(self) -> List[str]:
        return [url for url, _ in self.fetch_calls]


class FakeNotifier:
    """Records notices; ``deliver`` controls the reported outcome."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.downtime_alerts = []
        self.recovery_notices = []

    async def send_downtime_alert(self, site, failure_details) -> bool:
        self.downtime_alerts.append((site, failure_details))
        return self.deliver

    async def send_recovery_notice(self, site) -> bool:
        self.recovery_notices.append(site)
        return self.deliver


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)
