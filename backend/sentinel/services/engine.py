"""Probing engines - long-lived resources handing out isolated probe sessions.

An engine is owned explicitly by whoever builds it (the scheduler's engine
lives for the whole process, the immediate-check engine only while
registrations are in flight). Every probe gets its own session that shares
no cookies, cache or page state with any other probe; sessions must be
closed by the caller on every exit path.

Two implementations:
- HttpProbeEngine: one pooled httpx transport, a fresh AsyncClient per probe.
- BrowserProbeEngine: one headless Chromium, a fresh incognito context per
  probe with images, stylesheets, fonts and media blocked.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from playwright.async_api import Browser, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 UptimeSentinel/1.0"
)

# Resource types a page probe never needs to load
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media", "other"})

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-features=VizDisplayCompositor",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]


class EngineFailure(Exception):
    """The shared engine itself is unusable and must be restarted."""


@dataclass
class PageResponse:
    """What a session fetched: final status code and readable body text."""
    status_code: int
    body: str


class ProbeSession:
    """One isolated, disposable probe session."""

    async def fetch(self, url: str, timeout_seconds: float) -> PageResponse:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class ProbeEngine:
    """Lifecycle contract shared by all engines."""

    name = "engine"

    @property
    def is_running(self) -> bool:
        raise NotImplementedError

    async def start(self) -> None:
        raise NotImplementedError

    async def shutdown(self) -> None:
        raise NotImplementedError

    async def open_session(self) -> ProbeSession:
        raise NotImplementedError

    async def ensure_healthy(self) -> None:
        """Start the engine if it is not running; raise EngineFailure if that fails."""
        if self.is_running:
            return
        logger.info(f"{self.name} engine not running, starting")
        try:
            await self.start()
        except EngineFailure:
            raise
        except Exception as e:
            raise EngineFailure(f"Could not start {self.name} engine: {e}") from e

    async def restart(self) -> None:
        logger.info(f"Restarting {self.name} engine")
        try:
            await self.shutdown()
        except Exception as e:
            logger.warning(f"Error while shutting down {self.name} engine: {e}")
        await self.ensure_healthy()


# ── httpx engine ─────────────────────────────────────────────────────────────


class _BorrowedTransport(httpx.AsyncBaseTransport):
    """Routes a session's requests through the shared pool without owning it."""

    def __init__(self, transport: httpx.AsyncBaseTransport):
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        # the engine closes the shared transport, never a session
        pass


class HttpProbeSession(ProbeSession):
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def fetch(self, url: str, timeout_seconds: float) -> PageResponse:
        response = await self._client.get(url, timeout=timeout_seconds)
        return PageResponse(status_code=response.status_code, body=response.text)

    async def close(self) -> None:
        await self._client.aclose()


class HttpProbeEngine(ProbeEngine):
    """Plain HTTP(S) probing over one pooled transport.

    Only the addressed document is fetched, so subresources are never loaded.
    Each session is a new AsyncClient with an empty cookie jar.
    """

    name = "http"

    def __init__(self, transport_factory: Optional[Callable[[], httpx.AsyncBaseTransport]] = None):
        self._transport_factory = transport_factory or self._default_transport
        self._transport: Optional[httpx.AsyncBaseTransport] = None

    @staticmethod
    def _default_transport() -> httpx.AsyncBaseTransport:
        # Disable SSL verification to handle self-signed certificates
        return httpx.AsyncHTTPTransport(
            verify=False,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    @property
    def is_running(self) -> bool:
        return self._transport is not None

    async def start(self) -> None:
        if self._transport is not None:
            return
        self._transport = self._transport_factory()
        logger.info("HTTP probe engine started")

    async def shutdown(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.aclose()
            logger.info("HTTP probe engine stopped")

    async def open_session(self) -> ProbeSession:
        if self._transport is None:
            raise EngineFailure("HTTP probe engine is not running")
        client = httpx.AsyncClient(
            transport=_BorrowedTransport(self._transport),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        return HttpProbeSession(client)


# ── Chromium engine ──────────────────────────────────────────────────────────


async def _block_subresources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserProbeSession(ProbeSession):
    def __init__(self, context, page):
        self._context = context
        self._page = page

    async def fetch(self, url: str, timeout_seconds: float) -> PageResponse:
        timeout_ms = timeout_seconds * 1000
        response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        if response is None:
            return PageResponse(status_code=0, body="")
        body = await self._page.evaluate("() => document.body ? document.body.innerText : ''")
        return PageResponse(status_code=response.status, body=body or "")

    async def close(self) -> None:
        # closing the context also closes its page
        await self._context.close()


class BrowserProbeEngine(ProbeEngine):
    """Headless Chromium probing; sees what a visitor's browser would see."""

    name = "browser"

    def __init__(self, executable_path: Optional[str] = None):
        self._executable_path = executable_path
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        if self.is_running:
            return
        if self._playwright is not None or self._browser is not None:
            # browser disconnected; drop the old driver before launching a new one
            try:
                await self.shutdown()
            except Exception as e:
                logger.warning(f"Error while discarding stale browser: {e}")
        self._playwright = await async_playwright().start()
        launch_kwargs = {"headless": True, "args": BROWSER_ARGS}
        if self._executable_path:
            launch_kwargs["executable_path"] = self._executable_path
        try:
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        except PlaywrightError as e:
            await self._playwright.stop()
            self._playwright = None
            raise EngineFailure(f"Failed to launch browser: {e}") from e
        logger.info(f"Browser probe engine started ({self._browser.version})")

    async def shutdown(self) -> None:
        browser, self._browser = self._browser, None
        pw, self._playwright = self._playwright, None
        try:
            if browser is not None and browser.is_connected():
                await browser.close()
        finally:
            if pw is not None:
                await pw.stop()
        logger.info("Browser probe engine stopped")

    async def open_session(self) -> ProbeSession:
        if not self.is_running:
            raise EngineFailure("Browser is not connected")
        try:
            context = await self._browser.new_context(user_agent=USER_AGENT)
        except PlaywrightError as e:
            raise EngineFailure(f"Could not open browser context: {e}") from e
        try:
            page = await context.new_page()
            page.set_default_timeout(30_000)
            await page.route("**/*", _block_subresources)
        except Exception as e:
            try:
                await context.close()
            except Exception as close_error:
                logger.warning(f"Error closing half-open browser context: {close_error}")
            raise EngineFailure(f"Could not prepare browser page: {e}") from e
        return BrowserProbeSession(context, page)


def build_probe_engine(kind: str) -> ProbeEngine:
    """Build an (unstarted) engine by configured name."""
    if kind == "http":
        return HttpProbeEngine()
    if kind == "browser":
        return BrowserProbeEngine()
    raise ValueError(f"Unknown probe engine: {kind!r} (expected 'http' or 'browser')")
