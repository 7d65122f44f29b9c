"""Checker service - probes one URL and classifies the outcome."""
import asyncio
import logging
import re
import time
from typing import Optional, Tuple
from urllib.parse import urlparse

from ..core.result import FAILED_STATUS_CODE, CheckResult, is_healthy_status_code
from ..utils.clock import utcnow
from .engine import EngineFailure, ProbeEngine

logger = logging.getLogger(__name__)

# Path fragments that mark a URL as a health/status endpoint
HEALTH_PATH_MARKERS = ("/health", "/status")

# A health endpoint body must contain at least one of these words
POSITIVE_TOKENS = frozenset({"ok", "success", "healthy", "up"})

_WORD_RE = re.compile(r"[a-z]+")


def is_health_endpoint(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(marker in path for marker in HEALTH_PATH_MARKERS)


def body_reports_healthy(body: str) -> bool:
    """True if the body contains a positive token as a whole word."""
    words = set(_WORD_RE.findall(body.lower()))
    return not POSITIVE_TOKENS.isdisjoint(words)


def classify_response(url: str, status_code: int, body: str) -> Tuple[int, Optional[str]]:
    """Map a fetched response to (recorded status code, failure detail).

    2xx/3xx is healthy, except that a health endpoint must also report a
    positive token. Anything unhealthy is recorded with status code 0.
    """
    if not is_healthy_status_code(status_code):
        return FAILED_STATUS_CODE, f"HTTP_ERROR: HTTP {status_code}"
    if is_health_endpoint(url) and not body_reports_healthy(body):
        return FAILED_STATUS_CODE, (
            f"HEALTH_CHECK_FAILED: HTTP {status_code} but body has no success indicator"
        )
    return status_code, None


def _describe_error(error: BaseException) -> str:
    message = str(error) or type(error).__name__
    lowered = message.lower()
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in lowered or "timed out" in lowered:
        category = "TIMEOUT"
    elif "net::err" in lowered or "connect" in lowered or "name resolution" in lowered:
        category = "NETWORK_ERROR"
    else:
        category = "UNKNOWN"
    return f"{category}: {message}"


class CheckerService:
    """Runs probes through a shared engine, one isolated session per probe.

    ``probe`` never raises for network, timeout or HTTP problems; those
    become failed results. Only EngineFailure (the engine itself is gone)
    is propagated so the owner can restart the engine.
    """

    def __init__(self, engine: ProbeEngine, timeout_ms: int = 30_000):
        self.engine = engine
        self.timeout_ms = timeout_ms
        self._live_sessions = 0

    @property
    def live_sessions(self) -> int:
        """Sessions currently open; zero whenever no probe is in flight."""
        return self._live_sessions

    async def probe(self, url: str, timeout_ms: Optional[int] = None) -> CheckResult:
        timeout_ms = timeout_ms or self.timeout_ms
        timeout = timeout_ms / 1000
        observed_at = utcnow()
        t0 = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - t0) * 1000)

        try:
            session = await self.engine.open_session()
        except EngineFailure:
            raise
        except Exception as e:
            # session setup belongs to the engine; never charge it to the site
            raise EngineFailure(f"Could not open {self.engine.name} probe session: {e}") from e

        self._live_sessions += 1
        try:
            # a hung fetch is abandoned as a timeout; the session is still closed below
            response = await asyncio.wait_for(session.fetch(url, timeout), timeout=timeout)
            duration = elapsed_ms()
            status_code, detail = classify_response(url, response.status_code, response.body)
            if detail:
                logger.debug(f"Probe {url}: FAILED ({duration}ms) - {detail}")
            else:
                logger.debug(f"Probe {url}: {status_code} ({duration}ms)")
            return CheckResult(
                observed_at=observed_at,
                status_code=status_code,
                duration_ms=duration,
                detail=detail,
            )
        except EngineFailure:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self.engine.is_running:
                # the engine died mid-fetch; the site is not to blame
                raise EngineFailure(f"{self.engine.name} engine stopped while probing {url}: {e}") from e
            detail = _describe_error(e)
            logger.debug(f"Probe {url}: FAILED ({elapsed_ms()}ms) - {detail}")
            return CheckResult.failure(observed_at, elapsed_ms(), detail)
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Error releasing probe session for {url}: {e}")
            finally:
                self._live_sessions -= 1
