"""Site schemas for API."""
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from ..core.result import CheckResult
from ..core.site import MonitoredSite


class SiteCreate(BaseModel):
    """Schema for registering a new site."""
    url: str = Field(..., min_length=1, max_length=2048)
    name: str = Field(..., min_length=1, max_length=255)
    notify_email: str = Field(..., pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Please provide a valid URL (must include http:// or https://)")
        return value

    @field_validator("name", "notify_email")
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        return value.strip()


class CheckResultOut(BaseModel):
    """One entry of a site's check history."""
    observed_at: datetime
    status_code: int  # 0 = network/timeout/content failure
    duration_ms: int
    detail: Optional[str] = None

    @classmethod
    def from_result(cls, result: CheckResult) -> "CheckResultOut":
        return cls(
            observed_at=result.observed_at,
            status_code=result.status_code,
            duration_ms=result.duration_ms,
            detail=result.detail,
        )


class SiteResponse(BaseModel):
    """Schema for a site in API responses."""
    id: int
    url: str
    name: str
    notify_email: str
    status: str  # PENDING, UP, DOWN
    consecutive_failures: int
    last_checked_at: Optional[datetime] = None
    next_check_at: datetime
    suspended: bool
    uptime_percentage: float
    average_response_ms: Optional[int] = None
    recent_checks: List[CheckResultOut] = []
    created_at: Optional[datetime] = None

    @classmethod
    def from_site(cls, site: MonitoredSite) -> "SiteResponse":
        return cls(
            id=site.id,
            url=site.url,
            name=site.name,
            notify_email=site.notify_email,
            status=site.status.value,
            consecutive_failures=site.consecutive_failures,
            last_checked_at=site.last_checked_at,
            next_check_at=site.next_check_at,
            suspended=site.suspended,
            uptime_percentage=site.history.uptime_percentage(),
            average_response_ms=site.history.average_duration_ms(),
            recent_checks=[CheckResultOut.from_result(r) for r in site.history.recent(10)],
            created_at=site.created_at,
        )


class WorkerStats(BaseModel):
    """Scheduler statistics."""
    uptime_seconds: int
    probes_completed: int
    ticks_run: int
    ticks_skipped: int
    engine_restarts: int
    tick_in_progress: bool
    last_tick_at: Optional[datetime] = None
    engine: str
    engine_running: bool
