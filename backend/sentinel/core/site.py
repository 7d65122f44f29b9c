"""Monitored site record and the events its transitions emit."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .history import DEFAULT_HISTORY_CAP, HistoryBuffer


class SiteStatus(str, Enum):
    PENDING = "PENDING"
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class MonitoredSite:
    """Snapshot of a registered endpoint and its monitoring lifecycle.

    Instances are immutable; the state machine produces new snapshots and
    the registry persists them. ``id`` is None until first stored.
    """
    url: str
    name: str
    notify_email: str
    next_check_at: datetime
    id: Optional[int] = None
    status: SiteStatus = SiteStatus.PENDING
    consecutive_failures: int = 0
    last_checked_at: Optional[datetime] = None
    downtime_deadline: Optional[datetime] = None
    suspended: bool = False
    notified_for_current_incident: bool = False
    history: HistoryBuffer = field(default_factory=HistoryBuffer)
    created_at: Optional[datetime] = None

    @classmethod
    def register(
        cls,
        url: str,
        name: str,
        notify_email: str,
        now: datetime,
        history_cap: int = DEFAULT_HISTORY_CAP,
    ) -> "MonitoredSite":
        """A new PENDING site, due immediately."""
        return cls(
            url=url,
            name=name,
            notify_email=notify_email,
            next_check_at=now,
            history=HistoryBuffer(history_cap),
            created_at=now,
        )


@dataclass(frozen=True)
class FailureDetails:
    """What went wrong on the probe that tipped a site over the alert threshold."""
    error: str
    duration_ms: int
    timestamp: datetime


@dataclass(frozen=True)
class DowntimeAlertEvent:
    site_id: Optional[int]
    consecutive_failures: int
    failure_details: FailureDetails


@dataclass(frozen=True)
class RecoveryEvent:
    site_id: Optional[int]
    prior_failures: int
