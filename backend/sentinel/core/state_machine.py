"""Site lifecycle transitions.

Pure functions only: no I/O, no clock reads. ``apply`` folds one probe
result into a site snapshot and reports the notification events the
caller must route; ``resume`` lifts a suspension once the pause window
has elapsed.

Lifecycle of an incident:

    UP --unhealthy--> DOWN (deadline = first failure + downtime_window)
    DOWN --unhealthy, before deadline--> DOWN, normal cadence
    DOWN --unhealthy, at/after deadline--> suspended, next check = now + pause_window
    suspended --pause elapsed--> resumed, due now (failure count kept)
    DOWN --healthy--> UP (recovery event if the incident was long enough)
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Tuple, Union

from .policy import MonitoringPolicy
from .result import CheckResult
from .site import (
    DowntimeAlertEvent,
    FailureDetails,
    MonitoredSite,
    RecoveryEvent,
    SiteStatus,
)

logger = logging.getLogger(__name__)

SiteEvent = Union[DowntimeAlertEvent, RecoveryEvent]


def is_healthy(result: CheckResult) -> bool:
    """Content checks are folded into status_code by the executor."""
    return result.is_healthy


def is_due_for_check(site: MonitoredSite, now: datetime) -> bool:
    return not site.suspended and site.next_check_at <= now


def is_due_for_resume(site: MonitoredSite, now: datetime) -> bool:
    """True once a suspended site's pause window has elapsed.

    While suspended, ``next_check_at`` marks the end of the pause window and
    is what decides resumption. ``downtime_deadline`` is normally cleared on
    suspension; if a stale one is still set, resumption also waits for it.
    """
    if not site.suspended:
        return False
    if site.downtime_deadline is not None and site.downtime_deadline > now:
        return False
    return site.next_check_at <= now


def apply(
    site: MonitoredSite,
    result: CheckResult,
    policy: MonitoringPolicy,
) -> Tuple[MonitoredSite, List[SiteEvent]]:
    """Compute the next snapshot of ``site`` after observing ``result``.

    The returned site never has ``notified_for_current_incident`` set by
    this function; the caller flips it once a downtime alert is delivered.
    """
    now = result.observed_at
    events: List[SiteEvent] = []
    history = site.history.append(result)

    if is_healthy(result):
        if site.consecutive_failures >= policy.recovery_threshold:
            events.append(RecoveryEvent(site_id=site.id, prior_failures=site.consecutive_failures))
        updated = replace(
            site,
            status=SiteStatus.UP,
            consecutive_failures=0,
            notified_for_current_incident=False,
            downtime_deadline=None,
            suspended=False,
            last_checked_at=now,
            next_check_at=now + policy.normal_interval,
            history=history,
        )
        return updated, events

    failures = site.consecutive_failures + 1
    downtime_deadline = site.downtime_deadline
    suspended = site.suspended

    if downtime_deadline is None:
        downtime_deadline = now + policy.downtime_window
        next_check_at = now + policy.normal_interval
        logger.debug(f"{site.name} went down, monitoring until {downtime_deadline}")
    elif now < downtime_deadline:
        next_check_at = now + policy.normal_interval
    else:
        suspended = True
        downtime_deadline = None
        next_check_at = now + policy.pause_window
        logger.debug(f"{site.name} down past its monitoring window, pausing until {next_check_at}")

    if failures >= policy.alert_threshold and not site.notified_for_current_incident:
        events.append(DowntimeAlertEvent(
            site_id=site.id,
            consecutive_failures=failures,
            failure_details=FailureDetails(
                error=result.detail or f"HTTP {result.status_code}",
                duration_ms=result.duration_ms,
                timestamp=now,
            ),
        ))

    updated = replace(
        site,
        status=SiteStatus.DOWN,
        consecutive_failures=failures,
        downtime_deadline=downtime_deadline,
        suspended=suspended,
        last_checked_at=now,
        next_check_at=next_check_at,
        history=history,
    )
    return updated, events


def resume(site: MonitoredSite, now: datetime) -> MonitoredSite:
    """Lift a suspension; the site becomes due immediately.

    No probe, no events; failure count and notification flag are kept so a
    still-broken site does not re-alert for the same incident.
    """
    return replace(
        site,
        suspended=False,
        downtime_deadline=None,
        next_check_at=now,
    )
