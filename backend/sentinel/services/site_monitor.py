"""Site monitor - runs one check for a site and records the outcome."""
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional

from ..core.policy import MonitoringPolicy
from ..core.result import CheckResult
from ..core.site import DowntimeAlertEvent, MonitoredSite, RecoveryEvent
from ..core.state_machine import apply
from .alerter import AlerterService
from .checker import CheckerService
from .registry import SiteRegistry
from .realtime import site_updated_event

logger = logging.getLogger(__name__)

Publisher = Callable[[Dict[str, Any]], Awaitable[None]]


class SiteMonitor:
    """Feeds probe results through the state machine.

    For each result: compute the next snapshot, route its events through
    the alerter, store the snapshot, then publish it to live dashboards.
    """

    def __init__(
        self,
        registry: SiteRegistry,
        alerter: AlerterService,
        policy: MonitoringPolicy,
        publish: Optional[Publisher] = None,
    ):
        self.registry = registry
        self.alerter = alerter
        self.policy = policy
        self.publish = publish

    async def check_and_record(
        self,
        site: MonitoredSite,
        checker: CheckerService,
        timeout_ms: Optional[int] = None,
    ) -> Optional[MonitoredSite]:
        """Probe ``site`` and record the result. EngineFailure propagates."""
        result = await checker.probe(site.url, timeout_ms)
        return await self.record(site, result)

    async def record(self, site: MonitoredSite, result: CheckResult) -> Optional[MonitoredSite]:
        """Apply ``result`` to ``site`` and persist it.

        Returns the stored snapshot, or None if the site was deregistered
        while its probe was running.
        """
        updated, events = apply(site, result, self.policy)

        for event in events:
            if isinstance(event, DowntimeAlertEvent):
                delivered = await self.alerter.on_downtime_alert(updated, event.failure_details)
                if delivered:
                    updated = replace(updated, notified_for_current_incident=True)
            elif isinstance(event, RecoveryEvent):
                await self.alerter.on_recovery(updated)

        if updated.suspended and not site.suspended:
            logger.info(
                f"{site.name} down since the start of its monitoring window, "
                f"pausing checks until {updated.next_check_at}"
            )

        stored = await self.registry.upsert(updated)
        if stored is None:
            return None

        if result.is_healthy:
            logger.debug(f"{stored.name}: {result.status_code} ({result.duration_ms}ms) - HEALTHY")
        else:
            logger.debug(
                f"{stored.name}: FAILED ({result.duration_ms}ms) - "
                f"{stored.consecutive_failures} consecutive failures"
            )

        if self.publish is not None:
            await self.publish(site_updated_event(stored))
        return stored
