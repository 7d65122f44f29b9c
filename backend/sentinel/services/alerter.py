"""Alerter service - gates downtime/recovery notices and delivers them by email and webhook."""
import logging
from typing import Optional

import httpx

from ..core.site import FailureDetails, MonitoredSite
from ..utils.clock import utcnow
from .email_sender import (
    EmailConfig,
    EmailSenderService,
    build_downtime_email,
    build_recovery_email,
)
from .registry import RegistryFailure, SiteRegistry

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers notices to the site's email address and an optional webhook.

    A notice counts as delivered when at least one channel accepted it.
    Every attempt is written to the alert log when a registry is given.
    """

    def __init__(
        self,
        email_config: EmailConfig,
        email_sender: Optional[EmailSenderService] = None,
        webhook_url: Optional[str] = None,
        registry: Optional[SiteRegistry] = None,
        webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.email_config = email_config
        self.email_sender = email_sender or EmailSenderService()
        self.webhook_url = webhook_url
        self.registry = registry
        self._webhook_transport = webhook_transport

    async def send_downtime_alert(self, site: MonitoredSite, failure_details: FailureDetails) -> bool:
        subject, body = build_downtime_email(site, failure_details)
        payload = {
            "site": site.name,
            "url": site.url,
            "event": "down",
            "consecutive_failures": site.consecutive_failures,
            "details": failure_details.error,
            "duration_ms": failure_details.duration_ms,
            "timestamp": failure_details.timestamp.isoformat() + "Z",
        }
        return await self._deliver(site, "downtime", subject, body, payload)

    async def send_recovery_notice(self, site: MonitoredSite) -> bool:
        subject, body = build_recovery_email(site)
        payload = {
            "site": site.name,
            "url": site.url,
            "event": "up",
            "timestamp": utcnow().isoformat() + "Z",
        }
        return await self._deliver(site, "recovery", subject, body, payload)

    async def _deliver(
        self,
        site: MonitoredSite,
        alert_type: str,
        subject: str,
        body: str,
        payload: dict,
    ) -> bool:
        delivered = False
        attempted = False

        if self.email_config.is_configured:
            attempted = True
            success = await self.email_sender.send_email(self.email_config, site.notify_email, subject, body)
            await self._record(site, alert_type, "email", success, {"subject": subject, "to": site.notify_email})
            delivered = delivered or success

        if self.webhook_url:
            attempted = True
            success = await self._send_webhook(self.webhook_url, payload)
            await self._record(site, alert_type, "webhook", success, payload)
            delivered = delivered or success

        if not attempted:
            logger.warning(f"No notification channel configured, {alert_type} notice for {site.name} not sent")
        return delivered

    async def _send_webhook(self, url: str, payload: dict) -> bool:
        """Send a webhook POST request."""
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._webhook_transport) as client:
                response = await client.post(url, json=payload)
                if response.status_code < 400:
                    logger.info(f"Webhook sent: {payload['event']} for {payload['site']}")
                    return True
                logger.warning(f"Webhook returned {response.status_code}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook: {e}")
            return False

    async def _record(self, site: MonitoredSite, alert_type: str, channel: str, success: bool, payload: dict):
        if self.registry is None or site.id is None:
            return
        try:
            await self.registry.log_alert(site.id, alert_type, channel, success, payload)
        except RegistryFailure as e:
            logger.warning(f"Could not record {alert_type} alert for {site.name}: {e}")


class AlerterService:
    """Notification gate.

    At most one downtime alert is delivered per incident: the caller sets
    ``notified_for_current_incident`` only when ``on_downtime_alert``
    returns True, so a failed delivery is retried on the next failed check.
    Recovery notices are best-effort and sent whether or not the alert got
    through.
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def on_downtime_alert(self, site: MonitoredSite, failure_details: FailureDetails) -> bool:
        """Returns True only if the alert was delivered."""
        if site.notified_for_current_incident:
            logger.debug(f"Alert suppressed for {site.name}: already notified for this incident")
            return False

        logger.info(f"Sending downtime alert for {site.name} ({site.consecutive_failures} failures)")
        try:
            delivered = await self.notifier.send_downtime_alert(site, failure_details)
        except Exception as e:
            logger.error(f"Downtime alert for {site.name} raised {type(e).__name__}: {e}")
            delivered = False

        if not delivered:
            logger.warning(f"Downtime alert for {site.name} not delivered, will retry on next failed check")
        return delivered

    async def on_recovery(self, site: MonitoredSite) -> bool:
        logger.info(f"Sending recovery notice for {site.name}")
        try:
            delivered = await self.notifier.send_recovery_notice(site)
        except Exception as e:
            logger.error(f"Recovery notice for {site.name} raised {type(e).__name__}: {e}")
            delivered = False

        if not delivered:
            logger.warning(f"Recovery notice for {site.name} not delivered")
        return delivered
