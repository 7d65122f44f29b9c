"""Email sender service - sends downtime and recovery notices via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional, Tuple
from dataclasses import dataclass

from ..core.site import FailureDetails, MonitoredSite
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_address: str = ""

    @classmethod
    def from_settings(cls, settings) -> "EmailConfig":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.alert_email_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host)


def build_downtime_email(site: MonitoredSite, details: FailureDetails) -> Tuple[str, str]:
    """Subject and plain-text body for a downtime alert."""
    subject = f"ALERT: {site.name} is DOWN"
    lines = [
        "Uptime Sentinel DOWN Report",
        "=" * 40,
        "",
        f"Website: {site.name}",
        f"URL: {site.url}",
        "Status: DOWN",
        f"Consecutive failures: {site.consecutive_failures}",
        f"Detected at: {details.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Error: {details.error}",
        f"Response time: {details.duration_ms}ms",
        "",
        "Monitoring continues at the normal interval while the site is down.",
        "You will receive one more notice when the site recovers.",
        "",
        "--",
        "Uptime Sentinel Monitoring System",
    ]
    return subject, "\n".join(lines)


def build_recovery_email(site: MonitoredSite) -> Tuple[str, str]:
    """Subject and plain-text body for a recovery notice."""
    subject = f"RECOVERED: {site.name} is back online"
    latest = site.history.latest()
    lines = [
        "Uptime Sentinel RECOVERY Report",
        "=" * 40,
        "",
        f"Website: {site.name}",
        f"URL: {site.url}",
        "Status: UP",
        f"Recovered at: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
    ]
    if latest is not None:
        lines.append(f"Response: HTTP {latest.status_code} in {latest.duration_ms}ms")
    lines.extend([
        "",
        "--",
        "Uptime Sentinel Monitoring System",
    ])
    return subject, "\n".join(lines)


class EmailSenderService:
    """Service for sending email notices via SMTP."""

    def _parse_recipients(self, to_address: str) -> List[str]:
        """Parse comma-separated email addresses into a list."""
        if not to_address:
            return []
        # Split by comma, strip whitespace, filter empty
        return [addr.strip() for addr in to_address.split(",") if addr.strip()]

    async def send_email(
        self,
        config: EmailConfig,
        to_address: str,
        subject: str,
        body: str,
    ) -> bool:
        """Send an email using SMTP.

        Supports comma-separated list of recipients in to_address.
        Returns True on success, False on failure.
        """
        if not config.is_configured:
            logger.warning("Email not configured - missing SMTP host")
            return False

        recipients = self._parse_recipients(to_address)
        if not recipients:
            logger.warning("No valid recipients found in to_address")
            return False

        # smtplib blocks; keep the event loop free for other probes
        return await asyncio.to_thread(self._send_blocking, config, recipients, subject, body)

    def _send_blocking(
        self,
        config: EmailConfig,
        recipients: List[str],
        subject: str,
        body: str,
    ) -> bool:
        from_addr: Optional[str] = config.from_address or config.username
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = from_addr
            msg["To"] = ", ".join(recipients)
            msg.attach(MIMEText(body, "plain"))

            with smtplib.SMTP(config.host, config.port, timeout=30) as server:
                if config.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if config.username and config.password:
                    server.login(config.username, config.password)
                server.sendmail(from_addr, recipients, msg.as_string())

            logger.info(f"Email sent successfully to {len(recipients)} recipient(s): {subject}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPConnectError as e:
            logger.error(f"Failed to connect to SMTP server {config.host}:{config.port}: {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except (ConnectionRefusedError, TimeoutError) as e:
            logger.error(f"Could not reach {config.host}:{config.port}: {e}")
            return False
        except OSError as e:
            logger.error(f"Unexpected error sending email: {type(e).__name__}: {e}")
            return False
