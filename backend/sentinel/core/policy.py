"""Monitoring policy knobs consumed by the state machine and scheduler."""
from dataclasses import dataclass
from datetime import timedelta

from .history import DEFAULT_HISTORY_CAP


@dataclass(frozen=True)
class MonitoringPolicy:
    """Timing and threshold policy.

    normal_interval: spacing between checks while UP or within the downtime window.
    downtime_window: how long a DOWN site keeps the normal cadence before suspension.
    pause_window: how long a suspended site is left alone before auto-resume.
    alert_threshold: consecutive failures before the first downtime alert.
    recovery_threshold: consecutive failures a success must end to count as a recovery.
    history_cap: retained check results per site.
    """
    normal_interval: timedelta = timedelta(minutes=5)
    downtime_window: timedelta = timedelta(hours=12)
    pause_window: timedelta = timedelta(hours=24)
    alert_threshold: int = 3
    recovery_threshold: int = 3
    history_cap: int = DEFAULT_HISTORY_CAP

    def __post_init__(self):
        for name in ("normal_interval", "downtime_window", "pause_window"):
            if getattr(self, name) <= timedelta(0):
                raise ValueError(f"{name} must be positive")
        for name in ("alert_threshold", "recovery_threshold", "history_cap"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")

    @classmethod
    def from_settings(cls, settings) -> "MonitoringPolicy":
        return cls(
            normal_interval=timedelta(minutes=settings.normal_interval_minutes),
            downtime_window=timedelta(hours=settings.downtime_monitoring_hours),
            pause_window=timedelta(hours=settings.pause_monitoring_hours),
            alert_threshold=settings.alert_threshold,
            recovery_threshold=settings.recovery_threshold,
            history_cap=settings.history_cap,
        )
