"""Pure monitoring core: site model, bounded history and lifecycle transitions."""
from .history import DEFAULT_HISTORY_CAP, HistoryBuffer
from .policy import MonitoringPolicy
from .result import FAILED_STATUS_CODE, CheckResult
from .site import (
    DowntimeAlertEvent,
    FailureDetails,
    MonitoredSite,
    RecoveryEvent,
    SiteStatus,
)
from .state_machine import apply, is_due_for_check, is_due_for_resume, is_healthy, resume

__all__ = [
    "DEFAULT_HISTORY_CAP",
    "HistoryBuffer",
    "MonitoringPolicy",
    "FAILED_STATUS_CODE",
    "CheckResult",
    "DowntimeAlertEvent",
    "FailureDetails",
    "MonitoredSite",
    "RecoveryEvent",
    "SiteStatus",
    "apply",
    "is_due_for_check",
    "is_due_for_resume",
    "is_healthy",
    "resume",
]
