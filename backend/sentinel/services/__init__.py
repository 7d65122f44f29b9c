"""Services for probing, scheduling, storing and alerting."""
from .engine import EngineFailure, ProbeEngine, HttpProbeEngine, BrowserProbeEngine, build_probe_engine
from .checker import CheckerService
from .registry import SiteRegistry, RegistryFailure, DuplicateSiteError
from .alerter import AlerterService, Notifier
from .site_monitor import SiteMonitor
from .scheduler import SchedulerService, TickReport
from .immediate import ImmediateCheckService
from .realtime import SiteUpdateChannel

__all__ = [
    "EngineFailure",
    "ProbeEngine",
    "HttpProbeEngine",
    "BrowserProbeEngine",
    "build_probe_engine",
    "CheckerService",
    "SiteRegistry",
    "RegistryFailure",
    "DuplicateSiteError",
    "AlerterService",
    "Notifier",
    "SiteMonitor",
    "SchedulerService",
    "TickReport",
    "ImmediateCheckService",
    "SiteUpdateChannel",
]
