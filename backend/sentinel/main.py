"""Main FastAPI application: wires the monitoring core and serves the thin API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .core.policy import MonitoringPolicy
from .database import init_db, close_db
from .routers import sites_router, status_router
from .services.alerter import AlerterService, Notifier
from .services.checker import CheckerService
from .services.email_sender import EmailConfig
from .services.engine import build_probe_engine
from .services.immediate import ImmediateCheckService
from .services.registry import SiteRegistry
from .services.scheduler import SchedulerService
from .services.site_monitor import SiteMonitor
from .services.realtime import site_updates

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    policy = MonitoringPolicy.from_settings(settings)
    logger.info(
        f"Starting Uptime Sentinel (engine={settings.probe_engine}, "
        f"interval={settings.normal_interval_minutes}m, "
        f"downtime window={settings.downtime_monitoring_hours}h, "
        f"pause={settings.pause_monitoring_hours}h)"
    )

    await init_db()
    logger.info("Database initialized")

    registry = SiteRegistry(history_cap=policy.history_cap)
    notifier = Notifier(
        email_config=EmailConfig.from_settings(settings),
        webhook_url=settings.webhook_url,
        registry=registry,
    )
    monitor = SiteMonitor(registry, AlerterService(notifier), policy, publish=site_updates.publish)

    engine = build_probe_engine(settings.probe_engine)
    checker = CheckerService(engine, timeout_ms=settings.probe_timeout_seconds * 1000)
    scheduler = SchedulerService(
        registry,
        checker,
        monitor,
        tick_interval_seconds=settings.tick_interval_seconds,
        probe_timeout_ms=settings.probe_timeout_seconds * 1000,
        max_concurrent_probes=settings.max_concurrent_probes,
        inter_probe_delay_seconds=settings.inter_probe_delay_seconds,
    )
    immediate_checks = ImmediateCheckService(
        lambda: build_probe_engine(settings.probe_engine),
        registry,
        monitor,
        policy,
        timeout_ms=settings.immediate_probe_timeout_seconds * 1000,
    )

    app.state.registry = registry
    app.state.scheduler = scheduler
    app.state.immediate_checks = immediate_checks

    scheduler.start()

    yield

    # Shutdown
    await scheduler.stop()
    await engine.shutdown()
    await immediate_checks.close()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Uptime Sentinel",
        description="Scheduled HTTP(S) uptime checks with downtime alerts",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sites_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.websocket("/ws")
    async def dashboard_socket(websocket: WebSocket):
        await site_updates.connect(websocket)
        try:
            while True:
                # clients only listen; reading detects disconnects
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            site_updates.disconnect(websocket)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
