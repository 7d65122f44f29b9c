"""Realtime site updates for dashboards over WebSocket."""
import json
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

from ..core.site import MonitoredSite

logger = logging.getLogger(__name__)


def site_updated_event(site: MonitoredSite) -> Dict[str, Any]:
    """Message pushed to dashboards after a site snapshot is stored."""
    latest = site.history.latest()
    return {
        "type": "site_updated",
        "site_id": site.id,
        "name": site.name,
        "url": site.url,
        "status": site.status.value,
        "consecutive_failures": site.consecutive_failures,
        "suspended": site.suspended,
        "last_checked_at": site.last_checked_at,
        "next_check_at": site.next_check_at,
        "status_code": latest.status_code if latest else None,
        "duration_ms": latest.duration_ms if latest else None,
    }


class SiteUpdateChannel:
    """Pushes site update events to every open dashboard socket.

    Sends happen on the event loop that owns the sockets, so the client set
    needs no lock; a socket that fails a send is dropped.
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Dashboard connected ({len(self._clients)} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info(f"Dashboard disconnected ({len(self._clients)} open)")

    async def publish(self, event: Dict[str, Any]) -> None:
        """Best-effort fan-out; never raises into the monitoring path."""
        if not self._clients:
            return
        text = json.dumps(event, default=str)
        for websocket in list(self._clients):
            try:
                await websocket.send_text(text)
            except Exception as e:
                logger.debug(f"Dropping dashboard socket after failed send: {e}")
                self._clients.discard(websocket)

    @property
    def connection_count(self) -> int:
        return len(self._clients)


site_updates = SiteUpdateChannel()
