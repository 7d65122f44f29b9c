"""Site registry - durable storage of site snapshots.

The registry is the only place site state lives; engines and the scheduler
can be rebuilt at any time without losing anything. Each write is a
single-site read-modify-write committed in one transaction.
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..core.history import DEFAULT_HISTORY_CAP, HistoryBuffer
from ..core.result import CheckResult
from ..core.site import MonitoredSite, SiteStatus
from ..database import async_session
from ..models import Alert, CheckRecord, Site
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)


class RegistryFailure(Exception):
    """Storage is unavailable; the current unit of work must be abandoned."""


class DuplicateSiteError(ValueError):
    """Another site is already registered for this URL."""


class SiteRegistry:
    """Reads and writes MonitoredSite snapshots through SQLAlchemy."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        history_cap: int = DEFAULT_HISTORY_CAP,
    ):
        self._session_factory = session_factory or async_session
        self.history_cap = history_cap

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise RegistryFailure(f"Site registry unavailable: {e}") from e

    # ── Reads ────────────────────────────────────────────────────────────────

    async def list_due(self, now: datetime) -> List[MonitoredSite]:
        """Sites not suspended whose next check time has arrived."""
        async with self._session() as session:
            result = await session.execute(
                select(Site)
                .options(selectinload(Site.history))
                .where(Site.suspended.is_(False), Site.next_check_at <= now)
                .order_by(Site.next_check_at)
            )
            return [self._to_domain(row) for row in result.scalars().all()]

    async def list_resumable(self, now: datetime) -> List[MonitoredSite]:
        """Suspended sites whose pause window has elapsed."""
        async with self._session() as session:
            result = await session.execute(
                select(Site)
                .options(selectinload(Site.history))
                .where(
                    Site.suspended.is_(True),
                    Site.next_check_at <= now,
                    or_(Site.downtime_deadline.is_(None), Site.downtime_deadline <= now),
                )
                .order_by(Site.next_check_at)
            )
            return [self._to_domain(row) for row in result.scalars().all()]

    async def list_all(self) -> List[MonitoredSite]:
        async with self._session() as session:
            result = await session.execute(
                select(Site).options(selectinload(Site.history)).order_by(Site.id.desc())
            )
            return [self._to_domain(row) for row in result.scalars().all()]

    async def get_by_id(self, site_id: int) -> Optional[MonitoredSite]:
        async with self._session() as session:
            row = await self._load(session, site_id)
            return self._to_domain(row) if row else None

    async def get_by_url(self, url: str) -> Optional[MonitoredSite]:
        async with self._session() as session:
            result = await session.execute(
                select(Site).options(selectinload(Site.history)).where(Site.url == url)
            )
            row = result.scalar_one_or_none()
            return self._to_domain(row) if row else None

    # ── Writes ───────────────────────────────────────────────────────────────

    async def upsert(self, site: MonitoredSite) -> Optional[MonitoredSite]:
        """Store a snapshot; inserts when ``site.id`` is None.

        Returns the stored snapshot, or None if the site was deleted in the
        meantime (the update is dropped rather than resurrecting it).
        """
        async with self._session() as session:
            if site.id is None:
                row = Site(history=[])
                session.add(row)
            else:
                row = await self._load(session, site.id)
                if row is None:
                    logger.info(f"Site {site.id} no longer registered, dropping update")
                    return None

            self._copy_fields(row, site)
            self._sync_history(row, site.history)

            try:
                await retry_on_lock(session.commit)
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateSiteError(f"A site is already registered for {site.url}") from e
            return self._to_domain(row)

    async def delete(self, site_id: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(Site)
                .options(selectinload(Site.history), selectinload(Site.alerts))
                .where(Site.id == site_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            await session.delete(row)
            await retry_on_lock(session.commit)
            logger.info(f"Deleted site {site_id} ({row.url})")
            return True

    async def log_alert(
        self,
        site_id: int,
        alert_type: str,
        channel: str,
        success: bool,
        payload: Optional[dict] = None,
    ) -> None:
        async with self._session() as session:
            session.add(Alert(
                site_id=site_id,
                alert_type=alert_type,
                channel=channel,
                payload=json.dumps(payload, default=str) if payload else None,
                success=1 if success else 0,
            ))
            await retry_on_lock(session.commit)

    async def list_alerts(self, site_id: int) -> List[Alert]:
        async with self._session() as session:
            result = await session.execute(
                select(Alert).where(Alert.site_id == site_id).order_by(Alert.id)
            )
            return list(result.scalars().all())

    # ── Mapping ──────────────────────────────────────────────────────────────

    async def _load(self, session: AsyncSession, site_id: int) -> Optional[Site]:
        result = await session.execute(
            select(Site).options(selectinload(Site.history)).where(Site.id == site_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _copy_fields(row: Site, site: MonitoredSite) -> None:
        row.url = site.url
        row.name = site.name
        row.notify_email = site.notify_email
        row.status = site.status.value
        row.consecutive_failures = site.consecutive_failures
        row.last_checked_at = site.last_checked_at
        row.next_check_at = site.next_check_at
        row.downtime_deadline = site.downtime_deadline
        row.suspended = site.suspended
        row.notified_for_current_incident = site.notified_for_current_incident
        if site.created_at is not None and row.created_at is None:
            row.created_at = site.created_at

    def _sync_history(self, row: Site, history: HistoryBuffer) -> None:
        """Append the results this row has not counted yet, then trim to the cap."""
        stored = row.history
        recorded = row.checks_recorded or len(stored)
        unsaved = min(history.total - recorded, len(history))
        if unsaved > 0:
            for result in history.items[-unsaved:]:
                stored.append(CheckRecord(
                    observed_at=result.observed_at,
                    status_code=result.status_code,
                    duration_ms=result.duration_ms,
                    detail=result.detail,
                ))
        row.checks_recorded = max(recorded, history.total)
        excess = len(stored) - self.history_cap
        if excess > 0:
            # delete-orphan removes the evicted rows
            del stored[:excess]

    def _to_domain(self, row: Site) -> MonitoredSite:
        return MonitoredSite(
            id=row.id,
            url=row.url,
            name=row.name,
            notify_email=row.notify_email,
            status=SiteStatus(row.status),
            consecutive_failures=row.consecutive_failures,
            last_checked_at=row.last_checked_at,
            next_check_at=row.next_check_at,
            downtime_deadline=row.downtime_deadline,
            suspended=bool(row.suspended),
            notified_for_current_incident=bool(row.notified_for_current_incident),
            history=HistoryBuffer(self.history_cap, [
                CheckResult(
                    observed_at=record.observed_at,
                    status_code=record.status_code,
                    duration_ms=record.duration_ms,
                    detail=record.detail,
                )
                for record in row.history
            ], total=row.checks_recorded),
            created_at=row.created_at,
        )
