"""
Location Retention Service
Location history is kept for a fixed retention period (DPDP Act 2023),
soft-deleted on request and purged by a background worker.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bandhan_auth.database import Database
from bandhan_auth.errors import InvalidInput
from bandhan_auth.models.location import LocationHistory
from bandhan_auth.models.session import OAuthState
from bandhan_auth.services.audit_service import AuditTrail
from bandhan_auth.services.consent_service import ConsentService
from bandhan_auth.utils.clock import Clock, utcnow

HISTORY_LIMIT = 100


def validate_coordinates(latitude: float, longitude: float):
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise InvalidInput(
            message="Invalid coordinates. Latitude must be -90 to 90, longitude -180 to 180.",
            message_hi="अमान्य निर्देशांक। अक्षांश -90 से 90 और देशांतर -180 से 180 होना चाहिए।",
        )


class LocationService:
    def __init__(self, db: AsyncSession, audit: AuditTrail, clock: Clock = utcnow,
                 retention_days: int = 90):
        self.db = db
        self.audit = audit
        self.clock = clock
        self.retention_days = retention_days

    async def record(self, user_id: UUID, latitude: float, longitude: float,
                     accuracy: Optional[float] = None) -> LocationHistory:
        """Store a location; requires active analytics consent"""
        validate_coordinates(latitude, longitude)
        await ConsentService(self.db, self.audit, self.clock).require(user_id, "purposeAnalytics")

        now = self.clock()
        location = LocationHistory(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            expires_at=now + timedelta(days=self.retention_days),
            is_expired=False,
            created_at=now,
        )
        self.db.add(location)
        await self.db.commit()
        return location

    async def history(self, user_id: UUID) -> List[LocationHistory]:
        result = await self.db.execute(
            select(LocationHistory)
            .where(
                LocationHistory.user_id == user_id,
                LocationHistory.is_expired.is_(False),
                LocationHistory.expires_at > self.clock(),
            )
            .order_by(LocationHistory.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        return list(result.scalars().all())

    async def delete_history(self, user_id: UUID) -> int:
        """Right to erasure: soft-delete every live row for user_id"""
        result = await self.db.execute(
            update(LocationHistory)
            .where(LocationHistory.user_id == user_id, LocationHistory.is_expired.is_(False))
            .values(is_expired=True)
            .execution_options(synchronize_session=False)
        )
        self.audit.record(
            event_type="LOCATION_DATA_DELETED",
            action="USER_REQUESTED_DELETION",
            entity_type="LOCATION_HISTORY",
            user_id=user_id,
            metadata={"recordsDeleted": result.rowcount, "requestedBy": "user"},
        )
        await self.db.commit()
        logger.info(f"Deleted {result.rowcount} location record(s) for user {user_id}")
        return result.rowcount


@dataclass
class CleanupReport:
    marked_expired: int
    purged: int
    oauth_states_removed: int


async def cleanup_expired_data(db: AsyncSession, clock: Clock = utcnow, retention_days: int = 90,
                               purge_after_days: int = 180) -> CleanupReport:
    """
    Mark lapsed location rows expired, purge long-expired ones and drop
    stale OAuth states. Safe to run concurrently or repeatedly.
    """
    now = clock()
    marked = await db.execute(
        update(LocationHistory)
        .where(LocationHistory.expires_at <= now, LocationHistory.is_expired.is_(False))
        .values(is_expired=True)
        .execution_options(synchronize_session=False)
    )
    purged = await db.execute(
        delete(LocationHistory)
        .where(
            LocationHistory.is_expired.is_(True),
            LocationHistory.expires_at <= now - timedelta(days=purge_after_days),
        )
        .execution_options(synchronize_session=False)
    )
    states = await db.execute(
        delete(OAuthState)
        .where(OAuthState.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    report = CleanupReport(
        marked_expired=marked.rowcount,
        purged=purged.rowcount,
        oauth_states_removed=states.rowcount,
    )
    AuditTrail(db, clock=clock).record(
        event_type="AUTO_DATA_CLEANUP",
        action="SCHEDULED_EXPIRY_DELETION",
        entity_type="LOCATION_HISTORY",
        metadata={
            "markedAsExpired": report.marked_expired,
            "permanentlyDeleted": report.purged,
            "expiredOAuthStates": report.oauth_states_removed,
            "retentionDays": retention_days,
            "safetyRetentionDays": purge_after_days,
        },
    )
    await db.commit()
    logger.info(
        f"Location cleanup: marked {report.marked_expired} expired, purged {report.purged}, "
        f"removed {report.oauth_states_removed} stale OAuth state(s)"
    )
    return report


class RetentionCleanupWorker:
    """Runs cleanup_expired_data on a fixed interval outside request handling"""

    def __init__(self, database: Database, interval_seconds: float, clock: Clock = utcnow,
                 retention_days: int = 90, purge_after_days: int = 180):
        self.database = database
        self.interval = max(1.0, float(interval_seconds))
        self.clock = clock
        self.retention_days = retention_days
        self.purge_after_days = purge_after_days
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def start(self):
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info(f"Retention cleanup worker started (every {self.interval:.0f}s)")

    async def stop(self):
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Retention cleanup worker stopped")

    async def run_once(self) -> CleanupReport:
        async with self.database.session_factory() as db:
            return await cleanup_expired_data(
                db, self.clock, self.retention_days, self.purge_after_days
            )

    async def _run(self):
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.opt(exception=e).error(f"Retention cleanup failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
