"""
Maintenance scheduler for RoadWatch AI
Periodic incident expiry, pending-report purge and the daily digest.
Runs inside the application's event loop; no external cron needed.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from roadwatch.core.constants import INCIDENT_TYPE_INFO, SEVERITY_EMOJI
from roadwatch.core.exceptions import StoreUnavailableError
from roadwatch.crowdsource.store import IncidentStore
from roadwatch.database.models import Incident, utcnow
from .broadcast import Broadcaster

logger = logging.getLogger(__name__)

DIGEST_WINDOW_MINUTES = 12 * 60
DIGEST_MAX_ITEMS = 5
DIGEST_CHECK_SECONDS = 60 * 60


def build_digest(incidents: List[Incident], local_date: date) -> str:
    """
    Format the morning summary of active incidents.

    Args:
        incidents: Active incidents, newest first
        local_date: Date shown in the header

    Returns:
        Digest text
    """
    lines = [
        "🌅 *MORNING BRIEF*",
        f"📅 {local_date:%A %d %B %Y}",
        "",
    ]

    if not incidents:
        lines.append("✅ No active alerts. Roads are clear.")
        return "\n".join(lines)

    lines.append(f"🚨 *{len(incidents)} Active Alerts:*")
    for i, incident in enumerate(incidents[:DIGEST_MAX_ITEMS], start=1):
        info = INCIDENT_TYPE_INFO.get(incident.type, INCIDENT_TYPE_INFO["other"])
        severity = SEVERITY_EMOJI.get(incident.severity, "⚠️")
        place = f" at {incident.address}" if incident.address else ""
        lines.append(f"{i}. {info['emoji']} {info['label']}{place} {severity}")

    if len(incidents) > DIGEST_MAX_ITEMS:
        lines.append(f"...and {len(incidents) - DIGEST_MAX_ITEMS} more")

    return "\n".join(lines)


class MaintenanceScheduler:
    """
    Background maintenance loops.

    Each loop logs and survives failures of a single run.
    """

    def __init__(
        self,
        store: IncidentStore,
        broadcaster: Optional[Broadcaster] = None,
        purge_pending: Optional[Callable[[], int]] = None,
        expiry_interval_minutes: int = 15,
        digest_enabled: bool = True,
        digest_hour_local: int = 6,
        utc_offset_hours: int = 1,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize the scheduler.

        Args:
            store: Incident store
            broadcaster: Destination of the daily digest
            purge_pending: Callback dropping abandoned pending reports
            expiry_interval_minutes: Minutes between expiry sweeps
            digest_enabled: Send the daily digest
            digest_hour_local: Local hour at which the digest is sent
            utc_offset_hours: Local time offset from UTC
            clock: Source of the current naive UTC time
        """
        self.store = store
        self.broadcaster = broadcaster
        self.purge_pending = purge_pending
        self.expiry_interval = expiry_interval_minutes * 60
        self.digest_enabled = digest_enabled
        self.digest_hour_local = digest_hour_local
        self.utc_offset = timedelta(hours=utc_offset_hours)
        self.clock = clock

        self._tasks: List[asyncio.Task] = []
        self._last_digest_date: Optional[date] = None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Start the background loops on the running event loop."""
        if self.running:
            return
        self._tasks = [asyncio.create_task(self._expiry_loop(), name="expiry-sweep")]
        if self.digest_enabled and self.broadcaster is not None:
            self._tasks.append(asyncio.create_task(self._digest_loop(), name="daily-digest"))
        logger.info(f"Scheduler started (expiry every {self.expiry_interval // 60} min)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")

    async def run_expiry_sweep(self) -> int:
        """
        Expire stale incidents and purge abandoned pending reports.

        Returns:
            Number of incidents expired (0 when the sweep failed)
        """
        now = self.clock()
        expired = 0
        try:
            expired = await asyncio.to_thread(self.store.expire_stale, now)
        except StoreUnavailableError as e:
            logger.error(f"Expiry sweep failed: {e}")

        if self.purge_pending is not None:
            self.purge_pending()

        return expired

    def local_now(self) -> datetime:
        return self.clock() + self.utc_offset

    def digest_due(self) -> bool:
        """True at the digest hour if today's digest has not been sent."""
        local = self.local_now()
        return local.hour == self.digest_hour_local and self._last_digest_date != local.date()

    async def run_digest(self, force: bool = False) -> bool:
        """
        Send the daily digest if due.

        Returns:
            True if a digest was sent
        """
        if self.broadcaster is None or not (force or self.digest_due()):
            return False

        local = self.local_now()
        try:
            incidents = await asyncio.to_thread(
                self.store.get_active_incidents, DIGEST_WINDOW_MINUTES, self.clock()
            )
        except StoreUnavailableError as e:
            logger.error(f"Digest skipped, store unavailable: {e}")
            return False

        sent = await self.broadcaster.send(build_digest(incidents, local.date()))
        if sent:
            self._last_digest_date = local.date()
            logger.info(f"Daily digest sent with {len(incidents)} active incidents")
        return sent

    async def _expiry_loop(self) -> None:
        while True:
            try:
                await self.run_expiry_sweep()
            except Exception as e:
                logger.exception(f"Unexpected error in expiry sweep: {e}")
            await asyncio.sleep(self.expiry_interval)

    async def _digest_loop(self) -> None:
        while True:
            try:
                await self.run_digest()
            except Exception as e:
                logger.exception(f"Unexpected error in daily digest: {e}")
            await asyncio.sleep(DIGEST_CHECK_SECONDS)
