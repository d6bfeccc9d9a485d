"""
Incident store for RoadWatch AI
Persistence, geospatial deduplication, votes and reporter reputation.

The store is the only component that mutates incidents. Every public method
runs in one database transaction; any SQLAlchemy failure is rolled back and
surfaced as StoreUnavailableError.
"""

import logging
import threading
import zlib
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Generator, List, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from roadwatch.core.constants import (
    ACTIVE_STATUSES,
    IncidentStatus,
    IncidentType,
    LANGUAGES,
    SUBSCRIPTION_TIERS,
    TRUST_MAX,
    TRUST_MIN,
    Vote,
)
from roadwatch.core.exceptions import IncidentNotFoundError, StoreUnavailableError
from roadwatch.core.geo_utils import (
    bounding_box_around,
    format_distance,
    haversine_distance,
    validate_coordinates,
)
from roadwatch.database.connection import DatabaseConnection
from roadwatch.database.models import (
    Confirmation,
    Incident,
    Reporter,
    to_naive_utc,
    utcnow,
)
from .policy import VerificationPolicy

logger = logging.getLogger(__name__)


@dataclass
class IncidentCandidate:
    """A completed report ready to be persisted or merged."""
    type: IncidentType
    latitude: float
    longitude: float
    reporter_id: str
    description: Optional[str] = None
    severity: int = 3
    address: Optional[str] = None
    media_ref: Optional[str] = None
    reported_at: Optional[datetime] = None


@dataclass
class MergeResult:
    """
    Outcome of create_or_merge_incident.

    confirmed is False when the reporter had already confirmed the matched
    incident, so the merge counted nothing new.
    """
    incident: Incident
    merged: bool
    became_verified: bool = False
    confirmed: bool = True


@dataclass
class VoteResult:
    """Outcome of a community vote. Rejections are results, not errors."""
    accepted: bool
    reason: str
    incident: Optional[Incident] = None
    became_verified: bool = False
    flagged_false: bool = False

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "incident": self.incident.to_dict() if self.incident else None,
            "became_verified": self.became_verified,
            "flagged_false": self.flagged_false,
        }


@dataclass
class NearbyIncident:
    """Active incident with its distance from a query point."""
    incident: Incident
    distance_km: float

    def to_dict(self) -> dict:
        data = self.incident.to_dict()
        data["distance_km"] = round(self.distance_km, 3)
        data["distance"] = format_distance(self.distance_km)
        return data


class IncidentStore:
    """
    Relational incident store.

    Deduplication runs under a lock keyed on the incident type: an
    in-process lock for threads sharing this store, plus a transaction-scoped
    advisory lock on PostgreSQL for multiple processes.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        policy: Optional[VerificationPolicy] = None
    ):
        """
        Initialize incident store.

        Args:
            db: Database connection
            policy: Lifecycle thresholds (defaults from settings)
        """
        self.db = db
        self.policy = policy or VerificationPolicy.from_settings()
        self._merge_locks: Dict[str, threading.Lock] = {}
        self._merge_locks_guard = threading.Lock()

    # =========================================================================
    # TRANSACTION HELPERS
    # =========================================================================

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        try:
            with self.db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    @contextmanager
    def _merge_lock(self, incident_type: str) -> Generator[None, None, None]:
        with self._merge_locks_guard:
            lock = self._merge_locks.setdefault(incident_type, threading.Lock())
        with lock:
            yield

    def _advisory_lock(self, session: Session, incident_type: str) -> None:
        if self.db.dialect_name != "postgresql":
            return
        key = zlib.crc32(f"incident-merge:{incident_type}".encode("utf-8"))
        session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})

    def _ensure_reporter(
        self,
        session: Session,
        reporter_id: str,
        username: Optional[str] = None
    ) -> Reporter:
        reporter = session.get(Reporter, reporter_id)
        if reporter is None:
            reporter = Reporter(
                id=reporter_id,
                username=username,
                trust_score=self.policy.trust_initial_score,
                reports_count=0,
                accurate_reports=0,
                emergency_contacts=[],
            )
            session.add(reporter)
            session.flush()
            logger.info(f"Reporter {reporter_id} registered")
        elif username and reporter.username != username:
            reporter.username = username
        return reporter

    def _locked_reporter(self, session: Session, reporter_id: str) -> Reporter:
        self._ensure_reporter(session, reporter_id)
        stmt = (
            select(Reporter)
            .where(Reporter.id == reporter_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.execute(stmt).scalar_one()

    def _apply_trust(self, session: Session, reporter_id: str, delta: int) -> Reporter:
        reporter = self._locked_reporter(session, reporter_id)
        reporter.trust_score = max(TRUST_MIN, min(TRUST_MAX, reporter.trust_score + delta))
        session.flush()
        return reporter

    def _promote_if_ready(self, session: Session, incident_id: str) -> bool:
        """Move a pending incident to verified once it has enough confirmations."""
        result = session.execute(
            update(Incident)
            .where(
                Incident.id == incident_id,
                Incident.status == IncidentStatus.PENDING.value,
                Incident.confirmations >= self.policy.verification_threshold,
            )
            .values(status=IncidentStatus.VERIFIED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        filer_id = session.scalar(select(Incident.reporter_id).where(Incident.id == incident_id))
        if filer_id:
            session.execute(
                update(Reporter)
                .where(Reporter.id == filer_id)
                .values(accurate_reports=Reporter.accurate_reports + 1)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"Incident {incident_id} verified")
        return True

    def _increment_confirmations(self, session: Session, incident_id: str) -> None:
        session.execute(
            update(Incident)
            .where(Incident.id == incident_id)
            .values(confirmations=Incident.confirmations + 1)
            .execution_options(synchronize_session=False)
        )

    def _insert_confirmation(
        self,
        session: Session,
        incident_id: str,
        reporter_id: str,
        vote: Vote,
        now: datetime
    ) -> bool:
        """Record a vote row; False when this reporter already voted."""
        if session.get(Confirmation, (incident_id, reporter_id)) is not None:
            return False
        try:
            with session.begin_nested():
                session.add(Confirmation(
                    incident_id=incident_id,
                    reporter_id=reporter_id,
                    vote=Vote(vote).value,
                    created_at=now,
                ))
        except IntegrityError:
            # Lost a race with a concurrent vote by the same reporter; only the
            # savepoint is rolled back
            logger.info(f"Duplicate vote by {reporter_id} on {incident_id} ignored")
            return False
        return True

    # =========================================================================
    # INCIDENTS
    # =========================================================================

    def _find_merge_target(
        self,
        session: Session,
        incident_type: str,
        latitude: float,
        longitude: float,
        now: datetime
    ) -> Optional[Incident]:
        radius_km = self.policy.merge_radius_m / 1000.0
        box = bounding_box_around(latitude, longitude, radius_km)
        window_start = now - timedelta(minutes=self.policy.merge_window_minutes)

        candidates = session.execute(
            select(Incident)
            .where(
                Incident.type == incident_type,
                Incident.status.in_(ACTIVE_STATUSES),
                Incident.created_at >= window_start,
                Incident.latitude.between(box.south, box.north),
                Incident.longitude.between(box.west, box.east),
            )
            .order_by(Incident.created_at.desc())
        ).scalars().all()

        for incident in candidates:
            distance_km = haversine_distance(
                latitude, longitude, incident.latitude, incident.longitude
            )
            if distance_km <= radius_km:
                return incident
        return None

    def create_or_merge_incident(self, candidate: IncidentCandidate) -> MergeResult:
        """
        Persist a report, folding it into a matching incident when one exists.

        A match is an active incident of the same type created within the
        merge window and within the merge radius. The most recent match wins.
        Merging counts as an implicit confirmation by the new reporter.

        Args:
            candidate: Completed report

        Returns:
            MergeResult with the resulting incident

        Raises:
            MalformedLocationError: Coordinates missing or out of range
            StoreUnavailableError: Persistence failed; nothing was committed
        """
        point = validate_coordinates(candidate.latitude, candidate.longitude)
        incident_type = IncidentType(candidate.type).value
        now = to_naive_utc(candidate.reported_at) if candidate.reported_at else utcnow()
        severity = max(1, min(5, int(candidate.severity)))
        description = candidate.description
        if description:
            description = description[:self.policy.description_max_length]
        ttl = timedelta(minutes=self.policy.incident_ttl_minutes)

        with self._merge_lock(incident_type):
            with self._transaction("create_or_merge_incident") as session:
                self._advisory_lock(session, incident_type)
                self._ensure_reporter(session, candidate.reporter_id)

                match = self._find_merge_target(
                    session, incident_type, point.latitude, point.longitude, now
                )

                if match is not None:
                    became_verified = False
                    confirmed = self._insert_confirmation(
                        session, match.id, candidate.reporter_id, Vote.CONFIRM, now
                    )
                    if confirmed:
                        self._increment_confirmations(session, match.id)
                        became_verified = self._promote_if_ready(session, match.id)
                    session.refresh(match)

                    if match.expires_at < now + ttl:
                        match.expires_at = now + ttl
                    if not match.address and candidate.address:
                        match.address = candidate.address
                    session.flush()

                    logger.info(
                        f"Merged {incident_type} report from {candidate.reporter_id} "
                        f"into incident {match.id} (confirmations={match.confirmations})"
                    )
                    return MergeResult(
                        incident=match,
                        merged=True,
                        became_verified=became_verified,
                        confirmed=confirmed,
                    )

                incident = Incident(
                    type=incident_type,
                    description=description,
                    severity=severity,
                    latitude=point.latitude,
                    longitude=point.longitude,
                    address=candidate.address,
                    status=IncidentStatus.PENDING.value,
                    confirmations=1,
                    reporter_id=candidate.reporter_id,
                    media_ref=candidate.media_ref,
                    created_at=now,
                    expires_at=now + ttl,
                )
                session.add(incident)
                session.flush()

                # The filer vouches for their own report
                session.add(Confirmation(
                    incident_id=incident.id,
                    reporter_id=candidate.reporter_id,
                    vote=Vote.CONFIRM.value,
                    created_at=now,
                ))
                session.flush()

                logger.info(
                    f"Created {incident_type} incident {incident.id} at "
                    f"({point.latitude:.5f}, {point.longitude:.5f})"
                )
                return MergeResult(incident=incident, merged=False)

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        with self._transaction("get_incident") as session:
            return session.get(Incident, incident_id)

    def get_active_incidents(
        self,
        max_age_minutes: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[Incident]:
        """
        Get live incidents, newest first.

        Args:
            max_age_minutes: Only incidents created within this many minutes
            now: Reference time (defaults to current UTC time)
        """
        now = to_naive_utc(now) if now else utcnow()
        stmt = select(Incident).where(
            Incident.status.in_(ACTIVE_STATUSES),
            Incident.expires_at > now,
        )
        if max_age_minutes is not None:
            stmt = stmt.where(Incident.created_at >= now - timedelta(minutes=max_age_minutes))

        with self._transaction("get_active_incidents") as session:
            return list(session.execute(stmt.order_by(Incident.created_at.desc())).scalars().all())

    def get_nearby_incidents(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 5.0,
        now: Optional[datetime] = None
    ) -> List[NearbyIncident]:
        """
        Get live incidents within radius_km of a point, nearest first.

        Raises:
            MalformedLocationError: Coordinates missing or out of range
        """
        point = validate_coordinates(latitude, longitude)
        now = to_naive_utc(now) if now else utcnow()
        box = bounding_box_around(point.latitude, point.longitude, radius_km)

        stmt = select(Incident).where(
            Incident.status.in_(ACTIVE_STATUSES),
            Incident.expires_at > now,
            Incident.latitude.between(box.south, box.north),
            Incident.longitude.between(box.west, box.east),
        )

        with self._transaction("get_nearby_incidents") as session:
            incidents = session.execute(stmt).scalars().all()

        nearby = []
        for incident in incidents:
            distance_km = haversine_distance(
                point.latitude, point.longitude, incident.latitude, incident.longitude
            )
            if distance_km <= radius_km:
                nearby.append(NearbyIncident(incident=incident, distance_km=distance_km))

        nearby.sort(key=lambda n: n.distance_km)
        return nearby

    def apply_vote(
        self,
        incident_id: str,
        reporter_id: str,
        vote: Vote,
        now: Optional[datetime] = None
    ) -> VoteResult:
        """
        Record a confirm or deny vote and apply its consequences.

        Confirmations increment atomically and promote the incident at the
        verification threshold. Denies flag a pending incident false once
        they reach the deny threshold and outnumber confirmations; verified
        incidents are never reverted. Each accepted vote earns the voter
        trust.

        Raises:
            IncidentNotFoundError: No incident with this id
            StoreUnavailableError: Persistence failed
        """
        vote = Vote(vote)
        now = to_naive_utc(now) if now else utcnow()

        with self._transaction("apply_vote") as session:
            incident = session.get(Incident, incident_id)
            if incident is None:
                raise IncidentNotFoundError(incident_id)
            if incident.status not in ACTIVE_STATUSES:
                return VoteResult(accepted=False, reason="incident_closed", incident=incident)

            self._ensure_reporter(session, reporter_id)
            if not self._insert_confirmation(session, incident_id, reporter_id, vote, now):
                incident = session.get(Incident, incident_id)
                return VoteResult(accepted=False, reason="already_voted", incident=incident)

            became_verified = False
            flagged_false = False

            if vote == Vote.CONFIRM:
                self._increment_confirmations(session, incident_id)
                became_verified = self._promote_if_ready(session, incident_id)
            else:
                flagged_false = self._apply_deny_policy(session, incident_id)

            self._apply_trust(session, reporter_id, self.policy.trust_vote_delta)
            session.refresh(incident)

            logger.info(
                f"Vote {vote.value} by {reporter_id} on incident {incident_id} "
                f"(status={incident.status}, confirmations={incident.confirmations})"
            )
            return VoteResult(
                accepted=True,
                reason="recorded",
                incident=incident,
                became_verified=became_verified,
                flagged_false=flagged_false,
            )

    def _apply_deny_policy(self, session: Session, incident_id: str) -> bool:
        denies = session.scalar(
            select(func.count())
            .select_from(Confirmation)
            .where(
                Confirmation.incident_id == incident_id,
                Confirmation.vote == Vote.DENY.value,
            )
        )
        if denies < self.policy.false_report_deny_threshold:
            return False

        result = session.execute(
            update(Incident)
            .where(
                Incident.id == incident_id,
                Incident.status == IncidentStatus.PENDING.value,
                Incident.confirmations < denies,
            )
            .values(status=IncidentStatus.FALSE.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        filer_id = session.scalar(select(Incident.reporter_id).where(Incident.id == incident_id))
        if filer_id:
            self._apply_trust(session, filer_id, -self.policy.trust_false_report_penalty)
        logger.warning(f"Incident {incident_id} flagged false after {denies} denies")
        return True

    def add_confirmation(self, incident_id: str, reporter_id: str, vote: Vote) -> bool:
        """Record a vote; False when the pair already voted or the incident is closed."""
        return self.apply_vote(incident_id, reporter_id, vote).accepted

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """
        Mark every live incident past its expiry as expired.

        One set-based UPDATE, so running it twice is harmless.

        Returns:
            Number of incidents expired
        """
        now = to_naive_utc(now) if now else utcnow()
        with self._transaction("expire_stale") as session:
            result = session.execute(
                update(Incident)
                .where(
                    Incident.status.in_(ACTIVE_STATUSES),
                    Incident.expires_at < now,
                )
                .values(status=IncidentStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        if count:
            logger.info(f"Expired {count} stale incidents")
        return count

    # =========================================================================
    # REPORTERS
    # =========================================================================

    def get_reporter(self, reporter_id: str) -> Optional[Reporter]:
        with self._transaction("get_reporter") as session:
            return session.get(Reporter, reporter_id)

    def get_or_create_reporter(self, reporter_id: str, username: Optional[str] = None) -> Reporter:
        with self._transaction("get_or_create_reporter") as session:
            return self._ensure_reporter(session, reporter_id, username)

    def record_report(self, reporter_id: str, trust_delta: Optional[int] = None) -> Reporter:
        """Count a report submission and add the report trust reward."""
        delta = self.policy.trust_report_delta if trust_delta is None else trust_delta
        with self._transaction("record_report") as session:
            reporter = self._locked_reporter(session, reporter_id)
            reporter.reports_count += 1
            reporter.trust_score = max(TRUST_MIN, min(TRUST_MAX, reporter.trust_score + delta))
            session.flush()
            return reporter

    def adjust_trust(self, reporter_id: str, delta: int) -> int:
        """Add delta to a reporter's trust, clamped to [0, 100]. Returns the new score."""
        with self._transaction("adjust_trust") as session:
            return self._apply_trust(session, reporter_id, delta).trust_score

    def get_leaderboard(self, limit: int = 10) -> List[Reporter]:
        with self._transaction("get_leaderboard") as session:
            stmt = (
                select(Reporter)
                .order_by(
                    Reporter.trust_score.desc(),
                    Reporter.reports_count.desc(),
                    Reporter.id,
                )
                .limit(limit)
            )
            return list(session.execute(stmt).scalars().all())

    def update_reporter_preferences(
        self,
        reporter_id: str,
        language: Optional[str] = None,
        emergency_contacts: Optional[List[str]] = None,
        subscription_tier: Optional[str] = None,
        subscribed_alerts: Optional[bool] = None
    ) -> Reporter:
        """
        Update reporter preferences; None leaves a field unchanged.

        Raises:
            ValueError: Unsupported language or subscription tier
        """
        if language is not None and language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        if subscription_tier is not None and subscription_tier not in SUBSCRIPTION_TIERS:
            raise ValueError(f"Unsupported subscription tier: {subscription_tier}")

        with self._transaction("update_reporter_preferences") as session:
            reporter = self._ensure_reporter(session, reporter_id)
            if language is not None:
                reporter.language = language
            if emergency_contacts is not None:
                reporter.emergency_contacts = list(emergency_contacts)
            if subscription_tier is not None:
                reporter.subscription_tier = subscription_tier
            if subscribed_alerts is not None:
                reporter.subscribed_alerts = subscribed_alerts
            session.flush()
            return reporter

    def anonymize_reporter(self, reporter_id: str) -> Optional[Reporter]:
        """
        Strip identifying data from a reporter, keeping reputation counters.

        Returns:
            The anonymized reporter, or None if unknown
        """
        with self._transaction("anonymize_reporter") as session:
            reporter = session.get(Reporter, reporter_id)
            if reporter is None:
                return None
            reporter.username = None
            reporter.emergency_contacts = []
            reporter.subscribed_alerts = False
            session.flush()
            logger.info(f"Reporter {reporter_id} anonymized")
            return reporter
