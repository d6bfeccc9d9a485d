"""
Report intake state machine for RoadWatch AI

Turns a reporter's sequence of fragments (type selection, text, voice,
photo, location) into a persisted incident:

    no pending -> awaiting_description -> awaiting_location -> persisted

A text, voice or photo report that the parser classifies skips straight to
awaiting_location. Location shared with nothing pending is an ambient
"what is near me" query.

The panic button opens a severity 5 SOS report that only waits for a
location, after alerting the reporter's emergency contacts.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from roadwatch.ai.base import IncidentParser, ParsedIncident
from roadwatch.alerts.broadcast import Broadcaster, ContactNotifier
from roadwatch.core.constants import (
    IncidentType,
    FragmentKind,
    FALLBACK_SEVERITY,
    EMERGENCY_SEVERITY,
)
from roadwatch.core.exceptions import MalformedLocationError, StoreUnavailableError
from roadwatch.core.geo_utils import validate_coordinates
from roadwatch.database.models import Incident, utcnow, to_naive_utc
from roadwatch.ingestion.geocoder import ReverseGeocoder
from .store import IncidentCandidate, IncidentStore, NearbyIncident
from .verification import VerificationEngine

logger = logging.getLogger(__name__)

PANIC_DESCRIPTION = "SOS panic button activated"


class PendingStep(str, Enum):
    AWAITING_DESCRIPTION = "awaiting_description"
    AWAITING_LOCATION = "awaiting_location"
    COMPLETE = "complete"


class IntakeOutcome(str, Enum):
    """What a fragment did to the reporter's flow."""
    TYPE_SELECTED = "type_selected"
    DESCRIPTION_CAPTURED = "description_captured"
    CLASSIFIED = "classified"
    NEEDS_DESCRIPTION = "needs_description"
    NEEDS_LOCATION = "needs_location"
    INVALID_LOCATION = "invalid_location"
    PERSISTED = "persisted"
    MERGED = "merged"
    AMBIENT_QUERY = "ambient_query"
    NOT_UNDERSTOOD = "not_understood"
    FLOW_IN_PROGRESS = "flow_in_progress"
    RESET = "reset"
    STALE = "stale"
    STORE_FAILED = "store_failed"
    PANIC_STARTED = "panic_started"


@dataclass(frozen=True)
class PendingReport:
    """
    A report under construction, one per reporter.

    Frozen: each transition stores a new instance, so a result handed to a
    caller keeps describing the state it was produced in.
    """
    reporter_id: str
    incident_type: IncidentType
    step: PendingStep
    description: Optional[str] = None
    severity: int = FALLBACK_SEVERITY
    media_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reporter_id": self.reporter_id,
            "incident_type": self.incident_type.value,
            "step": self.step.value,
            "description": self.description,
            "severity": self.severity,
            "media_ref": self.media_ref,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ReportFragment:
    """One inbound message from a reporter."""
    reporter_id: str
    kind: FragmentKind
    text: Optional[str] = None
    payload: Optional[bytes] = None
    mime_type: Optional[str] = None
    media_ref: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass
class IntakeResult:
    """Result of an intake operation."""
    outcome: IntakeOutcome
    pending: Optional[PendingReport] = None
    parsed: Optional[ParsedIncident] = None
    incident: Optional[Incident] = None
    became_verified: bool = False
    incidents: List[Incident] = field(default_factory=list)
    nearby: List[NearbyIncident] = field(default_factory=list)
    notified_contacts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "pending": self.pending.to_dict() if self.pending else None,
            "parsed": self.parsed.to_dict() if self.parsed else None,
            "incident": self.incident.to_dict() if self.incident else None,
            "became_verified": self.became_verified,
            "incidents": [i.to_dict() for i in self.incidents],
            "nearby": [n.to_dict() for n in self.nearby],
            "notified_contacts": self.notified_contacts,
        }


class PendingReportRegistry:
    """
    In-memory pending reports with per-reporter locks and state epochs.

    The epoch of a reporter changes on every transition, so a result that
    was computed outside the lock can tell whether the state it started
    from still holds.
    """

    def __init__(self, ttl_minutes: int = 30):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._reports: Dict[str, PendingReport] = {}
        self._epochs: Dict[str, int] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._reports)

    def __contains__(self, reporter_id: str) -> bool:
        return reporter_id in self._reports

    def lock_for(self, reporter_id: str) -> asyncio.Lock:
        lock = self._locks.get(reporter_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[reporter_id] = lock
        return lock

    def epoch(self, reporter_id: str) -> int:
        return self._epochs.get(reporter_id, 0)

    def _bump(self, reporter_id: str) -> None:
        self._epochs[reporter_id] = self.epoch(reporter_id) + 1

    def _is_expired(self, report: PendingReport, now: datetime) -> bool:
        return now - report.created_at > self.ttl

    def get(self, reporter_id: str, now: Optional[datetime] = None) -> Optional[PendingReport]:
        report = self._reports.get(reporter_id)
        if report is not None and self._is_expired(report, now or utcnow()):
            logger.info(f"Pending report of {reporter_id} expired")
            self.remove(reporter_id)
            return None
        return report

    def put(self, report: PendingReport) -> None:
        self._reports[report.reporter_id] = report
        self._bump(report.reporter_id)

    def remove(self, reporter_id: str) -> Optional[PendingReport]:
        self._bump(reporter_id)
        return self._reports.pop(reporter_id, None)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop pending reports older than the TTL. Returns the number removed."""
        now = now or utcnow()
        expired = [rid for rid, r in self._reports.items() if self._is_expired(r, now)]
        for reporter_id in expired:
            self.remove(reporter_id)
        if expired:
            logger.info(f"Purged {len(expired)} abandoned pending reports")
        return len(expired)


class ReportIntake:
    """
    Drives each reporter's report flow.

    Operations for one reporter are serialized by that reporter's lock.
    Parser calls run outside the lock; their result is dropped as stale if
    the reporter's state moved on while the call was in flight.
    """

    def __init__(
        self,
        parser: IncidentParser,
        store: IncidentStore,
        verification: Optional[VerificationEngine] = None,
        broadcaster: Optional[Broadcaster] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        registry: Optional[PendingReportRegistry] = None,
        notifier: Optional[ContactNotifier] = None,
        nearby_radius_km: float = 5.0,
        active_max_age_minutes: int = 240
    ):
        """
        Initialize report intake.

        Args:
            parser: Report parser
            store: Incident store
            verification: Verification engine used to reward reporters
            broadcaster: Publisher for new incidents (optional)
            geocoder: Reverse geocoder for addresses (optional)
            registry: Pending report registry
            notifier: Delivery of panic alerts to emergency contacts (optional)
            nearby_radius_km: Radius of ambient location queries
            active_max_age_minutes: Age limit of ambient text queries
        """
        self.parser = parser
        self.store = store
        self.verification = verification or VerificationEngine(store)
        self.broadcaster = broadcaster
        self.geocoder = geocoder
        self.registry = registry if registry is not None else PendingReportRegistry()
        self.notifier = notifier
        self.nearby_radius_km = nearby_radius_km
        self.active_max_age_minutes = active_max_age_minutes

    @property
    def description_max_length(self) -> int:
        return self.store.policy.description_max_length

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def select_type(self, reporter_id: str, incident_type: IncidentType) -> IntakeResult:
        """
        Start a report by explicit type selection.

        An existing flow is never replaced; the reporter must reset first.
        """
        incident_type = IncidentType(incident_type)
        async with self.registry.lock_for(reporter_id):
            existing = self.registry.get(reporter_id)
            if existing is not None:
                return IntakeResult(IntakeOutcome.FLOW_IN_PROGRESS, pending=existing)

            pending = PendingReport(
                reporter_id=reporter_id,
                incident_type=incident_type,
                step=PendingStep.AWAITING_DESCRIPTION,
                severity=EMERGENCY_SEVERITY if incident_type == IncidentType.SOS else FALLBACK_SEVERITY,
            )
            self.registry.put(pending)

        logger.info(f"Reporter {reporter_id} started a {incident_type.value} report")
        return IntakeResult(IntakeOutcome.TYPE_SELECTED, pending=pending)

    async def handle_fragment(self, fragment: ReportFragment) -> IntakeResult:
        """Route an inbound fragment by kind."""
        kind = FragmentKind(fragment.kind)
        if kind == FragmentKind.LOCATION:
            return await self._handle_location(fragment)
        if kind == FragmentKind.TEXT:
            return await self._handle_text(fragment)
        return await self._handle_media(fragment, kind)

    async def reset(self, reporter_id: str) -> IntakeResult:
        """Discard any pending report; in-flight parser results become stale."""
        async with self.registry.lock_for(reporter_id):
            discarded = self.registry.remove(reporter_id)
        if discarded is not None:
            logger.info(f"Reporter {reporter_id} reset their pending report")
        return IntakeResult(IntakeOutcome.RESET, pending=discarded)

    async def panic(self, reporter_id: str, username: Optional[str] = None) -> IntakeResult:
        """
        Handle the panic button.

        Alerts the reporter's emergency contacts and opens an SOS report that
        only waits for a location. Unlike select_type, this replaces any flow
        already in progress.
        """
        pending = PendingReport(
            reporter_id=reporter_id,
            incident_type=IncidentType.SOS,
            step=PendingStep.AWAITING_LOCATION,
            description=PANIC_DESCRIPTION,
            severity=EMERGENCY_SEVERITY,
        )
        async with self.registry.lock_for(reporter_id):
            self.registry.put(pending)
        logger.warning(f"Reporter {reporter_id} pressed the panic button")

        try:
            reporter = await asyncio.to_thread(
                self.store.get_or_create_reporter, reporter_id, username
            )
        except StoreUnavailableError as e:
            logger.error(f"Could not load emergency contacts of {reporter_id}: {e}")
            return IntakeResult(IntakeOutcome.PANIC_STARTED, pending=pending)

        notified = await self._alert_contacts(
            reporter_id, username or reporter.username, list(reporter.emergency_contacts or [])
        )
        return IntakeResult(IntakeOutcome.PANIC_STARTED, pending=pending, notified_contacts=notified)

    def purge_pending(self, now: Optional[datetime] = None) -> int:
        return self.registry.purge_expired(now)

    # =========================================================================
    # FRAGMENT HANDLERS
    # =========================================================================

    async def _handle_text(self, fragment: ReportFragment) -> IntakeResult:
        reporter_id = fragment.reporter_id
        text = (fragment.text or "").strip()

        async with self.registry.lock_for(reporter_id):
            pending = self.registry.get(reporter_id)
            if pending is not None:
                if pending.step != PendingStep.AWAITING_DESCRIPTION:
                    return IntakeResult(IntakeOutcome.NEEDS_LOCATION, pending=pending)
                if not text:
                    return IntakeResult(IntakeOutcome.NEEDS_DESCRIPTION, pending=pending)

                pending = replace(
                    pending,
                    description=text[:self.description_max_length],
                    step=PendingStep.AWAITING_LOCATION,
                )
                self.registry.put(pending)
                return IntakeResult(IntakeOutcome.DESCRIPTION_CAPTURED, pending=pending)

            if not text:
                return IntakeResult(IntakeOutcome.NOT_UNDERSTOOD)
            epoch = self.registry.epoch(reporter_id)

        parsed = await self.parser.analyze_text(text)

        async with self.registry.lock_for(reporter_id):
            if self.registry.epoch(reporter_id) != epoch:
                logger.info(f"Discarding stale text analysis for {reporter_id}")
                return IntakeResult(IntakeOutcome.STALE, parsed=parsed)

            if parsed.type != IncidentType.OTHER:
                pending = PendingReport(
                    reporter_id=reporter_id,
                    incident_type=parsed.type,
                    step=PendingStep.AWAITING_LOCATION,
                    description=(parsed.description or text)[:self.description_max_length],
                    severity=parsed.severity,
                )
                self.registry.put(pending)
                logger.info(f"Text from {reporter_id} classified as {parsed.type.value}")
                return IntakeResult(IntakeOutcome.CLASSIFIED, pending=pending, parsed=parsed)

        try:
            incidents = await asyncio.to_thread(
                self.store.get_active_incidents, self.active_max_age_minutes
            )
        except StoreUnavailableError:
            return IntakeResult(IntakeOutcome.STORE_FAILED, parsed=parsed)
        return IntakeResult(IntakeOutcome.AMBIENT_QUERY, parsed=parsed, incidents=incidents)

    async def _handle_media(self, fragment: ReportFragment, kind: FragmentKind) -> IntakeResult:
        reporter_id = fragment.reporter_id

        async with self.registry.lock_for(reporter_id):
            pending = self.registry.get(reporter_id)
            if pending is not None:
                return IntakeResult(IntakeOutcome.FLOW_IN_PROGRESS, pending=pending)
            epoch = self.registry.epoch(reporter_id)

        if not fragment.payload:
            return IntakeResult(IntakeOutcome.NOT_UNDERSTOOD)

        parsed = await self.parser.analyze(kind, fragment.payload, fragment.mime_type)

        async with self.registry.lock_for(reporter_id):
            if self.registry.epoch(reporter_id) != epoch:
                logger.info(f"Discarding stale {kind.value} analysis for {reporter_id}")
                return IntakeResult(IntakeOutcome.STALE, parsed=parsed)

            if parsed is None or parsed.type == IncidentType.OTHER:
                return IntakeResult(IntakeOutcome.NOT_UNDERSTOOD, parsed=parsed)

            fallback_description = "Photo report" if kind == FragmentKind.PHOTO else "Voice report"
            pending = PendingReport(
                reporter_id=reporter_id,
                incident_type=parsed.type,
                step=PendingStep.AWAITING_LOCATION,
                description=parsed.description or fallback_description,
                severity=parsed.severity,
                media_ref=fragment.media_ref if kind == FragmentKind.PHOTO else None,
            )
            self.registry.put(pending)

        logger.info(f"{kind.value.capitalize()} from {reporter_id} classified as {parsed.type.value}")
        return IntakeResult(IntakeOutcome.CLASSIFIED, pending=pending, parsed=parsed)

    async def _handle_location(self, fragment: ReportFragment) -> IntakeResult:
        reporter_id = fragment.reporter_id

        async with self.registry.lock_for(reporter_id):
            pending = self.registry.get(reporter_id)
            if pending is not None:
                if pending.step == PendingStep.AWAITING_DESCRIPTION:
                    return IntakeResult(IntakeOutcome.NEEDS_DESCRIPTION, pending=pending)
                return await self._finalize(pending, fragment)

        try:
            point = validate_coordinates(fragment.latitude, fragment.longitude)
        except MalformedLocationError:
            return IntakeResult(IntakeOutcome.INVALID_LOCATION)

        try:
            nearby = await asyncio.to_thread(
                self.store.get_nearby_incidents,
                point.latitude,
                point.longitude,
                self.nearby_radius_km,
            )
        except StoreUnavailableError:
            return IntakeResult(IntakeOutcome.STORE_FAILED)
        return IntakeResult(IntakeOutcome.AMBIENT_QUERY, nearby=nearby)

    async def _alert_contacts(
        self, reporter_id: str, username: Optional[str], contacts: List[str]
    ) -> int:
        """Send the SOS alert to each contact. Returns how many were reached."""
        if not contacts:
            return 0
        if self.notifier is None:
            logger.warning(f"No contact notifier configured, {len(contacts)} contacts of {reporter_id} not alerted")
            return 0

        text = (
            f"🚨 *SOS ALERT FROM @{username or reporter_id}*\n\n"
            "They pressed the panic button near you."
        )
        outcomes = await asyncio.gather(
            *(self.notifier.notify(contact, text) for contact in contacts),
            return_exceptions=True,
        )
        reached = 0
        for contact, outcome in zip(contacts, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Could not alert contact {contact} of {reporter_id}: {outcome}")
            else:
                reached += 1
        return reached

    async def _finalize(self, pending: PendingReport, fragment: ReportFragment) -> IntakeResult:
        """Persist a completed report. Caller holds the reporter's lock."""
        reporter_id = pending.reporter_id

        try:
            point = validate_coordinates(fragment.latitude, fragment.longitude)
        except MalformedLocationError as e:
            logger.info(f"Invalid location from {reporter_id}: {e}")
            return IntakeResult(IntakeOutcome.INVALID_LOCATION, pending=pending)

        address = None
        if self.geocoder is not None:
            address = await self.geocoder.reverse(point.latitude, point.longitude)

        candidate = IncidentCandidate(
            type=pending.incident_type,
            latitude=point.latitude,
            longitude=point.longitude,
            reporter_id=reporter_id,
            description=pending.description,
            severity=pending.severity,
            address=address,
            media_ref=pending.media_ref,
            reported_at=to_naive_utc(fragment.timestamp) if fragment.timestamp else None,
        )

        try:
            result = await asyncio.to_thread(self.store.create_or_merge_incident, candidate)
        except StoreUnavailableError as e:
            logger.error(f"Could not persist report from {reporter_id}, keeping it pending: {e}")
            return IntakeResult(IntakeOutcome.STORE_FAILED, pending=pending)

        self.registry.remove(reporter_id)

        if result.confirmed:
            try:
                await self.verification.reward_report(reporter_id)
            except StoreUnavailableError as e:
                logger.error(f"Could not reward reporter {reporter_id}: {e}")
        else:
            logger.info(f"Reporter {reporter_id} resubmitted incident {result.incident.id}, no reward")

        if not result.merged and self.broadcaster is not None:
            self.broadcaster.publish_incident(result.incident)

        return IntakeResult(
            IntakeOutcome.MERGED if result.merged else IntakeOutcome.PERSISTED,
            pending=replace(pending, step=PendingStep.COMPLETE),
            incident=result.incident,
            became_verified=result.became_verified,
        )
