"""
RoadWatch AI - REST API

FastAPI application exposing report intake, incident queries, community
votes and reporter profiles so any chat transport can drive the engine.

Run with: uvicorn roadwatch.api.main:app --reload
"""

import asyncio
import base64
import binascii
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from roadwatch import __version__
from roadwatch.ai import IncidentParser, create_parser
from roadwatch.alerts.broadcast import (
    Broadcaster,
    BroadcastSink,
    ContactNotifier,
    create_contact_notifier,
    create_sink,
)
from roadwatch.alerts.scheduler import MaintenanceScheduler
from roadwatch.core.config import Settings, get_settings
from roadwatch.core.constants import FragmentKind, IncidentType, Vote
from roadwatch.core.exceptions import (
    IncidentNotFoundError,
    MalformedLocationError,
    StoreUnavailableError,
)
from roadwatch.core.logging import get_logger, setup_logging
from roadwatch.crowdsource.intake import PendingReportRegistry, ReportFragment, ReportIntake
from roadwatch.crowdsource.policy import VerificationPolicy
from roadwatch.crowdsource.store import IncidentStore
from roadwatch.crowdsource.verification import VerificationEngine
from roadwatch.database.connection import DatabaseConnection
from roadwatch.ingestion.geocoder import ReverseGeocoder

logger = get_logger(__name__)


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthResponse(BaseModel):
    """API health status."""
    status: str
    version: str
    timestamp: str
    database: bool
    ai_backend: str
    pending_reports: int
    scheduler_running: bool


class FragmentRequest(BaseModel):
    """Inbound report fragment. Media payloads are base64 encoded."""
    reporter_id: str = Field(..., min_length=1, max_length=64)
    kind: FragmentKind
    text: Optional[str] = Field(default=None, max_length=4000)
    payload_base64: Optional[str] = None
    mime_type: Optional[str] = None
    media_ref: Optional[str] = Field(default=None, max_length=500)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[datetime] = None


class TypeSelectionRequest(BaseModel):
    """Explicit incident type chosen by the reporter."""
    type: IncidentType


class PanicRequest(BaseModel):
    """Optional context sent with a panic button press."""
    username: Optional[str] = Field(default=None, max_length=100)


class VoteRequest(BaseModel):
    """Community vote on an incident."""
    reporter_id: str = Field(..., min_length=1, max_length=64)
    vote: Vote


class PreferencesRequest(BaseModel):
    """Reporter preference update; omitted fields are unchanged."""
    language: Optional[str] = None
    emergency_contacts: Optional[List[str]] = None
    subscription_tier: Optional[str] = None
    subscribed_alerts: Optional[bool] = None


def _decode_payload(encoded: Optional[str]) -> Optional[bytes]:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"payload_base64 is not valid base64: {e}")


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    db: Optional[DatabaseConnection] = None,
    parser: Optional[IncidentParser] = None,
    sink: Optional[BroadcastSink] = None,
    notifier: Optional[ContactNotifier] = None,
    start_scheduler: bool = True
) -> FastAPI:
    """
    Build the API with its engine components.

    Args:
        settings: Application settings (defaults to environment)
        db: Database connection (defaults to settings.database_url)
        parser: Report parser (defaults to the configured AI backend)
        sink: Broadcast sink (defaults to Telegram when configured)
        notifier: Emergency contact notifier (defaults to Telegram when configured)
        start_scheduler: Run maintenance loops during the app lifespan

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    db = db or DatabaseConnection(database_url=settings.database_url)
    store = IncidentStore(db, VerificationPolicy.from_settings(settings))
    verification = VerificationEngine(store)
    broadcaster = Broadcaster(sink or create_sink(settings), settings.digest_utc_offset_hours)
    parser = parser or create_parser(settings)
    notifier = notifier or create_contact_notifier(settings)
    intake = ReportIntake(
        parser=parser,
        store=store,
        verification=verification,
        broadcaster=broadcaster,
        geocoder=ReverseGeocoder.from_settings(settings),
        registry=PendingReportRegistry(settings.pending_ttl_minutes),
        notifier=notifier,
        nearby_radius_km=settings.nearby_radius_km,
        active_max_age_minutes=settings.active_max_age_minutes,
    )
    scheduler = MaintenanceScheduler(
        store=store,
        broadcaster=broadcaster,
        purge_pending=intake.purge_pending,
        expiry_interval_minutes=settings.expiry_interval_minutes,
        digest_enabled=settings.digest_enabled,
        digest_hour_local=settings.digest_hour_local,
        utc_offset_hours=settings.digest_utc_offset_hours,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.create_tables()
        if start_scheduler:
            scheduler.start()
        logger.info(f"RoadWatch AI started (parser={parser.name})")
        yield
        await scheduler.stop()
        await broadcaster.close()
        await notifier.close()
        if intake.geocoder is not None:
            await intake.geocoder.close()
        logger.info("RoadWatch AI stopped")

    app = FastAPI(
        title="RoadWatch AI",
        description="Crowdsourced road incident reporting with AI parsing and community verification",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.store = store
    app.state.verification = verification
    app.state.broadcaster = broadcaster
    app.state.intake = intake
    app.state.scheduler = scheduler

    # ------------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------------

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        return JSONResponse(status_code=503, content={"detail": "Incident store unavailable"})

    @app.exception_handler(IncidentNotFoundError)
    async def incident_not_found_handler(request: Request, exc: IncidentNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(MalformedLocationError)
    async def malformed_location_handler(request: Request, exc: MalformedLocationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # ------------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check API health, database connectivity and engine state."""
        database_ok = await asyncio.to_thread(db.check_connection)
        return HealthResponse(
            status="healthy" if database_ok else "degraded",
            version=__version__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            database=database_ok,
            ai_backend=parser.name,
            pending_reports=len(intake.registry),
            scheduler_running=scheduler.running,
        )

    # ------------------------------------------------------------------------
    # Report intake
    # ------------------------------------------------------------------------

    @app.post("/api/v1/fragments", tags=["Intake"])
    async def submit_fragment(request: FragmentRequest):
        """
        Feed one inbound message into the reporter's report flow.

        The response ``outcome`` tells the transport what to ask next.
        """
        fragment = ReportFragment(
            reporter_id=request.reporter_id,
            kind=request.kind,
            text=request.text,
            payload=_decode_payload(request.payload_base64),
            mime_type=request.mime_type,
            media_ref=request.media_ref,
            latitude=request.latitude,
            longitude=request.longitude,
            timestamp=request.timestamp,
        )
        result = await intake.handle_fragment(fragment)
        return result.to_dict()

    @app.post("/api/v1/reporters/{reporter_id}/report-type", tags=["Intake"])
    async def select_report_type(reporter_id: str, request: TypeSelectionRequest):
        """Start a report by choosing its type."""
        result = await intake.select_type(reporter_id, request.type)
        return result.to_dict()

    @app.post("/api/v1/reporters/{reporter_id}/reset", tags=["Intake"])
    async def reset_report(reporter_id: str):
        """Discard the reporter's pending report."""
        result = await intake.reset(reporter_id)
        return result.to_dict()

    @app.post("/api/v1/reporters/{reporter_id}/panic", tags=["Intake"])
    async def press_panic(reporter_id: str, request: Optional[PanicRequest] = None):
        """
        Alert the reporter's emergency contacts and open an SOS report.

        The transport should ask for the reporter's location next.
        """
        username = request.username if request else None
        result = await intake.panic(reporter_id, username)
        return result.to_dict()

    # ------------------------------------------------------------------------
    # Reporters
    # ------------------------------------------------------------------------

    @app.get("/api/v1/reporters/{reporter_id}", tags=["Reporters"])
    async def get_reporter(reporter_id: str):
        """Reporter profile with trust score and badge."""
        profile = await verification.reporter_profile(reporter_id)
        if profile is None:
            raise HTTPException(status_code=404, detail=f"Reporter not found: {reporter_id}")
        return profile

    @app.patch("/api/v1/reporters/{reporter_id}/preferences", tags=["Reporters"])
    async def update_preferences(reporter_id: str, request: PreferencesRequest):
        """Update language, emergency contacts, subscription tier or alert subscription."""
        try:
            reporter = await verification.update_preferences(
                reporter_id, **request.model_dump(exclude_none=True)
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return reporter.to_dict()

    @app.post("/api/v1/reporters/{reporter_id}/anonymize", tags=["Reporters"])
    async def anonymize_reporter(reporter_id: str):
        """Remove identifying data while keeping reputation counters."""
        reporter = await verification.anonymize(reporter_id)
        if reporter is None:
            raise HTTPException(status_code=404, detail=f"Reporter not found: {reporter_id}")
        return reporter.to_dict()

    @app.get("/api/v1/leaderboard", tags=["Reporters"])
    async def get_leaderboard(limit: int = Query(default=10, ge=1, le=100)):
        """Top reporters by trust score, then report count."""
        entries = await verification.leaderboard(limit)
        return {"count": len(entries), "entries": [e.to_dict() for e in entries]}

    # ------------------------------------------------------------------------
    # Incidents
    # ------------------------------------------------------------------------

    @app.get("/api/v1/incidents/active", tags=["Incidents"])
    async def get_active_incidents(
        max_age_minutes: int = Query(default=settings.active_max_age_minutes, ge=1, le=10080),
    ):
        """Live incidents, newest first."""
        incidents = await asyncio.to_thread(store.get_active_incidents, max_age_minutes)
        return {"count": len(incidents), "incidents": [i.to_dict() for i in incidents]}

    @app.get("/api/v1/incidents/nearby", tags=["Incidents"])
    async def get_nearby_incidents(
        latitude: float = Query(..., ge=-90, le=90),
        longitude: float = Query(..., ge=-180, le=180),
        radius_km: float = Query(default=settings.nearby_radius_km, gt=0, le=100),
    ):
        """Live incidents around a point, nearest first."""
        nearby = await asyncio.to_thread(
            store.get_nearby_incidents, latitude, longitude, radius_km
        )
        return {"count": len(nearby), "incidents": [n.to_dict() for n in nearby]}

    @app.get("/api/v1/incidents/{incident_id}", tags=["Incidents"])
    async def get_incident(incident_id: str):
        incident = await asyncio.to_thread(store.get_incident, incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident.to_dict()

    @app.post("/api/v1/incidents/{incident_id}/votes", tags=["Incidents"])
    async def vote_on_incident(incident_id: str, request: VoteRequest):
        """
        Confirm or deny an incident.

        A second vote by the same reporter is answered with
        ``accepted: false`` and reason ``already_voted``.
        """
        result = await verification.cast_vote(incident_id, request.reporter_id, request.vote)
        return result.to_dict()

    # ------------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------------

    @app.post("/api/v1/admin/expire", tags=["Maintenance"])
    async def run_expiry():
        """Run the expiry sweep now."""
        expired = await scheduler.run_expiry_sweep()
        return {"expired": expired}

    return app


app = create_app()
