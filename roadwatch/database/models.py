"""
SQLAlchemy models for RoadWatch AI
Incidents, community confirmations and reporters.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, Float, String, Text, Boolean, JSON,
    DateTime, ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from roadwatch.core.constants import IncidentStatus

Base = declarative_base()


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_incident_id() -> str:
    return str(uuid.uuid4())


class Reporter(Base):
    """
    Citizen who reports or votes on incidents.

    Created lazily on first interaction and never deleted.
    """
    __tablename__ = "reporters"

    id = Column(String(64), primary_key=True)
    username = Column(String(100))

    # Reputation
    trust_score = Column(Integer, nullable=False, default=50)
    reports_count = Column(Integer, nullable=False, default=0)
    accurate_reports = Column(Integer, nullable=False, default=0)

    # Preferences
    language = Column(String(5), nullable=False, default="fr")
    emergency_contacts = Column(JSON, nullable=False, default=list)
    subscription_tier = Column(String(20), nullable=False, default="free")
    subscribed_alerts = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    incidents = relationship("Incident", back_populates="reporter")

    __table_args__ = (
        CheckConstraint("trust_score >= 0 AND trust_score <= 100", name="ck_reporter_trust_range"),
        CheckConstraint("reports_count >= 0", name="ck_reporter_reports_count"),
        CheckConstraint("accurate_reports >= 0", name="ck_reporter_accurate_reports"),
    )

    def __repr__(self):
        return f"<Reporter({self.id}, trust={self.trust_score}, reports={self.reports_count})>"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "username": self.username,
            "trust_score": self.trust_score,
            "reports_count": self.reports_count,
            "accurate_reports": self.accurate_reports,
            "language": self.language,
            "emergency_contacts": list(self.emergency_contacts or []),
            "subscription_tier": self.subscription_tier,
            "subscribed_alerts": self.subscribed_alerts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Incident(Base):
    """
    Road incident built from one or more citizen reports.

    Owned by the incident store; status moves pending -> verified -> expired,
    or pending -> false when the community rejects it.
    """
    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True, default=new_incident_id)

    # Classification
    type = Column(String(20), nullable=False)
    description = Column(Text)
    severity = Column(Integer, nullable=False, default=3)

    # Location
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(255))

    # Lifecycle
    status = Column(String(10), nullable=False, default=IncidentStatus.PENDING.value)
    confirmations = Column(Integer, nullable=False, default=0)

    # Provenance
    reporter_id = Column(String(64), ForeignKey("reporters.id"), nullable=True)
    reporter = relationship("Reporter", back_populates="incidents")
    media_ref = Column(String(500))

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    votes = relationship("Confirmation", back_populates="incident", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("severity >= 1 AND severity <= 5", name="ck_incident_severity"),
        CheckConstraint("confirmations >= 0", name="ck_incident_confirmations"),
        CheckConstraint(
            "status IN ('pending', 'verified', 'expired', 'false')",
            name="ck_incident_status",
        ),
        CheckConstraint(
            "status != 'verified' OR confirmations >= 2",
            name="ck_incident_verified_confirmations",
        ),
        CheckConstraint("expires_at > created_at", name="ck_incident_expiry"),
        Index("idx_incident_status", status),
        Index("idx_incident_created_at", created_at),
        Index("idx_incident_location", latitude, longitude),
        Index("idx_incident_type_status", type, status),
    )

    def __repr__(self):
        return f"<Incident({self.id}, type={self.type}, status={self.status}, conf={self.confirmations})>"

    @property
    def is_active(self) -> bool:
        return self.status in (IncidentStatus.PENDING.value, IncidentStatus.VERIFIED.value)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "severity": self.severity,
            "status": self.status,
            "confirmations": self.confirmations,
            "reporter_id": self.reporter_id,
            "media_ref": self.media_ref,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class Confirmation(Base):
    """
    One reporter's vote on one incident.

    The composite primary key makes a second vote by the same reporter a
    constraint violation rather than an application check.
    """
    __tablename__ = "confirmations"

    incident_id = Column(
        String(36), ForeignKey("incidents.id", ondelete="CASCADE"), primary_key=True
    )
    reporter_id = Column(
        String(64), ForeignKey("reporters.id", ondelete="CASCADE"), primary_key=True
    )
    vote = Column(String(10), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    incident = relationship("Incident", back_populates="votes")

    __table_args__ = (
        CheckConstraint("vote IN ('confirm', 'deny')", name="ck_confirmation_vote"),
        Index("idx_confirmation_incident", incident_id),
    )

    def __repr__(self):
        return f"<Confirmation({self.incident_id}, {self.reporter_id}, {self.vote})>"
