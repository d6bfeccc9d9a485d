"""
RoadWatch AI - Crowdsource Module
Citizen report intake, incident deduplication and community verification.
"""

from roadwatch.crowdsource.policy import VerificationPolicy
from roadwatch.crowdsource.store import (
    IncidentStore,
    IncidentCandidate,
    MergeResult,
    VoteResult,
    NearbyIncident,
)
from roadwatch.crowdsource.verification import (
    VerificationEngine,
    LeaderboardEntry,
    badge_for,
)
from roadwatch.crowdsource.intake import (
    ReportIntake,
    ReportFragment,
    PendingReport,
    PendingReportRegistry,
    PendingStep,
    IntakeOutcome,
    IntakeResult,
)

__all__ = [
    # Store
    "VerificationPolicy",
    "IncidentStore",
    "IncidentCandidate",
    "MergeResult",
    "VoteResult",
    "NearbyIncident",
    # Verification
    "VerificationEngine",
    "LeaderboardEntry",
    "badge_for",
    # Intake
    "ReportIntake",
    "ReportFragment",
    "PendingReport",
    "PendingReportRegistry",
    "PendingStep",
    "IntakeOutcome",
    "IntakeResult",
]
