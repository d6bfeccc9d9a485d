"""
Lifecycle and trust parameters shared by the store and the verification engine.
"""

from dataclasses import dataclass
from typing import Optional

from roadwatch.core.config import Settings, settings as default_settings


@dataclass(frozen=True)
class VerificationPolicy:
    """Thresholds, windows and trust deltas for incident verification."""
    incident_ttl_minutes: int = 60
    merge_radius_m: float = 50.0
    merge_window_minutes: int = 10
    verification_threshold: int = 2
    false_report_deny_threshold: int = 3
    description_max_length: int = 500
    trust_initial_score: int = 50
    trust_report_delta: int = 3
    trust_vote_delta: int = 1
    trust_false_report_penalty: int = 10

    def __post_init__(self):
        if self.verification_threshold < 2:
            raise ValueError("verification_threshold must be at least 2")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "VerificationPolicy":
        settings = settings or default_settings
        return cls(
            incident_ttl_minutes=settings.incident_ttl_minutes,
            merge_radius_m=settings.merge_radius_m,
            merge_window_minutes=settings.merge_window_minutes,
            verification_threshold=settings.verification_threshold,
            false_report_deny_threshold=settings.false_report_deny_threshold,
            description_max_length=settings.description_max_length,
            trust_initial_score=settings.trust_initial_score,
            trust_report_delta=settings.trust_report_delta,
            trust_vote_delta=settings.trust_vote_delta,
            trust_false_report_penalty=settings.trust_false_report_penalty,
        )
