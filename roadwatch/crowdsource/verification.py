"""
Verification and trust engine for RoadWatch AI
Community votes, reporter reputation and badges.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from roadwatch.core.constants import BADGE_TIERS, DEFAULT_BADGE, Vote
from roadwatch.database.models import Reporter
from .store import IncidentStore, VoteResult

logger = logging.getLogger(__name__)


def badge_for(trust_score: int, reports_count: int) -> str:
    """
    Badge earned by a reporter, highest tier first.

    Args:
        trust_score: Current trust score (0-100)
        reports_count: Number of reports submitted

    Returns:
        Badge label
    """
    for badge, min_reports, min_trust in BADGE_TIERS:
        if reports_count >= min_reports and trust_score >= min_trust:
            return badge
    return DEFAULT_BADGE


@dataclass
class LeaderboardEntry:
    """One row of the reporter leaderboard."""
    rank: int
    reporter_id: str
    username: Optional[str]
    trust_score: int
    reports_count: int
    badge: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "reporter_id": self.reporter_id,
            "username": self.username,
            "trust_score": self.trust_score,
            "reports_count": self.reports_count,
            "badge": self.badge,
        }


class VerificationEngine:
    """
    Applies community votes and reputation changes.

    Store calls are blocking database work and run in worker threads so one
    reporter's vote never stalls other flows on the event loop.
    """

    def __init__(self, store: IncidentStore):
        self.store = store

    @property
    def policy(self):
        return self.store.policy

    async def cast_vote(self, incident_id: str, reporter_id: str, vote: Vote) -> VoteResult:
        """
        Record a confirm or deny vote on an incident.

        Returns:
            VoteResult; duplicate votes come back with reason ``already_voted``

        Raises:
            IncidentNotFoundError: Unknown incident
            StoreUnavailableError: Persistence failed
        """
        result = await asyncio.to_thread(self.store.apply_vote, incident_id, reporter_id, vote)
        if not result.accepted:
            logger.info(f"Vote by {reporter_id} on {incident_id} rejected: {result.reason}")
        return result

    async def confirm(self, incident_id: str, reporter_id: str) -> VoteResult:
        return await self.cast_vote(incident_id, reporter_id, Vote.CONFIRM)

    async def deny(self, incident_id: str, reporter_id: str) -> VoteResult:
        return await self.cast_vote(incident_id, reporter_id, Vote.DENY)

    async def reward_report(self, reporter_id: str) -> Reporter:
        """Credit a reporter for a submitted report (new or merged)."""
        reporter = await asyncio.to_thread(self.store.record_report, reporter_id)
        logger.info(
            f"Reporter {reporter_id} rewarded +{self.policy.trust_report_delta} trust "
            f"(score={reporter.trust_score}, reports={reporter.reports_count})"
        )
        return reporter

    async def leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        reporters = await asyncio.to_thread(self.store.get_leaderboard, limit)
        return [
            LeaderboardEntry(
                rank=rank,
                reporter_id=reporter.id,
                username=reporter.username,
                trust_score=reporter.trust_score,
                reports_count=reporter.reports_count,
                badge=badge_for(reporter.trust_score, reporter.reports_count),
            )
            for rank, reporter in enumerate(reporters, start=1)
        ]

    async def reporter_profile(self, reporter_id: str) -> Optional[Dict[str, Any]]:
        """Reporter record with its badge, or None if unknown."""
        reporter = await asyncio.to_thread(self.store.get_reporter, reporter_id)
        if reporter is None:
            return None
        profile = reporter.to_dict()
        profile["badge"] = badge_for(reporter.trust_score, reporter.reports_count)
        return profile

    async def update_preferences(self, reporter_id: str, **changes) -> Reporter:
        return await asyncio.to_thread(
            self.store.update_reporter_preferences, reporter_id, **changes
        )

    async def anonymize(self, reporter_id: str) -> Optional[Reporter]:
        return await asyncio.to_thread(self.store.anonymize_reporter, reporter_id)
