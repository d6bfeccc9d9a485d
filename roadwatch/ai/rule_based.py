"""
Deterministic keyword classifier.

Used when no AI backend is configured and whenever the backend fails on a
text report.
"""

import re
import logging
from typing import List, Pattern, Tuple

from roadwatch.core.constants import (
    IncidentType,
    EMERGENCY_KEYWORDS,
    INCIDENT_KEYWORD_RULES,
    FALLBACK_SEVERITY,
    EMERGENCY_SEVERITY,
    FALLBACK_CONFIDENCE,
    PARSED_DESCRIPTION_MAX,
)
from .base import IncidentParser, ParsedIncident

logger = logging.getLogger(__name__)


def _word_pattern(keywords: List[str]) -> Pattern:
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_EMERGENCY_PATTERN = _word_pattern(EMERGENCY_KEYWORDS)

_TYPE_PATTERNS: List[Tuple[IncidentType, Pattern]] = [
    (incident_type, _word_pattern(keywords))
    for incident_type, keywords in INCIDENT_KEYWORD_RULES
]


def detect_emergency(text: str) -> bool:
    """True when the text contains an emergency keyword as a whole word."""
    return bool(text) and _EMERGENCY_PATTERN.search(text) is not None


def classify_text(text: str) -> ParsedIncident:
    """
    Classify a report by keyword.

    Emergency keywords win over everything. Otherwise the first matching
    rule in priority order decides the type; no match gives ``other``.
    """
    text = text or ""
    is_emergency = detect_emergency(text)

    incident_type = IncidentType.OTHER
    if is_emergency:
        incident_type = IncidentType.SOS
    else:
        for candidate, pattern in _TYPE_PATTERNS:
            if pattern.search(text):
                incident_type = candidate
                break

    return ParsedIncident(
        type=incident_type,
        severity=EMERGENCY_SEVERITY if is_emergency else FALLBACK_SEVERITY,
        description=text[:PARSED_DESCRIPTION_MAX],
        location_hint=None,
        is_emergency=is_emergency,
        confidence=FALLBACK_CONFIDENCE,
    )


class RuleBasedParser(IncidentParser):
    """Keyword parser; text only."""

    name = "rule_based"

    async def analyze_text(self, text: str) -> ParsedIncident:
        result = classify_text(text)
        logger.debug(f"Rule-based classification: {result.type.value} (severity {result.severity})")
        return result
