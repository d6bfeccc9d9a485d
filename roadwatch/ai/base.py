"""
Parser abstraction for turning citizen reports into structured incidents.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from roadwatch.core.constants import (
    IncidentType,
    FragmentKind,
    FALLBACK_SEVERITY,
    PARSED_DESCRIPTION_MAX,
)

logger = logging.getLogger(__name__)


@dataclass
class ParsedIncident:
    """Structured interpretation of a free-form report."""
    type: IncidentType
    severity: int
    description: str
    location_hint: Optional[str] = None
    is_emergency: bool = False
    confidence: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedIncident":
        """
        Build from a backend JSON payload, coercing every field into range.

        Accepts both camelCase (``locationHint``, ``isEmergency``) and
        snake_case keys. Unknown types become ``other``.
        """
        if not isinstance(data, dict):
            raise ValueError("Parsed payload must be a JSON object")

        try:
            incident_type = IncidentType(str(data.get("type", "other")).strip().lower())
        except ValueError:
            incident_type = IncidentType.OTHER

        try:
            severity = int(data.get("severity", FALLBACK_SEVERITY))
        except (TypeError, ValueError):
            severity = FALLBACK_SEVERITY
        severity = max(1, min(5, severity))

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))

        description = str(data.get("description") or "")[:PARSED_DESCRIPTION_MAX]
        location_hint = data.get("locationHint", data.get("location_hint"))
        is_emergency = data.get("isEmergency", data.get("is_emergency", False))

        return cls(
            type=incident_type,
            severity=severity,
            description=description,
            location_hint=str(location_hint) if location_hint else None,
            is_emergency=bool(is_emergency),
            confidence=confidence,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "severity": self.severity,
            "description": self.description,
            "location_hint": self.location_hint,
            "is_emergency": self.is_emergency,
            "confidence": self.confidence,
        }


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Return the first well-formed JSON object embedded in text.

    Model replies often wrap the payload in prose or markdown fences, so
    decoding is attempted at every opening brace until one succeeds.
    """
    if not text:
        return None

    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


class IncidentParser(ABC):
    """
    Base class for report parsers.

    Text analysis must always produce a result. Voice and photo analysis
    return None when the parser cannot interpret the media.
    """

    name: str = "base"

    @abstractmethod
    async def analyze_text(self, text: str) -> ParsedIncident:
        """Classify a text report."""

    async def analyze_voice(self, audio: bytes, mime_type: str) -> Optional[ParsedIncident]:
        return None

    async def analyze_photo(self, image: bytes, mime_type: str) -> Optional[ParsedIncident]:
        return None

    async def analyze(
        self,
        kind: FragmentKind,
        payload: Any,
        mime_type: Optional[str] = None
    ) -> Optional[ParsedIncident]:
        """
        Dispatch a fragment payload to the matching analysis method.

        Args:
            kind: Fragment kind (text, voice or photo)
            payload: Text for text fragments, raw bytes for media
            mime_type: MIME type of media payloads

        Returns:
            ParsedIncident, or None when media could not be analyzed
        """
        kind = FragmentKind(kind)
        if kind == FragmentKind.TEXT:
            return await self.analyze_text(payload or "")
        if kind == FragmentKind.VOICE:
            return await self.analyze_voice(payload, mime_type or "audio/ogg")
        if kind == FragmentKind.PHOTO:
            return await self.analyze_photo(payload, mime_type or "image/jpeg")
        raise ValueError(f"Fragment kind cannot be analyzed: {kind.value}")
