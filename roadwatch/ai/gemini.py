"""
Gemini-backed report parser (Google Generative AI).
Handles text, voice notes and photos; text falls back to keyword rules.
"""

import asyncio
import logging
from typing import Any, List, Optional

import google.generativeai as genai

from roadwatch.core.constants import IncidentType, EMERGENCY_SEVERITY
from roadwatch.core.exceptions import BackendUnavailableError
from .base import IncidentParser, ParsedIncident, extract_json_object
from .rule_based import RuleBasedParser, detect_emergency

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a traffic intelligence assistant for Cameroon.
Reports arrive in French, English or Cameroonian Pidgin, often mixed.
Analyze the user's report and extract:
1. Incident type (one of: accident, police_control, flooding, traffic_jam, road_damage, road_works, hazard, protest, roadblock, sos, other)
2. Severity (1-5, where 5 is critical/emergency)
3. A brief description (max 100 chars, in the user's language)
4. Any location hints mentioned (e.g. "near Total Bastos")
5. Whether this is an emergency requiring immediate attention

Respond ONLY with valid JSON in this exact format:
{
  "type": "accident",
  "severity": 3,
  "description": "Two cars collision blocking lane",
  "locationHint": "near Total Bastos",
  "isEmergency": false,
  "confidence": 0.85
}

Be especially alert for:
- SOS, help, urgence, au secours = emergency (severity 5)
- Police, gendarmerie, controle routier, checkpoint = police_control
- Embouteillage, bouchon, hold up = traffic_jam
- Accident, collision, motor don jam = accident
- Inondation, eau, water for road = flooding
- Route cassee, nid de poule, road don spoil = road_damage
- Travaux, chantier = road_works
- Arbre tombe, debris, danger = hazard
- Manifestation, greve = protest
- Barrage, road closed = roadblock"""

VOICE_INSTRUCTION = "Transcribe this voice note and analyze the traffic report:"
PHOTO_INSTRUCTION = "Analyze this image for traffic incidents:"


class GeminiParser(IncidentParser):
    """
    Parser using a Gemini generative model.

    Every backend call is bounded by a timeout. Any failure on a text report
    falls back to the keyword classifier; failures on media return None.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-2.5-flash-lite",
        timeout: float = 15.0,
        fallback: Optional[IncidentParser] = None
    ):
        """
        Initialize Gemini parser.

        Args:
            api_key: Google AI API key; None leaves the backend unconfigured
            model_name: Generative model name
            timeout: Seconds to wait for a backend reply
            fallback: Parser used for text when the backend fails
        """
        self.model_name = model_name
        self.timeout = timeout
        self.fallback = fallback or RuleBasedParser()
        self._model = None

        if api_key:
            genai.configure(api_key=api_key)
            self._model = genai.GenerativeModel(model_name)
            logger.info(f"Gemini parser initialized with model {model_name}")
        else:
            logger.warning("Gemini API key not set, text reports use keyword fallback")

    @property
    def is_configured(self) -> bool:
        return self._model is not None

    async def _generate(self, parts: List[Any]) -> ParsedIncident:
        """
        Submit content parts and decode the reply.

        Raises:
            BackendUnavailableError: Backend missing, slow, failing, or reply unusable
        """
        if self._model is None:
            raise BackendUnavailableError("Gemini backend not configured")

        try:
            response = await asyncio.wait_for(
                self._model.generate_content_async(parts),
                timeout=self.timeout,
            )
            reply = response.text
        except asyncio.TimeoutError as e:
            raise BackendUnavailableError(f"Gemini timed out after {self.timeout}s") from e
        except Exception as e:
            raise BackendUnavailableError(f"Gemini request failed: {e}") from e

        payload = extract_json_object(reply)
        if payload is None:
            raise BackendUnavailableError("Gemini reply contained no JSON object")

        try:
            return ParsedIncident.from_dict(payload)
        except ValueError as e:
            raise BackendUnavailableError(f"Gemini reply was not a valid incident: {e}") from e

    async def analyze_text(self, text: str) -> ParsedIncident:
        try:
            result = await self._generate([
                {"text": SYSTEM_PROMPT},
                {"text": f'User report: "{text}"'},
            ])
        except BackendUnavailableError as e:
            logger.warning(f"Text analysis falling back to keyword rules: {e}")
            return await self.fallback.analyze_text(text)

        if detect_emergency(text):
            result.type = IncidentType.SOS
            result.severity = EMERGENCY_SEVERITY
            result.is_emergency = True

        return result

    async def analyze_voice(self, audio: bytes, mime_type: str) -> Optional[ParsedIncident]:
        try:
            return await self._generate([
                {"text": f"{SYSTEM_PROMPT}\n\n{VOICE_INSTRUCTION}"},
                {"mime_type": mime_type, "data": audio},
            ])
        except BackendUnavailableError as e:
            logger.warning(f"Voice analysis failed: {e}")
            return None

    async def analyze_photo(self, image: bytes, mime_type: str) -> Optional[ParsedIncident]:
        try:
            return await self._generate([
                {"text": f"{SYSTEM_PROMPT}\n\n{PHOTO_INSTRUCTION}"},
                {"mime_type": mime_type, "data": image},
            ])
        except BackendUnavailableError as e:
            logger.warning(f"Photo analysis failed: {e}")
            return None
