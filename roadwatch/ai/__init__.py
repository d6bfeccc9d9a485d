"""
AI parsing module for RoadWatch AI
Report classification with a Gemini backend and a keyword fallback
"""

from .base import IncidentParser, ParsedIncident, extract_json_object
from .rule_based import RuleBasedParser, classify_text, detect_emergency
from .gemini import GeminiParser
from .factory import create_parser, PARSER_BACKENDS

__all__ = [
    "IncidentParser",
    "ParsedIncident",
    "extract_json_object",
    "RuleBasedParser",
    "classify_text",
    "detect_emergency",
    "GeminiParser",
    "create_parser",
    "PARSER_BACKENDS",
]
