"""
Parser selection at startup.
"""

import logging
from typing import Dict, Optional, Type

from roadwatch.core.config import Settings, settings as default_settings
from .base import IncidentParser
from .gemini import GeminiParser
from .rule_based import RuleBasedParser

logger = logging.getLogger(__name__)

PARSER_BACKENDS: Dict[str, Type[IncidentParser]] = {
    "gemini": GeminiParser,
    "rule_based": RuleBasedParser,
}


def create_parser(settings: Optional[Settings] = None) -> IncidentParser:
    """
    Build the configured parser.

    Unknown backend names and a Gemini backend without an API key both
    resolve to the keyword parser.
    """
    settings = settings or default_settings
    backend = (settings.ai_backend or "").strip().lower()

    if backend not in PARSER_BACKENDS:
        logger.warning(f"Unknown AI backend '{settings.ai_backend}', using rule_based")
        return RuleBasedParser()

    if backend == "gemini":
        if not settings.gemini_api_key:
            logger.warning("AI backend 'gemini' selected without GEMINI_API_KEY, using rule_based")
            return RuleBasedParser()
        return GeminiParser(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout=settings.ai_timeout_seconds,
        )

    return PARSER_BACKENDS[backend]()
