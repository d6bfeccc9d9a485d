"""
RoadWatch AI - Constants and Reference Data
Static values used throughout the application.
"""

from enum import Enum
from typing import Dict, List, Tuple


# =============================================================================
# INCIDENT ENUMERATIONS
# =============================================================================

class IncidentType(str, Enum):
    """Closed set of road incident categories."""
    ACCIDENT = "accident"
    POLICE_CONTROL = "police_control"
    FLOODING = "flooding"
    TRAFFIC_JAM = "traffic_jam"
    ROAD_DAMAGE = "road_damage"
    ROAD_WORKS = "road_works"
    HAZARD = "hazard"
    PROTEST = "protest"
    ROADBLOCK = "roadblock"
    SOS = "sos"
    OTHER = "other"


class IncidentStatus(str, Enum):
    """Incident lifecycle status."""
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    FALSE = "false"


class Vote(str, Enum):
    """Community vote on an existing incident."""
    CONFIRM = "confirm"
    DENY = "deny"


class FragmentKind(str, Enum):
    """Kind of inbound report fragment."""
    TEXT = "text"
    VOICE = "voice"
    PHOTO = "photo"
    LOCATION = "location"


# Statuses that still describe a live road condition
ACTIVE_STATUSES: Tuple[str, ...] = (
    IncidentStatus.PENDING.value,
    IncidentStatus.VERIFIED.value,
)

LANGUAGES: Tuple[str, ...] = ("fr", "en", "pcm")
SUBSCRIPTION_TIERS: Tuple[str, ...] = ("free", "guardian")

# =============================================================================
# INCIDENT PRESENTATION
# =============================================================================

# Emoji and label used when an incident is broadcast
INCIDENT_TYPE_INFO: Dict[str, Dict[str, str]] = {
    "accident": {"emoji": "🚗", "label": "Accident"},
    "police_control": {"emoji": "👮", "label": "Road Checkpoint"},
    "flooding": {"emoji": "🌊", "label": "Flooding"},
    "traffic_jam": {"emoji": "🚦", "label": "Traffic Jam"},
    "road_damage": {"emoji": "🕳️", "label": "Road Damage"},
    "road_works": {"emoji": "🚧", "label": "Road Works"},
    "hazard": {"emoji": "⚠️", "label": "Road Hazard"},
    "protest": {"emoji": "✊", "label": "Protest"},
    "roadblock": {"emoji": "🛑", "label": "Roadblock"},
    "sos": {"emoji": "🆘", "label": "EMERGENCY"},
    "other": {"emoji": "❓", "label": "Other"},
}

SEVERITY_EMOJI: Dict[int, str] = {
    1: "🟢",
    2: "🟡",
    3: "🟠",
    4: "🔴",
    5: "⚫",
}

# Severity from which a broadcast is flagged critical (pinned by the transport)
CRITICAL_SEVERITY: int = 4

# =============================================================================
# FALLBACK CLASSIFIER KEYWORDS
# =============================================================================

EMERGENCY_KEYWORDS: List[str] = [
    "sos", "urgence", "emergency", "help", "au secours", "aide",
]

# Ordered rules, first match wins
INCIDENT_KEYWORD_RULES: List[Tuple[IncidentType, List[str]]] = [
    (IncidentType.ACCIDENT, ["accident", "collision", "crash"]),
    (IncidentType.POLICE_CONTROL, ["police", "gendarmerie", "contrôle", "control", "checkpoint"]),
    (IncidentType.FLOODING, ["flood", "inondation", "eau", "water"]),
    (IncidentType.TRAFFIC_JAM, ["jam", "bouchon", "embouteillage", "traffic", "congestion"]),
    (IncidentType.ROAD_WORKS, ["works", "chantier", "travaux", "construction"]),
    (IncidentType.HAZARD, ["fallen", "debris", "débris", "hazard", "danger", "arbre", "tree"]),
    (IncidentType.ROAD_DAMAGE, ["road", "route", "hole", "trou", "damage", "cassé"]),
    (IncidentType.PROTEST, ["protest", "manifestation", "grève", "strike"]),
    (IncidentType.ROADBLOCK, ["barrage", "roadblock", "block"]),
]

FALLBACK_SEVERITY: int = 3
EMERGENCY_SEVERITY: int = 5
FALLBACK_CONFIDENCE: float = 0.6
PARSED_DESCRIPTION_MAX: int = 100

# =============================================================================
# REPORTER TRUST
# =============================================================================

TRUST_MIN: int = 0
TRUST_MAX: int = 100

# (badge, min reports, min trust), highest tier first
BADGE_TIERS: List[Tuple[str, int, int]] = [
    ("👑 Legend", 100, 80),
    ("⭐ Trusted", 50, 70),
    ("🔵 Active", 10, 50),
]
DEFAULT_BADGE: str = "🆕 New"

# =============================================================================
# GEOGRAPHY
# =============================================================================

# Approximate kilometers per degree of latitude
KM_PER_DEGREE: float = 111.0
