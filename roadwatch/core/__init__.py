"""
RoadWatch AI - Core Utilities
Central configuration, logging, and utility functions.
"""

from roadwatch.core.config import settings, get_settings, Settings
from roadwatch.core.constants import (
    IncidentType,
    IncidentStatus,
    Vote,
    FragmentKind,
    ACTIVE_STATUSES,
)
from roadwatch.core.geo_utils import (
    haversine_distance,
    bounding_box_around,
    validate_coordinates,
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "IncidentType",
    "IncidentStatus",
    "Vote",
    "FragmentKind",
    "ACTIVE_STATUSES",
    "haversine_distance",
    "bounding_box_around",
    "validate_coordinates",
]
