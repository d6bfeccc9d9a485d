"""
Database module for RoadWatch AI
Relational persistence for incidents, confirmations and reporters
"""

from .connection import DatabaseConnection, get_db, init_db
from .models import (
    Base,
    Incident,
    Confirmation,
    Reporter,
    utcnow,
)

__all__ = [
    "DatabaseConnection",
    "get_db",
    "init_db",
    "Base",
    "Incident",
    "Confirmation",
    "Reporter",
    "utcnow",
]
