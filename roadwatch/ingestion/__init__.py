"""
RoadWatch AI - Data Ingestion Module
Clients for external location services.
"""

from roadwatch.ingestion.geocoder import (
    ReverseGeocoder,
    format_address,
)

__all__ = [
    "ReverseGeocoder",
    "format_address",
]
