"""
RoadWatch AI - Geospatial Utilities
Distance and bounding-box math used by incident deduplication and lookups.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from roadwatch.core.constants import KM_PER_DEGREE
from roadwatch.core.exceptions import MalformedLocationError

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0


@dataclass
class Point:
    """Geographic point with latitude and longitude."""
    latitude: float
    longitude: float

    def to_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass
class BoundingBox:
    """Geographic bounding box."""
    west: float   # min longitude
    south: float  # min latitude
    east: float   # max longitude
    north: float  # max latitude

    def contains(self, point: Point) -> bool:
        """Check if a point is within the bounding box."""
        return (
            self.west <= point.longitude <= self.east and
            self.south <= point.latitude <= self.north
        )

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates in decimal degrees
        lat2, lon2: Second point coordinates in decimal degrees

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def km_to_degrees(km: float) -> float:
    """Convert a distance in kilometers to degrees of latitude."""
    return km / KM_PER_DEGREE


def bounding_box_around(
    latitude: float,
    longitude: float,
    radius_km: float
) -> BoundingBox:
    """
    Build a box that contains every point within radius_km of the center.

    The latitude span is radius_km / 111 degrees. The longitude span is
    widened by 1/cos(latitude) so the box never undercuts the circle away
    from the equator.

    Args:
        latitude, longitude: Center point in decimal degrees
        radius_km: Search radius in kilometers

    Returns:
        BoundingBox for use as a cheap pre-filter
    """
    lat_delta = km_to_degrees(radius_km)
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 0.01:
        lon_delta = 180.0
    else:
        lon_delta = min(180.0, lat_delta / cos_lat)

    return BoundingBox(
        west=longitude - lon_delta,
        south=latitude - lat_delta,
        east=longitude + lon_delta,
        north=latitude + lat_delta,
    )


def validate_coordinates(
    latitude: Optional[float],
    longitude: Optional[float]
) -> Point:
    """
    Check that a coordinate pair is present, finite and in range.

    Raises:
        MalformedLocationError: If either value is missing or invalid
    """
    if latitude is None or longitude is None:
        raise MalformedLocationError("Location requires both latitude and longitude")

    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as e:
        raise MalformedLocationError(f"Coordinates are not numeric: {e}") from e

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise MalformedLocationError("Coordinates must be finite numbers")
    if not -90.0 <= lat <= 90.0:
        raise MalformedLocationError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise MalformedLocationError(f"Longitude out of range: {lon}")

    return Point(latitude=lat, longitude=lon)


def format_distance(distance_km: float) -> str:
    """Format a distance for display (meters below 1 km)."""
    if distance_km < 1:
        return f"{distance_km * 1000:.0f}m"
    return f"{distance_km:.1f}km"
