"""
Reverse geocoding via OpenStreetMap Nominatim.
Turns a GPS fix into a short human-readable place name.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from roadwatch.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def format_address(address: Dict[str, Any]) -> Optional[str]:
    """
    Build a short place name from a Nominatim address block.

    Landmark, road, area and city are considered in that order; the first
    two present are kept.
    """
    parts = [
        address.get("amenity") or address.get("shop") or address.get("building"),
        address.get("road") or address.get("pedestrian"),
        address.get("suburb") or address.get("neighbourhood"),
        address.get("city") or address.get("town"),
    ]
    parts = [p for p in parts if p]
    if not parts:
        return None
    return ", ".join(parts[:2])


class ReverseGeocoder:
    """
    Async Nominatim client.

    Lookup failures never block a report: any error yields None.
    """

    def __init__(
        self,
        url: str = "https://nominatim.openstreetmap.org/reverse",
        user_agent: str = "RoadWatchAI/1.0",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the geocoder.

        Args:
            url: Nominatim reverse endpoint
            user_agent: User-Agent header required by the Nominatim usage policy
            timeout: Request timeout in seconds
            client: Optional shared HTTP client
        """
        self.url = url
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["ReverseGeocoder"]:
        """Geocoder when enabled in settings, otherwise None."""
        settings = settings or default_settings
        if not settings.geocoder_enabled:
            return None
        return cls(url=settings.nominatim_url, user_agent=settings.geocoder_user_agent)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent}
            )
        return self._client

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        """
        Look up a place name for coordinates.

        Returns:
            Short address, or None if unavailable
        """
        try:
            response = await self._get_client().get(
                self.url,
                params={
                    "format": "json",
                    "lat": latitude,
                    "lon": longitude,
                    "zoom": 18,
                    "addressdetails": 1,
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Reverse geocoding failed for ({latitude}, {longitude}): {e}")
            return None

        if not isinstance(data, dict) or not isinstance(data.get("address"), dict):
            return None
        return format_address(data["address"])

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
