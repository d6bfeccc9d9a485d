"""
Tests for reverse geocoding
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx

import sys
sys.path.insert(0, '.')

from roadwatch.core.config import Settings
from roadwatch.ingestion.geocoder import ReverseGeocoder, format_address


class TestFormatAddress:
    """Test suite for address formatting."""

    def test_landmark_and_road(self):
        address = {
            "amenity": "Total Bastos",
            "road": "Avenue Rosa Parks",
            "suburb": "Bastos",
            "city": "Yaoundé",
        }
        assert format_address(address) == "Total Bastos, Avenue Rosa Parks"

    def test_road_and_area(self):
        address = {"road": "Rue 1.750", "neighbourhood": "Mvan", "city": "Yaoundé"}
        assert format_address(address) == "Rue 1.750, Mvan"

    def test_city_only(self):
        assert format_address({"town": "Mbalmayo"}) == "Mbalmayo"

    def test_empty(self):
        assert format_address({"country": "Cameroun"}) is None


class TestReverseGeocoder:
    """Test suite for ReverseGeocoder."""

    def _client(self, payload=None, side_effect=None):
        response = MagicMock()
        response.json.return_value = payload
        response.raise_for_status = MagicMock()
        client = MagicMock()
        client.get = AsyncMock(return_value=response, side_effect=side_effect)
        return client

    def test_reverse_lookup(self):
        """Test a successful lookup returns a short address."""
        client = self._client({"address": {"road": "Boulevard du 20 Mai", "suburb": "Centre"}})
        geocoder = ReverseGeocoder(url="https://nominatim.test/reverse", client=client)

        address = asyncio.run(geocoder.reverse(3.8667, 11.5167))

        assert address == "Boulevard du 20 Mai, Centre"
        params = client.get.call_args.kwargs["params"]
        assert params["lat"] == 3.8667
        assert params["zoom"] == 18
        assert params["format"] == "json"

    def test_network_error_returns_none(self):
        """Test lookup failures never raise."""
        client = self._client(side_effect=httpx.ConnectError("unreachable"))
        geocoder = ReverseGeocoder(client=client)

        assert asyncio.run(geocoder.reverse(3.8667, 11.5167)) is None

    def test_unexpected_payload(self):
        """Test replies without an address block give None."""
        geocoder = ReverseGeocoder(client=self._client({"error": "Unable to geocode"}))
        assert asyncio.run(geocoder.reverse(0.0, 0.0)) is None

    def test_disabled_in_settings(self):
        """Test no geocoder is built when disabled."""
        assert ReverseGeocoder.from_settings(Settings(_env_file=None, geocoder_enabled=False)) is None

    def test_enabled_in_settings(self):
        settings = Settings(_env_file=None, geocoder_enabled=True, geocoder_user_agent="test-agent")
        geocoder = ReverseGeocoder.from_settings(settings)

        assert geocoder.user_agent == "test-agent"
