"""
Tests for risk cell naming via reverse geocoding.
"""

from unittest.mock import MagicMock, patch

import requests

from safegrid.services.geocoding.base import display_name, empty_result, is_placeholder_name, placeholder_name
from safegrid.services.geocoding.nominatim_provider import NominatimProvider
from safegrid.services.geocoding.resolver import name_for_cell


class StaticProvider:
    def __init__(self, result):
        self.result = result

    def reverse_geocode(self, latitude, longitude):
        return self.result


class TestDisplayName:

    def test_locality_and_city(self):
        result = {"locality": "Calangute", "city": "North Goa"}
        assert display_name(result) == "Calangute, North Goa"

    def test_duplicate_parts_collapse(self):
        assert display_name({"locality": "Panaji", "city": "Panaji"}) == "Panaji"

    def test_falls_back_to_state_and_country(self):
        assert display_name({"state": "Goa", "country": "India"}) == "Goa, India"

    def test_nothing_useful(self):
        assert display_name(empty_result("nominatim")) is None


class TestNameForCell:

    def test_uses_provider_name(self):
        provider = StaticProvider({"locality": "Baga", "city": "North Goa"})
        assert name_for_cell(15.55, 73.75, provider=provider) == "Baga, North Goa"

    def test_placeholder_when_provider_has_nothing(self):
        name = name_for_cell(15.55, 73.75, provider=StaticProvider(empty_result("nominatim")))
        assert name == placeholder_name(15.55, 73.75)
        assert is_placeholder_name(name)

    def test_real_names_are_not_placeholders(self):
        assert not is_placeholder_name("Baga, North Goa")
        assert is_placeholder_name(None)


class TestNominatimProvider:

    @patch("safegrid.services.geocoding.nominatim_provider.requests.get")
    def test_parses_address(self, mock_get):
        response = MagicMock(status_code=200)
        response.json.return_value = {"address": {"suburb": "Calangute", "town": "Bardez", "country": "India"}}
        mock_get.return_value = response

        result = NominatimProvider().reverse_geocode(15.54, 73.75)

        assert result["locality"] == "Calangute"
        assert result["city"] == "Bardez"
        assert result["provider"] == "nominatim"

    @patch("safegrid.services.geocoding.nominatim_provider.requests.get")
    def test_network_error_returns_empty_fields(self, mock_get):
        mock_get.side_effect = requests.Timeout("slow")

        result = NominatimProvider().reverse_geocode(15.54, 73.75)

        assert result == empty_result("nominatim")

    @patch("safegrid.services.geocoding.nominatim_provider.requests.get")
    def test_http_error_returns_empty_fields(self, mock_get):
        mock_get.return_value = MagicMock(status_code=503)
        assert NominatimProvider().reverse_geocode(15.54, 73.75)["city"] is None
