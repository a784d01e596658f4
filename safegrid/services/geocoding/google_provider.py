import logging
from typing import Dict, Any, Optional

import requests

from .base import GeocodingProvider, empty_result

logger = logging.getLogger(__name__)


class GoogleMapsProvider(GeocodingProvider):
    """
    Google Maps reverse-geocoding provider.

    - Used only when GEOCODING_PROVIDER=google AND GOOGLE_MAPS_API_KEY is set.
    - Same output schema as other providers.
    - Fails gracefully and never raises upstream exceptions.
    """

    BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def reverse_geocode(self, latitude: float, longitude: float) -> Dict[str, Optional[str]]:
        if not self.api_key:
            logger.info("GoogleMapsProvider called without API key; returning empty result.")
            return empty_result("google")

        try:
            params = {
                "latlng": f"{latitude},{longitude}",
                "result_type": "sublocality|neighborhood|locality",
                "key": self.api_key,
            }
            resp = requests.get(self.BASE_URL, params=params, timeout=3.0)
            if resp.status_code != 200:
                logger.warning(f"Google Maps reverse-geocode failed with status {resp.status_code}")
                return empty_result("google")

            data: Dict[str, Any] = resp.json()
            results = data.get("results") or []
            if not results:
                return empty_result("google")

            components = results[0].get("address_components") or []

            def _get_component(types):
                for c in components:
                    if any(t in c.get("types", []) for t in types):
                        return c.get("long_name")
                return None

            return {
                "locality": _get_component(["sublocality", "neighborhood"]),
                "city": _get_component(["locality", "postal_town"]),
                "state": _get_component(["administrative_area_level_1"]),
                "country": _get_component(["country"]),
                "provider": "google",
            }
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Google Maps reverse-geocode error: {e}")
            return empty_result("google")
