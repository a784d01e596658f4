import logging
from typing import Optional

from safegrid.core.settings import settings
from .base import GeocodingProvider, display_name, placeholder_name
from .nominatim_provider import NominatimProvider
from .google_provider import GoogleMapsProvider

logger = logging.getLogger(__name__)

_provider_instance: Optional[GeocodingProvider] = None


def get_geocoding_provider() -> GeocodingProvider:
    """
    Resolve the active geocoding provider based on settings.

    Rules:
    - Default: Nominatim (no API key required).
    - GEOCODING_PROVIDER='google' AND GOOGLE_MAPS_API_KEY set: Google.
    """
    global _provider_instance
    if _provider_instance is not None:
        return _provider_instance

    provider_name = (settings.GEOCODING_PROVIDER or "nominatim").lower()

    if provider_name == "google" and settings.GOOGLE_MAPS_API_KEY:
        _provider_instance = GoogleMapsProvider(api_key=settings.GOOGLE_MAPS_API_KEY)
        logger.info("Geocoding provider initialized: google")
    else:
        _provider_instance = NominatimProvider()
        logger.info("Geocoding provider initialized: nominatim")

    return _provider_instance


def name_for_cell(latitude: float, longitude: float, provider: Optional[GeocodingProvider] = None) -> str:
    """
    Human name for a risk cell centre.
    Falls back to a coordinate placeholder, which is re-resolved on the next pass.
    """
    provider = provider or get_geocoding_provider()
    name = display_name(provider.reverse_geocode(latitude, longitude))
    return name or placeholder_name(latitude, longitude)
