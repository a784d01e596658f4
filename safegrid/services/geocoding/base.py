from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class GeocodingProvider(ABC):
    """
    Abstract reverse-geocoding provider used to give risk cells a human name.

    Contract:
    - Input: latitude, longitude (floats)
    - Output: dict with well-known keys:
      {
        "locality": str | None,
        "city": str | None,
        "state": str | None,
        "country": str | None,
        "provider": str
      }
    - MUST NEVER raise upstream exceptions.
    - MUST return empty fields on failure.
    - Implementations should enforce a network timeout <= 3 seconds.
    """

    @abstractmethod
    def reverse_geocode(self, latitude: float, longitude: float) -> Dict[str, Optional[str]]:
        raise NotImplementedError


def empty_result(provider: str) -> Dict[str, Optional[str]]:
    return {
        "locality": None,
        "city": None,
        "state": None,
        "country": None,
        "provider": provider,
    }


PLACEHOLDER_PREFIX = "Zone ["


def placeholder_name(latitude: float, longitude: float) -> str:
    return f"{PLACEHOLDER_PREFIX}{latitude:.4f}, {longitude:.4f}]"


def is_placeholder_name(name: Optional[str]) -> bool:
    return not name or name.startswith(PLACEHOLDER_PREFIX)


def display_name(result: Dict[str, Optional[str]]) -> Optional[str]:
    """'Locality, City' from a provider result, or None if nothing useful came back."""
    parts = [p for p in (result.get("locality"), result.get("city")) if p]
    if not parts:
        parts = [p for p in (result.get("state"), result.get("country")) if p]
    # de-duplicate while keeping order ("Panaji, Panaji")
    seen = []
    for p in parts:
        if p not in seen:
            seen.append(p)
    return ", ".join(seen) or None
