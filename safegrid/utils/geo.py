"""
Geo and time helpers shared by the risk engine, scorer and dispatcher.
"""

import math
from datetime import datetime, timezone
from typing import Optional

EARTH_RADIUS_M = 6371000


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (80.5 -> 81, not banker's 80)."""
    return int(math.floor(value + 0.5))


def latitude_window(lat: float, radius_m: float) -> tuple[float, float]:
    """Latitude band that fully contains a circle of radius_m around lat."""
    delta = math.degrees(radius_m / EARTH_RADIUS_M)
    return lat - delta, lat + delta


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse various timestamp formats to timezone-aware datetime (UTC).

    All datetimes must be timezone-aware to prevent comparison bugs.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        # epoch seconds
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    # Firestore Timestamp interface
    if hasattr(value, 'timestamp'):
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 3600
