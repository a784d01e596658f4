"""
Shared pydantic building blocks for SafeGrid records.

DESIGN PRINCIPLE:
- Models should reflect data structure, not business logic
- Keep models simple and focused on validation
"""

from enum import Enum

from pydantic import BaseModel, Field


class GeoPoint(BaseModel):
    """A WGS84 point. Wire shape is {lat, lng}."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RiskLevel(str, Enum):
    """Qualitative risk level shared by risk cells and danger zones."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    VERY_HIGH = "Very High"
