"""
Pydantic models for static / operator-declared danger zones.
Zones are read-only input to the safety scorer.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from safegrid.models.base import RiskLevel


class ZoneType(str, Enum):
    CIRCLE = "circle"
    POLYGON = "polygon"


class DangerZoneCreate(BaseModel):
    """Incoming danger zone definition (POST /zones)."""
    id: str = Field(..., min_length=1, description="Stable zone id, e.g. 'disaster-0'")
    name: str = Field(..., min_length=1, max_length=200)
    type: ZoneType
    coords: List[float] = Field(..., description="[latitude, longitude] of the zone centre")
    radius_km: Optional[float] = Field(None, gt=0, description="Circle zones only")
    risk_level: Optional[RiskLevel] = None
    category: Optional[str] = None
    source: Optional[str] = None

    @field_validator("coords")
    @classmethod
    def _coords_pair(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("Coords must be [latitude, longitude]")
        return value


class DangerZone(DangerZoneCreate):

    @property
    def lat(self) -> float:
        return self.coords[0]

    @property
    def lng(self) -> float:
        return self.coords[1]

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["latitude"] = self.lat
        data["longitude"] = self.lng
        return data

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "DangerZone":
        return cls.model_validate(data)
