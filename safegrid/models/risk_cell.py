"""
Pydantic models for aggregated risk cells.

A risk cell's score is always recomputed from qualifying events plus decayed
history by the risk engine. Nothing else writes riskScore.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from safegrid.models.base import RiskLevel
from safegrid.utils.geo import parse_timestamp


class Tier(str, Enum):
    """Retention tier. Governs decay rate, sliding floor and lifetime."""
    STANDARD = "Standard"
    HIGH = "High"
    CRITICAL = "Critical"


class ReasonType(str, Enum):
    DISTRESS = "sos_alert"
    INCIDENT = "incident"


class RiskReason(BaseModel):
    """One contributing event, as shown on the map."""
    type: ReasonType
    title: str
    timestamp: datetime
    severity: Optional[float] = None  # incident severity (0-1) or distress safety measure (0-100)
    event_type: Optional[str] = None  # incident category or "sos"


class RiskCell(BaseModel):
    grid_id: str
    center_lat: float
    center_lng: float
    risk_score: float = Field(0.0, ge=0, le=1)
    risk_level: RiskLevel = RiskLevel.LOW
    tier: Tier = Tier.STANDARD
    radius: int = 500  # display radius, meters
    expires_at: datetime
    last_updated: datetime
    grid_name: str = "Unknown Zone"
    reasons: List[RiskReason] = []

    def to_document(self) -> Dict[str, Any]:
        return {
            "grid_id": self.grid_id,
            "latitude": self.center_lat,
            "longitude": self.center_lng,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "tier": self.tier.value,
            "radius": self.radius,
            "expires_at": self.expires_at,
            "last_updated": self.last_updated,
            "grid_name": self.grid_name,
            "reasons": [r.model_dump(mode="python") | {"type": r.type.value} for r in self.reasons],
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "RiskCell":
        return cls(
            grid_id=data.get("grid_id") or data["id"],
            center_lat=data["latitude"],
            center_lng=data["longitude"],
            risk_score=data.get("risk_score", 0.0),
            risk_level=data.get("risk_level") or RiskLevel.LOW,
            tier=data.get("tier") or Tier.STANDARD,
            radius=data.get("radius") or 500,
            expires_at=parse_timestamp(data.get("expires_at")),
            last_updated=parse_timestamp(data.get("last_updated")),
            grid_name=data.get("grid_name") or "Unknown Zone",
            reasons=data.get("reasons") or [],
        )

    def snapshot(self) -> Dict[str, Any]:
        """Wire shape sent to clients and returned by the API."""
        return {
            "gridId": self.grid_id,
            "center": [self.center_lng, self.center_lat],
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level.value,
            "tier": self.tier.value,
            "radius": self.radius,
            "expiresAt": self.expires_at.isoformat(),
            "lastUpdated": self.last_updated.isoformat(),
            "gridName": self.grid_name,
            "reasons": [
                {
                    "type": r.type.value,
                    "title": r.title,
                    "timestamp": r.timestamp.isoformat(),
                    "severity": r.severity,
                    "eventType": r.event_type,
                }
                for r in self.reasons
            ],
        }
