"""
Pydantic models for threat events (distress signals and incident reports).

Events are immutable once observed by the risk engine. They are stored in
Firestore with flat latitude/longitude fields so proximity searches can use a
latitude range query.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from safegrid.models.base import GeoPoint
from safegrid.utils.geo import parse_timestamp, utc_now


# Client clocks may run slightly ahead; anything later is rejected
MAX_CLOCK_SKEW = timedelta(minutes=5)


def reject_future_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    value = parse_timestamp(value)
    if value is not None and value > utc_now() + MAX_CLOCK_SKEW:
        raise ValueError("Timestamp cannot be in the future")
    return value


def observed_at(value: Optional[datetime]) -> datetime:
    """Event time, never later than the server clock."""
    now = utc_now()
    value = parse_timestamp(value)
    if value is None or value > now:
        return now
    return value


class DistressStatus(str, Enum):
    """
    Lifecycle of a distress signal.
    Only NEW signals count toward risk cells and raw proximity scoring.
    """
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    RESPONDING = "responding"
    RESOLVED = "resolved"


class DistressSignalCreate(BaseModel):
    """Incoming distress signal (POST /events/distress)."""
    user_id: str = Field(..., min_length=1, description="Logical identity of the sender")
    location: GeoPoint
    safety_score: Optional[float] = Field(None, ge=0, le=100, description="Sender's safety measure, lower is worse")
    reason: Optional[str] = Field(None, max_length=200, description="Free-text category, e.g. 'IMMEDIATE PANIC'")
    location_name: Optional[str] = Field(None, max_length=300)
    timestamp: Optional[datetime] = None

    _timestamp_not_future = field_validator("timestamp")(reject_future_timestamp)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "tourist-42",
                "location": {"lat": 15.4909, "lng": 73.8278},
                "safety_score": 35,
                "reason": "IMMEDIATE PANIC",
                "location_name": "Calangute Beach",
            }
        }
        extra = "ignore"


class DistressSignal(BaseModel):
    id: str
    user_id: str
    location: GeoPoint
    timestamp: datetime
    safety_score: Optional[float] = None
    reason: Optional[str] = None
    location_name: Optional[str] = None
    status: DistressStatus = DistressStatus.NEW

    @classmethod
    def from_create(cls, event_id: str, data: DistressSignalCreate) -> "DistressSignal":
        return cls(
            id=event_id,
            user_id=data.user_id,
            location=data.location,
            timestamp=observed_at(data.timestamp),
            safety_score=data.safety_score,
            reason=data.reason,
            location_name=data.location_name,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "latitude": self.location.lat,
            "longitude": self.location.lng,
            "timestamp": self.timestamp,
            "safety_score": self.safety_score,
            "reason": self.reason,
            "location_name": self.location_name,
            "status": self.status.value,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "DistressSignal":
        return cls(
            id=data["id"],
            user_id=data.get("user_id") or "unknown",
            location=GeoPoint(lat=data["latitude"], lng=data["longitude"]),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            safety_score=data.get("safety_score"),
            reason=data.get("reason"),
            location_name=data.get("location_name"),
            status=data.get("status") or DistressStatus.NEW,
        )


class DistressStatusUpdate(BaseModel):
    status: DistressStatus


class IncidentCreate(BaseModel):
    """Incoming incident report (POST /events/incidents)."""
    location: GeoPoint
    severity: float = Field(0.5, ge=0, le=1)
    title: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(None, max_length=100, description="e.g. theft, assault, riot")
    timestamp: Optional[datetime] = None

    _timestamp_not_future = field_validator("timestamp")(reject_future_timestamp)

    class Config:
        extra = "ignore"


class IncidentReport(BaseModel):
    id: str
    location: GeoPoint
    timestamp: datetime
    severity: Optional[float] = None
    title: str = "Incident"
    category: Optional[str] = None

    @classmethod
    def from_create(cls, event_id: str, data: IncidentCreate) -> "IncidentReport":
        return cls(
            id=event_id,
            location=data.location,
            timestamp=observed_at(data.timestamp),
            severity=data.severity,
            title=data.title,
            category=data.category,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "latitude": self.location.lat,
            "longitude": self.location.lng,
            "timestamp": self.timestamp,
            "severity": self.severity,
            "title": self.title,
            "category": self.category,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "IncidentReport":
        return cls(
            id=data["id"],
            location=GeoPoint(lat=data["latitude"], lng=data["longitude"]),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            severity=data.get("severity"),
            title=data.get("title") or "Incident",
            category=data.get("category"),
        )
