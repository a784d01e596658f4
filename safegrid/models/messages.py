"""
Outbound real-time message payloads and channel names.

Every websocket frame is {"event": <channel>, "data": <payload>}.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from safegrid.models.safety import SafetyScoreResult


class Channel:
    NEW_EVENT = "newSOSAlert"
    EVENT_STATUS_CHANGED = "sosAlertUpdated"
    ZONE_ADDED = "dangerZoneAdded"
    INCIDENT_ADDED = "incidentReported"
    GRID_UPDATED = "riskGridUpdated"
    SCORE_UPDATE = "safetyScoreUpdate"
    SCORE_CHANGE_ALERT = "safetyScoreAlert"
    AUTHORITY_ALERT = "authorityAlert"
    REGISTRATION_CONFIRMED = "registrationConfirmed"
    BROADCAST_ERROR = "broadcastError"


class NewEventAlert(BaseModel):
    """New distress signal, pushed to authorities (fallback-backed)."""
    alertId: str
    userId: str
    location: Dict[str, float]
    locationName: Optional[str] = None
    timestamp: str
    safetyScore: Optional[float] = None
    reason: Optional[str] = None
    status: str = "new"


class EventStatusChanged(BaseModel):
    alertId: str
    status: str
    updatedAt: str


class ZoneAdded(BaseModel):
    id: str
    name: str
    type: str
    coords: list[float]
    radiusKm: Optional[float] = None
    riskLevel: Optional[str] = None


class IncidentAdded(BaseModel):
    id: str
    title: str
    category: Optional[str] = None
    severity: Optional[float] = None
    location: Dict[str, float]
    timestamp: str


class GridUpdated(BaseModel):
    gridId: str
    riskLevel: str
    riskScore: float
    tier: str
    center: list[float]
    radius: int
    gridName: str
    lastUpdated: str


class ScoreChangeAlert(BaseModel):
    type: str
    title: str
    message: str
    priority: str
    previousScore: int
    newScore: int
    safetyScoreData: SafetyScoreResult


class TargetArea(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius: float = Field(..., ge=0, description="meters")


class AuthorityAlertRequest(BaseModel):
    """What an authority dashboard sends over its websocket."""
    type: str  # emergency | warning | info | weather | civil_unrest
    title: str
    message: str
    priority: str = "medium"
    targetArea: Optional[TargetArea] = None  # None = every end user
    expiresAt: Optional[str] = None
    requiresAcknowledgment: bool = False
    actionRequired: Optional[str] = None
    authorityName: str = "Safety Authority"
    authorityId: str = "unknown"


class AuthorityAlert(AuthorityAlertRequest):
    alertId: str
    timestamp: str
    distanceFromEvent: Optional[int] = None  # meters, only when geofiltered


class RegistrationConfirmed(BaseModel):
    success: bool = True
    identity: str
    message: str = "You are now connected to receive real-time safety alerts"


class BroadcastError(BaseModel):
    success: bool = False
    message: str


def frame(channel: str, payload: Any) -> Dict[str, Any]:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", exclude_none=False)
    return {"event": channel, "data": payload}
