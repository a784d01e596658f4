"""
Safety score response models.
Field names follow the client wire format (camelCase).
"""

from typing import Dict, List, Optional

from pydantic import BaseModel


class ThreatType:
    RISK_GRID = "risk_grid"
    DANGER_ZONE = "danger_zone"
    DISTRESS = "sos_alert"
    INCIDENT = "incident"


class Threat(BaseModel):
    type: str
    name: str
    distance: int  # meters
    severity: str
    impact: int  # score points deducted
    category: Optional[str] = None
    isInside: Optional[bool] = None
    coordinates: Optional[Dict[str, float]] = None
    timestamp: Optional[str] = None
    reasons: List[Dict] = []


class SafetyScoreResult(BaseModel):
    score: int
    level: str
    color: str
    description: str
    totalThreats: int
    nearestThreat: Optional[Threat] = None
    threats: List[Threat] = []
    location: Dict[str, float]
    timestamp: str
    error: bool = False


class ScoreChangeNotification(BaseModel):
    type: str  # critical | warning | improvement
    title: str
    message: str
    priority: str
