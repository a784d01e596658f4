"""
Safety Scorer - point-in-time 0-100 safety score for any location.

Score = 100 minus penalties from:
1. Nearby risk cells (four-band distance decay, bands sized by the cell radius)
2. Nearby danger zones (four-band decay, fixed bands, higher ceiling)
3. Raw recent distress signals and incidents (linear proximity penalty)

Raw events that fall inside a risk cell already penalised in step 1 are
skipped, so the same threat is not counted twice.

Score Ranges:
- 90-100: Excellent (Very Safe)
- 70-89:  Good (Safe)
- 50-69:  Fair (Moderate Risk)
- 30-49:  Poor (High Risk)
- 0-29:   Critical (Very High Risk)

score_at() never raises: on any internal failure it returns a neutral score
of 80 flagged with error=True.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional

from pydantic import ValidationError

from safegrid.config.firebase import (
    DANGER_ZONE_COLLECTION,
    DISTRESS_COLLECTION,
    INCIDENT_COLLECTION,
    RISK_CELL_COLLECTION,
    get_db,
)
from safegrid.models.events import DistressSignal, DistressStatus, IncidentReport
from safegrid.models.risk_cell import RiskCell
from safegrid.models.safety import SafetyScoreResult, ScoreChangeNotification, Threat, ThreatType
from safegrid.models.zones import DangerZone, ZoneType
from safegrid.utils.firestore_helpers import latitude_band, stream_dicts, where_filter
from safegrid.utils.geo import haversine_meters, latitude_window, round_half_up, utc_now

logger = logging.getLogger(__name__)


# Configuration constants
BASE_SCORE = 100
NEUTRAL_SCORE = 80

SEARCH_RADIUS_M = 10000
MAX_NEARBY_GRIDS = 15
MAX_NEARBY_ZONES = 10
MIN_CELL_SCORE = 0.1

DANGER_ZONE_BANDS = (100, 500, 2000, 5000)  # critical, high, medium, low (meters)
CELL_BAND_OFFSETS = (0, 500, 1500, 3000)    # added to the cell's own radius
CELL_MAX_PENALTY = 50
ZONE_MAX_PENALTY = 70

DISTRESS_RADIUS_M = 2500
INCIDENT_RADIUS_M = 4000
RAW_LOOKBACK = timedelta(days=7)
MAX_RAW_EVENTS = 50
MAX_DISTRESS_PENALTY = 40
MAX_INCIDENT_PENALTY = 45
DEFAULT_DISTRESS_SAFETY = 70
DEFAULT_INCIDENT_SEVERITY = 0.6

MAX_DESCRIPTION_REASONS = 3
MAX_THREATS_RETURNED = 5

ZONE_SEVERITY = {
    "Low": 0.2,
    "Medium": 0.5,
    "High": 0.75,
    "Very High": 1.0,
}

# (min score, level, color, description)
SCORE_BANDS = (
    (90, "EXCELLENT", "#10b981", "Very Safe Area"),
    (70, "GOOD", "#3b82f6", "Safe Area"),
    (50, "FAIR", "#f59e0b", "Moderate Risk"),
    (30, "POOR", "#ea580c", "High Risk Area"),
    (0, "CRITICAL", "#dc2626", "Danger Zone"),
)


class CoverageCircle(NamedTuple):
    lat: float
    lng: float
    radius: float


def band_multiplier(distance: float, bands: tuple) -> float:
    """
    Four-band distance decay: 1.0 inside the critical band, then
    0.7-1.0 / 0.4-0.7 / 0.1-0.4 across the high / medium / low bands, 0 beyond.
    """
    critical, high, medium, low = bands
    if distance <= critical:
        return 1.0
    if distance <= high:
        ratio = (distance - critical) / (high - critical)
        return 0.7 + 0.3 * (1 - ratio)
    if distance <= medium:
        ratio = (distance - high) / (medium - high)
        return 0.4 + 0.3 * (1 - ratio)
    if distance <= low:
        ratio = (distance - medium) / (low - medium)
        return 0.1 + 0.3 * (1 - ratio)
    return 0.0


def cell_bands(radius: float) -> tuple:
    return tuple(radius + offset for offset in CELL_BAND_OFFSETS)


def proximity_penalty(distance: float, max_radius: float, severity: float, max_penalty: float) -> float:
    """Linear decay: full penalty at the event, zero at max_radius."""
    if distance > max_radius:
        return 0.0
    return severity * (1 - distance / max_radius) * max_penalty


def classify_score(score: int) -> tuple[str, str, str]:
    for minimum, level, color, description in SCORE_BANDS:
        if score >= minimum:
            return level, color, description
    return SCORE_BANDS[-1][1:]


def format_reason_text(text: Optional[str]) -> str:
    """Map raw codes to friendly labels, title-case everything else."""
    if not text or not text.strip():
        return "Safety Concern"

    clean = text.strip()
    upper = clean.upper()
    if "PANIC" in upper or "IMMEDIATE" in upper:
        return "Emergency Alert"
    if upper == "SOS":
        return "Distress Signal"
    if upper == "MEDICAL":
        return "Medical Emergency"

    return " ".join(word[:1].upper() + word[1:].lower() for word in clean.split())


def should_notify_score_change(old_score: float, new_score: float) -> Optional[ScoreChangeNotification]:
    """
    Decide whether a score change deserves a push notification.
    Drop >= 30 critical, drop >= 15 warning, rise >= 30 improvement.
    """
    difference = old_score - new_score

    if difference >= 30:
        return ScoreChangeNotification(
            type="critical",
            title="Safety Score Alert",
            message="You are entering a high-risk area. Exercise extreme caution.",
            priority="high",
        )
    if difference >= 15:
        return ScoreChangeNotification(
            type="warning",
            title="Safety Score Decreased",
            message="You are approaching an area with increased risk.",
            priority="medium",
        )
    if difference <= -30:
        return ScoreChangeNotification(
            type="improvement",
            title="Entering Safer Area",
            message="Safety score improved. You are in a safer location.",
            priority="low",
        )
    return None


def _inside_any(lat: float, lng: float, circles: List[CoverageCircle]) -> bool:
    return any(haversine_meters(lat, lng, c.lat, c.lng) <= c.radius for c in circles)


class SafetyScorer:
    """
    Computes safety scores from Firestore state.
    Synchronous; async callers should run score_at() in an executor.
    """

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    # ------------------------------------------------------------------
    # Threat sources
    # ------------------------------------------------------------------

    def _nearby_cells(self, lat: float, lng: float) -> List[tuple[RiskCell, float]]:
        lat_min, lat_max = latitude_window(lat, SEARCH_RADIUS_M)
        query = latitude_band(self.db.collection(RISK_CELL_COLLECTION), lat_min, lat_max)

        cells = []
        for data in stream_dicts(query):
            cell = RiskCell.from_document(data)
            if cell.risk_score <= MIN_CELL_SCORE:
                continue
            distance = haversine_meters(lat, lng, cell.center_lat, cell.center_lng)
            if distance <= SEARCH_RADIUS_M:
                cells.append((cell, distance))

        cells.sort(key=lambda pair: pair[1])
        return cells[:MAX_NEARBY_GRIDS]

    def _nearby_zones(self, lat: float, lng: float) -> List[tuple[DangerZone, float, bool]]:
        in_range = []
        for data in stream_dicts(self.db.collection(DANGER_ZONE_COLLECTION)):
            try:
                zone = DangerZone.from_document(data)
            except ValidationError as e:
                logger.warning(f"Skipping malformed danger zone {data.get('id')}: {e}")
                continue
            distance = haversine_meters(lat, lng, zone.lat, zone.lng)

            if zone.type == ZoneType.CIRCLE and zone.radius_km:
                radius_m = zone.radius_km * 1000
                if distance <= radius_m:
                    in_range.append((zone, 0.0, True))
                elif distance - radius_m <= DANGER_ZONE_BANDS[-1]:
                    in_range.append((zone, distance - radius_m, False))
            elif distance <= DANGER_ZONE_BANDS[-1]:
                # polygon zones are scored by their centre point
                in_range.append((zone, distance, False))

        in_range.sort(key=lambda item: item[1])
        return in_range[:MAX_NEARBY_ZONES]

    def _recent_distress(self, lat: float, lng: float, since: datetime) -> List[tuple[DistressSignal, float]]:
        lat_min, lat_max = latitude_window(lat, DISTRESS_RADIUS_M)
        query = where_filter(self.db.collection(DISTRESS_COLLECTION), "status", "==", DistressStatus.NEW.value)
        query = latitude_band(query, lat_min, lat_max)

        found = []
        for data in stream_dicts(query):
            signal = DistressSignal.from_document(data)
            if signal.timestamp < since:
                continue
            distance = haversine_meters(lat, lng, signal.location.lat, signal.location.lng)
            if distance <= DISTRESS_RADIUS_M:
                found.append((signal, distance))
            if len(found) >= MAX_RAW_EVENTS:
                break
        return found

    def _recent_incidents(self, lat: float, lng: float, since: datetime) -> List[tuple[IncidentReport, float]]:
        lat_min, lat_max = latitude_window(lat, INCIDENT_RADIUS_M)
        query = latitude_band(self.db.collection(INCIDENT_COLLECTION), lat_min, lat_max)

        found = []
        for data in stream_dicts(query):
            incident = IncidentReport.from_document(data)
            if incident.timestamp < since:
                continue
            distance = haversine_meters(lat, lng, incident.location.lat, incident.location.lng)
            if distance <= INCIDENT_RADIUS_M:
                found.append((incident, distance))
            if len(found) >= MAX_RAW_EVENTS:
                break
        return found

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_at(self, lat: float, lng: float, now: Optional[datetime] = None) -> SafetyScoreResult:
        try:
            return self._score(lat, lng, now or utc_now())
        except Exception as e:
            logger.error(f"Error calculating safety score for ({lat}, {lng}): {e}", exc_info=True)
            return SafetyScoreResult(
                score=NEUTRAL_SCORE,
                level="GOOD",
                color="#3b82f6",
                description="Unable to calculate precise safety score. Assuming safe area.",
                totalThreats=0,
                nearestThreat=None,
                threats=[],
                location={"lat": lat, "lng": lng},
                timestamp=utc_now().isoformat(),
                error=True,
            )

    def _score(self, lat: float, lng: float, now: datetime) -> SafetyScoreResult:
        total_penalty = 0.0
        threats: List[Threat] = []
        coverage: List[CoverageCircle] = []

        # 1. Risk cells
        for cell, distance in self._nearby_cells(lat, lng):
            impact = cell.risk_score * band_multiplier(distance, cell_bands(cell.radius)) * CELL_MAX_PENALTY
            if impact <= 0:
                continue
            total_penalty += impact
            coverage.append(CoverageCircle(cell.center_lat, cell.center_lng, cell.radius))
            threats.append(Threat(
                type=ThreatType.RISK_GRID,
                name=cell.grid_name or "Risk Zone",
                distance=round_half_up(distance),
                severity=cell.risk_level.value,
                impact=round_half_up(impact),
                coordinates={"lat": cell.center_lat, "lng": cell.center_lng},
                reasons=[r.model_dump(mode="json") for r in cell.reasons],
            ))

        # 2. Danger zones
        for zone, distance, is_inside in self._nearby_zones(lat, lng):
            level = zone.risk_level.value if zone.risk_level else None
            severity = ZONE_SEVERITY.get(level, 0.3)
            impact = severity * band_multiplier(distance, DANGER_ZONE_BANDS) * ZONE_MAX_PENALTY
            if impact <= 0:
                continue
            total_penalty += impact
            threats.append(Threat(
                type=ThreatType.DANGER_ZONE,
                name=zone.name,
                distance=round_half_up(distance),
                severity=level or "Unknown",
                impact=round_half_up(impact),
                isInside=is_inside,
                coordinates={"lat": zone.lat, "lng": zone.lng},
            ))

        # 3. Raw distress signals, skipping those already inside a penalised cell
        since = now - RAW_LOOKBACK
        for signal, distance in self._recent_distress(lat, lng, since):
            if _inside_any(signal.location.lat, signal.location.lng, coverage):
                continue
            safety = signal.safety_score if signal.safety_score is not None else DEFAULT_DISTRESS_SAFETY
            severity = max(0.0, min(1.0, (100 - safety) / 100))
            impact = proximity_penalty(distance, DISTRESS_RADIUS_M, severity, MAX_DISTRESS_PENALTY)
            if impact <= 0:
                continue
            total_penalty += impact
            threats.append(Threat(
                type=ThreatType.DISTRESS,
                name=format_reason_text(signal.reason or "Nearby SOS"),
                category="SOS Alert",
                distance=round_half_up(distance),
                severity=f"safety:{signal.safety_score if signal.safety_score is not None else 'n/a'}",
                impact=round_half_up(impact),
                timestamp=signal.timestamp.isoformat(),
            ))

        # 4. Raw incidents, same masking
        for incident, distance in self._recent_incidents(lat, lng, since):
            if _inside_any(incident.location.lat, incident.location.lng, coverage):
                continue
            severity = incident.severity if incident.severity is not None else DEFAULT_INCIDENT_SEVERITY
            severity = max(0.0, min(1.0, severity))
            impact = proximity_penalty(distance, INCIDENT_RADIUS_M, severity, MAX_INCIDENT_PENALTY)
            if impact <= 0:
                continue
            total_penalty += impact
            threats.append(Threat(
                type=ThreatType.INCIDENT,
                name=format_reason_text(incident.title or "Incident"),
                category=format_reason_text(incident.category or "Incident"),
                distance=round_half_up(distance),
                severity=incident.category or "incident",
                impact=round_half_up(impact),
                timestamp=incident.timestamp.isoformat(),
            ))

        score = round_half_up(max(0.0, min(100.0, BASE_SCORE - total_penalty)))

        threats.sort(key=lambda t: t.impact, reverse=True)
        level, color, description = classify_score(score)
        description += self._describe(score, threats)

        logger.info(f"Safety score calculated: {score}/100 ({level}) at ({lat}, {lng})")

        return SafetyScoreResult(
            score=score,
            level=level,
            color=color,
            description=description,
            totalThreats=len(threats),
            nearestThreat=threats[0] if threats else None,
            threats=threats[:MAX_THREATS_RETURNED],
            location={"lat": lat, "lng": lng},
            timestamp=now.isoformat(),
        )

    @staticmethod
    def _describe(score: int, threats: List[Threat]) -> str:
        if score >= 90:
            return " • Low crime rate reported recently."
        if not threats:
            return ""

        # dict keeps insertion order; values unused
        reasons: Dict[str, None] = {}
        for threat in threats:
            if len(reasons) >= MAX_DESCRIPTION_REASONS:
                break
            if threat.type == ThreatType.RISK_GRID and threat.reasons:
                for r in threat.reasons:
                    text = r.get("event_type") or r.get("title")
                    if text and len(reasons) < MAX_DESCRIPTION_REASONS:
                        reasons[format_reason_text(text)] = None
            elif threat.category:
                reasons[threat.category] = None
            elif threat.name:
                reasons[format_reason_text(threat.name)] = None

        if reasons:
            return f" • Reported issues: {', '.join(reasons)}."
        return " • Threats detected nearby."
