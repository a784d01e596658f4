"""
Risk Aggregator - turns distress signals and incidents into decayed risk cells.

KEY PRINCIPLE:
- Events are raw signals
- Risk cells are derived state, recomputed from scratch on every pass
- A cell's score is never hand-edited

PER-CELL ALGORITHM:
1. Gather qualifying events within 2.5km of the cell centre, last 30 days
2. Intensity: max incident severity, min distress safety, latest event, count
3. Tier (Standard / High / Critical) fixes retention and display radius
4. Expiry = latest event + tier duration; expired cells are deleted
5. Exponential decay tuned so ~10% of a contribution remains at expiry
6. Weighted blend of incident, distress and decayed history terms
7. Sliding floor for High/Critical so scores do not fall off a cliff

Concurrent passes touching the same cell race with last-write-wins. The
computation is idempotent for a given event snapshot so no locking is done.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, List, NamedTuple, Optional, Set

from safegrid.config.firebase import (
    DISTRESS_COLLECTION,
    INCIDENT_COLLECTION,
    RISK_CELL_COLLECTION,
    get_db,
)
from safegrid.models.base import RiskLevel
from safegrid.models.events import DistressSignal, DistressStatus, IncidentReport
from safegrid.models.risk_cell import ReasonType, RiskCell, RiskReason, Tier
from safegrid.services.geocoding.base import is_placeholder_name
from safegrid.services.geocoding.resolver import name_for_cell
from safegrid.services.grid_index import cell_of, center_of
from safegrid.utils.firestore_helpers import latitude_band, stream_dicts, where_filter
from safegrid.utils.geo import haversine_meters, hours_between, latitude_window, utc_now

logger = logging.getLogger(__name__)


# Constants
LOOKBACK = timedelta(days=30)
SCAN_RADIUS_M = 2500  # covers the largest tier's influence area
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

W_INCIDENT = 0.40
W_DISTRESS = 0.50
W_HISTORY = 0.10

DISTRESS_BASE_WEIGHT = 0.34
DEFAULT_INCIDENT_SEVERITY = 0.5
MAX_REASONS = 10


class TierPolicy(NamedTuple):
    tier: Tier
    duration: timedelta
    radius: int
    floor_ceiling: float  # 0 = no floor


TIER_POLICIES = {
    Tier.STANDARD: TierPolicy(Tier.STANDARD, timedelta(days=7), 500, 0.0),
    Tier.HIGH: TierPolicy(Tier.HIGH, timedelta(days=14), 1000, 0.6),
    Tier.CRITICAL: TierPolicy(Tier.CRITICAL, timedelta(days=30), 1500, 0.8),
}


class Intensity(NamedTuple):
    max_incident_severity: float
    min_distress_safety: float
    latest_event_time: datetime
    combined_count: int


class RecomputeSummary(NamedTuple):
    processed: int
    updated: int
    evicted: int
    failed: int


def classify_tier(intensity: Intensity) -> TierPolicy:
    """Active cluster, major severity or very low safety -> Critical; moderate -> High."""
    if (
        intensity.combined_count > 5
        or intensity.max_incident_severity >= 0.8
        or intensity.min_distress_safety <= 30
    ):
        return TIER_POLICIES[Tier.CRITICAL]
    if (
        intensity.combined_count > 2
        or intensity.max_incident_severity >= 0.6
        or intensity.min_distress_safety <= 50
    ):
        return TIER_POLICIES[Tier.HIGH]
    return TIER_POLICIES[Tier.STANDARD]


def decay_constant(duration: timedelta) -> float:
    """lambda such that e^(-lambda * duration_hours) == 0.1"""
    return math.log(10) / (duration.total_seconds() / 3600)


def decayed_sum(contributions: List[tuple[float, datetime]], lam: float, now: datetime) -> float:
    """Sum of weight * e^(-lambda * hours_ago), capped at 1.0."""
    total = 0.0
    for weight, timestamp in contributions:
        hours_ago = max(0.0, hours_between(now, timestamp))
        total += weight * math.exp(-lam * hours_ago)
    return min(total, 1.0)


def blend_weights(tier: Tier, incident_term: float, distress_term: float) -> tuple[float, float]:
    """
    (incident weight, distress weight).
    A pure distress cluster gets the incident weight shifted onto it so it can
    still reach the top levels without any official incident.
    """
    if incident_term == 0 and distress_term > 0:
        if tier == Tier.CRITICAL:
            return 0.0, 0.95
        return 0.10, 0.80
    return W_INCIDENT, W_DISTRESS


def sliding_floor(policy: TierPolicy, expires_at: datetime, now: datetime) -> float:
    """Minimum score, sliding linearly from the tier ceiling to 0 at expiry."""
    if not policy.floor_ceiling:
        return 0.0
    remaining = (expires_at - now).total_seconds() / policy.duration.total_seconds()
    return policy.floor_ceiling * max(0.0, min(1.0, remaining))


def level_for_score(score: float) -> RiskLevel:
    if score >= 0.8:
        return RiskLevel.VERY_HIGH
    if score >= 0.6:
        return RiskLevel.HIGH
    if score >= 0.3:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def measure_intensity(distress: List[DistressSignal], incidents: List[IncidentReport]) -> Intensity:
    max_severity = 0.0
    min_safety = 100.0
    latest = EPOCH

    for signal in distress:
        latest = max(latest, signal.timestamp)
        if signal.safety_score is not None and signal.safety_score < min_safety:
            min_safety = signal.safety_score

    for incident in incidents:
        latest = max(latest, incident.timestamp)
        if incident.severity is not None and incident.severity > max_severity:
            max_severity = incident.severity

    return Intensity(max_severity, min_safety, latest, len(distress) + len(incidents))


def build_reasons(distress: List[DistressSignal], incidents: List[IncidentReport]) -> List[RiskReason]:
    reasons = [
        RiskReason(
            type=ReasonType.DISTRESS,
            title=s.reason or "SOS Alert",
            timestamp=s.timestamp,
            severity=s.safety_score if s.safety_score is not None else 1.0,
            event_type="sos",
        )
        for s in distress
    ]
    reasons += [
        RiskReason(
            type=ReasonType.INCIDENT,
            title=i.title or "Incident",
            timestamp=i.timestamp,
            severity=i.severity,
            event_type=i.category,
        )
        for i in incidents
    ]
    reasons.sort(key=lambda r: r.timestamp, reverse=True)
    return reasons[:MAX_REASONS]


class RiskAggregator:
    """
    Recomputes risk cells against Firestore.

    The Firestore client is synchronous; async callers should run these
    methods in an executor.
    """

    def __init__(self, db=None, namer: Callable[[float, float], str] = None):
        self.db = db if db is not None else get_db()
        self.namer = namer or name_for_cell

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _distress_near(self, lat: float, lng: float, radius_m: float, since: datetime) -> List[DistressSignal]:
        lat_min, lat_max = latitude_window(lat, radius_m)
        query = where_filter(self.db.collection(DISTRESS_COLLECTION), "status", "==", DistressStatus.NEW.value)
        query = latitude_band(query, lat_min, lat_max)

        signals = []
        for data in stream_dicts(query):
            signal = DistressSignal.from_document(data)
            if signal.timestamp < since:
                continue
            if haversine_meters(lat, lng, signal.location.lat, signal.location.lng) > radius_m:
                continue
            signals.append(signal)
        return signals

    def _incidents_near(self, lat: float, lng: float, radius_m: float, since: datetime) -> List[IncidentReport]:
        lat_min, lat_max = latitude_window(lat, radius_m)
        query = latitude_band(self.db.collection(INCIDENT_COLLECTION), lat_min, lat_max)

        incidents = []
        for data in stream_dicts(query):
            incident = IncidentReport.from_document(data)
            if incident.timestamp < since:
                continue
            if haversine_meters(lat, lng, incident.location.lat, incident.location.lng) > radius_m:
                continue
            incidents.append(incident)
        return incidents

    def get_cell(self, grid_id: str) -> Optional[RiskCell]:
        doc = self.db.collection(RISK_CELL_COLLECTION).document(grid_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        data.setdefault("id", doc.id)
        return RiskCell.from_document(data)

    def list_cells(self) -> List[RiskCell]:
        return [RiskCell.from_document(d) for d in stream_dicts(self.db.collection(RISK_CELL_COLLECTION))]

    def active_cell_ids(self, now: Optional[datetime] = None) -> Set[str]:
        """Cells owning a qualifying event in the lookback window, plus every persisted cell."""
        now = now or utc_now()
        since = now - LOOKBACK
        grid_ids: Set[str] = set()

        query = where_filter(self.db.collection(DISTRESS_COLLECTION), "status", "==", DistressStatus.NEW.value)
        query = where_filter(query, "timestamp", ">=", since)
        for data in stream_dicts(query):
            grid_ids.add(cell_of(data["latitude"], data["longitude"]).grid_id)

        query = where_filter(self.db.collection(INCIDENT_COLLECTION), "timestamp", ">=", since)
        for data in stream_dicts(query):
            grid_ids.add(cell_of(data["latitude"], data["longitude"]).grid_id)

        for doc in self.db.collection(RISK_CELL_COLLECTION).stream():
            grid_ids.add(doc.id)

        return grid_ids

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def recompute_active_cells(self, now: Optional[datetime] = None) -> RecomputeSummary:
        """Recompute every active cell. One cell failing never aborts the batch."""
        now = now or utc_now()
        logger.info("Running global risk update job...")

        grid_ids = self.active_cell_ids(now)
        logger.info(f"Analyzing {len(grid_ids)} active grid cells...")

        updated = evicted = failed = 0
        for grid_id in grid_ids:
            try:
                cell = self.recompute_cell(grid_id, now=now)
            except Exception as e:
                failed += 1
                logger.error(f"Risk recompute failed for cell {grid_id}: {e}", exc_info=True)
                continue
            if cell is None:
                evicted += 1
            else:
                updated += 1

        summary = RecomputeSummary(len(grid_ids), updated, evicted, failed)
        logger.info(
            f"Risk update complete: {summary.updated} updated, "
            f"{summary.evicted} evicted, {summary.failed} failed"
        )
        return summary

    def recompute_cell(self, grid_id: str, now: Optional[datetime] = None) -> Optional[RiskCell]:
        """
        Recompute and upsert one cell.

        Returns:
            The persisted cell, or None if the cell was evicted.
        """
        now = now or utc_now()
        lat, lng = center_of(grid_id)
        since = now - LOOKBACK

        distress = self._distress_near(lat, lng, SCAN_RADIUS_M, since)
        incidents = self._incidents_near(lat, lng, SCAN_RADIUS_M, since)

        intensity = measure_intensity(distress, incidents)
        policy = classify_tier(intensity)

        # No events: latest_event_time is the epoch, so the cell is always expired
        expires_at = intensity.latest_event_time + policy.duration
        if now > expires_at:
            logger.info(f"Grid {grid_id} expired (Tier: {policy.tier.value}). Deleting.")
            self.db.collection(RISK_CELL_COLLECTION).document(grid_id).delete()
            return None

        lam = decay_constant(policy.duration)

        distress_term = decayed_sum([(DISTRESS_BASE_WEIGHT, s.timestamp) for s in distress], lam, now)
        incident_term = decayed_sum(
            [
                (i.severity if i.severity is not None else DEFAULT_INCIDENT_SEVERITY, i.timestamp)
                for i in incidents
            ],
            lam,
            now,
        )

        history_term = 0.0
        grid_name = None
        previous = self.get_cell(grid_id)
        if previous is not None:
            hours_since_update = max(0.0, hours_between(now, previous.last_updated))
            history_term = previous.risk_score * math.exp(-lam * hours_since_update)
            if not is_placeholder_name(previous.grid_name):
                grid_name = previous.grid_name
        if not grid_name:
            grid_name = self.namer(lat, lng)

        w_incident, w_distress = blend_weights(policy.tier, incident_term, distress_term)
        score = w_incident * incident_term + w_distress * distress_term + W_HISTORY * history_term
        score = max(score, sliding_floor(policy, expires_at, now))
        score = min(max(score, 0.0), 1.0)

        cell = RiskCell(
            grid_id=grid_id,
            center_lat=lat,
            center_lng=lng,
            risk_score=score,
            risk_level=level_for_score(score),
            tier=policy.tier,
            radius=policy.radius,
            expires_at=expires_at,
            last_updated=now,
            grid_name=grid_name,
            reasons=build_reasons(distress, incidents),
        )
        self.db.collection(RISK_CELL_COLLECTION).document(grid_id).set(cell.to_document())
        return cell

    def update_cell_for_location(self, lat: float, lng: float, now: Optional[datetime] = None) -> Optional[RiskCell]:
        """Immediate recompute of the cell owning a brand-new event."""
        grid_id = cell_of(lat, lng).grid_id
        logger.info(f"Updating risk grid for location: {lat}, {lng} (cell {grid_id})")
        cell = self.recompute_cell(grid_id, now=now)
        logger.info(f"Grid {grid_id} updated - Risk: {cell.risk_level.value if cell else 'evicted'}")
        return cell
