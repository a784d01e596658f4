"""
Event intake - records new threat events and triggers their side effects.

Request path (blocking):
1. Persist the event in Firestore
2. Recompute the owning risk cell synchronously, so the caller sees the
   immediate risk impact (a failure here is logged, the event still stands)

After the response (fire-and-forget, via the SideEffectQueue):
- distress: new-event alert to authorities (fallback-backed) + grid update
- incident: incident-added to authorities + grid update
"""

import logging
from typing import List, NamedTuple, Optional

from pydantic import ValidationError

from safegrid.config.firebase import (
    DANGER_ZONE_COLLECTION,
    DISTRESS_COLLECTION,
    INCIDENT_COLLECTION,
    get_db,
)
from safegrid.models.base import RiskLevel
from safegrid.models.events import (
    DistressSignal,
    DistressSignalCreate,
    DistressStatus,
    IncidentCreate,
    IncidentReport,
)
from safegrid.models.messages import (
    EventStatusChanged,
    GridUpdated,
    IncidentAdded,
    NewEventAlert,
    ZoneAdded,
)
from safegrid.models.risk_cell import RiskCell
from safegrid.models.zones import DangerZone, DangerZoneCreate
from safegrid.services.alert_dispatcher import AlertDispatcher
from safegrid.services.risk_aggregator import RiskAggregator
from safegrid.services.task_queue import SideEffectQueue
from safegrid.utils.firestore_helpers import stream_dicts, where_filter
from safegrid.utils.geo import utc_now

logger = logging.getLogger(__name__)

HIGH_RISK_LEVELS = [RiskLevel.HIGH.value, RiskLevel.VERY_HIGH.value]


class RecordedEvent(NamedTuple):
    event: object  # DistressSignal | IncidentReport
    cell: Optional[RiskCell]


def new_event_alert(signal: DistressSignal) -> NewEventAlert:
    return NewEventAlert(
        alertId=signal.id,
        userId=signal.user_id,
        location=signal.location.model_dump(),
        locationName=signal.location_name,
        timestamp=signal.timestamp.isoformat(),
        safetyScore=signal.safety_score,
        reason=signal.reason,
        status=signal.status.value,
    )


def grid_updated(cell: RiskCell) -> GridUpdated:
    return GridUpdated(
        gridId=cell.grid_id,
        riskLevel=cell.risk_level.value,
        riskScore=cell.risk_score,
        tier=cell.tier.value,
        center=[cell.center_lng, cell.center_lat],
        radius=cell.radius,
        gridName=cell.grid_name,
        lastUpdated=cell.last_updated.isoformat(),
    )


class EventService:

    def __init__(
        self,
        aggregator: RiskAggregator,
        dispatcher: AlertDispatcher,
        queue: SideEffectQueue,
        db=None,
    ):
        self.db = db if db is not None else get_db()
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.queue = queue

    def _update_cell(self, lat: float, lng: float) -> Optional[RiskCell]:
        try:
            return self.aggregator.update_cell_for_location(lat, lng)
        except Exception as e:
            logger.error(f"Failed to update grid immediately for ({lat}, {lng}): {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Synchronous request path (run in an executor by the routes)
    # ------------------------------------------------------------------

    def record_distress_signal(self, data: DistressSignalCreate) -> RecordedEvent:
        doc_ref = self.db.collection(DISTRESS_COLLECTION).document()
        signal = DistressSignal.from_create(doc_ref.id, data)
        doc_ref.set(signal.to_document())
        logger.info(f"Distress signal {signal.id} stored for {signal.user_id}")

        cell = self._update_cell(signal.location.lat, signal.location.lng)
        return RecordedEvent(signal, cell)

    def record_incident(self, data: IncidentCreate) -> RecordedEvent:
        doc_ref = self.db.collection(INCIDENT_COLLECTION).document()
        incident = IncidentReport.from_create(doc_ref.id, data)
        doc_ref.set(incident.to_document())
        logger.info(f"Incident {incident.id} stored ({incident.category or 'uncategorised'})")

        cell = self._update_cell(incident.location.lat, incident.location.lng)
        return RecordedEvent(incident, cell)

    def update_distress_status(self, signal_id: str, status: DistressStatus) -> Optional[DistressSignal]:
        doc_ref = self.db.collection(DISTRESS_COLLECTION).document(signal_id)
        doc = doc_ref.get()
        if not doc.exists:
            return None
        doc_ref.update({"status": status.value})

        data = doc.to_dict()
        data["id"] = doc.id
        data["status"] = status.value
        return DistressSignal.from_document(data)

    def add_danger_zone(self, data: DangerZoneCreate) -> DangerZone:
        zone = DangerZone(**data.model_dump())
        self.db.collection(DANGER_ZONE_COLLECTION).document(zone.id).set(zone.to_document())
        logger.info(f"Danger zone {zone.id} stored ({zone.name})")
        return zone

    def list_danger_zones(self) -> List[DangerZone]:
        zones = []
        for data in stream_dicts(self.db.collection(DANGER_ZONE_COLLECTION)):
            try:
                zones.append(DangerZone.from_document(data))
            except ValidationError as e:
                logger.warning(f"Skipping malformed danger zone {data.get('id')}: {e}")
        return zones

    def count_high_risk_zones(self) -> int:
        """Zones rated High or Very High."""
        query = where_filter(self.db.collection(DANGER_ZONE_COLLECTION), "risk_level", "in", HIGH_RISK_LEVELS)
        return sum(1 for _ in query.stream())

    # ------------------------------------------------------------------
    # Fire-and-forget side effects (after the response)
    # ------------------------------------------------------------------

    async def dispatch_distress(self, recorded: RecordedEvent) -> None:
        signal: DistressSignal = recorded.event
        identity = f"user:{signal.user_id}"
        alert = new_event_alert(signal)
        self.queue.submit(identity, lambda: self.dispatcher.publish_new_event(alert), "new-event alert")
        if recorded.cell is not None:
            update = grid_updated(recorded.cell)
            self.queue.submit(identity, lambda: self.dispatcher.publish_grid_updated(update), "grid update")

    async def dispatch_incident(self, recorded: RecordedEvent) -> None:
        incident: IncidentReport = recorded.event
        identity = f"incident:{incident.id}"
        added = IncidentAdded(
            id=incident.id,
            title=incident.title,
            category=incident.category,
            severity=incident.severity,
            location=incident.location.model_dump(),
            timestamp=incident.timestamp.isoformat(),
        )
        self.queue.submit(identity, lambda: self.dispatcher.publish_incident_added(added), "incident alert")
        if recorded.cell is not None:
            update = grid_updated(recorded.cell)
            self.queue.submit(identity, lambda: self.dispatcher.publish_grid_updated(update), "grid update")

    async def dispatch_status_change(self, signal: DistressSignal) -> None:
        changed = EventStatusChanged(alertId=signal.id, status=signal.status.value, updatedAt=utc_now().isoformat())
        self.queue.submit(
            f"user:{signal.user_id}",
            lambda: self.dispatcher.publish_event_status_change(changed),
            "status change",
        )

    async def dispatch_zone_added(self, zone: DangerZone) -> None:
        added = ZoneAdded(
            id=zone.id,
            name=zone.name,
            type=zone.type.value,
            coords=zone.coords,
            radiusKm=zone.radius_km,
            riskLevel=zone.risk_level.value if zone.risk_level else None,
        )
        self.queue.submit(f"zone:{zone.id}", lambda: self.dispatcher.publish_zone_added(added), "zone alert")
