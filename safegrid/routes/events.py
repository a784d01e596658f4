"""
Event intake routes - distress signals, incident reports and danger zones.

Each write:
1. Persists the event and (for point events) recomputes the owning risk cell
   before responding, so the caller immediately sees the grid impact
2. Schedules real-time fan-out AFTER the response via BackgroundTasks

Danger zones can also be listed, and the High / Very High ones counted.
"""

import asyncio
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from safegrid.models.events import DistressSignalCreate, DistressStatusUpdate, IncidentCreate
from safegrid.models.zones import DangerZoneCreate
from safegrid.services.event_service import EventService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])


def _event_service(request: Request) -> EventService:
    service = getattr(request.app.state, "event_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event service not initialized. Please check Firebase configuration.",
        )
    return service


def _grid_summary(cell):
    if cell is None:
        return None
    return {
        "gridId": cell.grid_id,
        "riskLevel": cell.risk_level.value,
        "riskScore": cell.risk_score,
        "center": [cell.center_lng, cell.center_lat],
    }


@router.post("/events/distress", status_code=status.HTTP_201_CREATED)
async def submit_distress_signal(data: DistressSignalCreate, request: Request, background_tasks: BackgroundTasks):
    """
    Receive a distress signal.

    Responds with the stored signal and the immediately-updated risk cell
    (null if the cell update failed). Authority alerts go out afterwards.
    """
    service = _event_service(request)
    logger.info(f"POST /events/distress - user={data.user_id} at ({data.location.lat}, {data.location.lng})")

    try:
        loop = asyncio.get_event_loop()
        recorded = await loop.run_in_executor(None, service.record_distress_signal, data)
    except Exception as e:
        logger.error(f"POST /events/distress - storing distress signal failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Distress signal creation failed: {str(e)}",
        )

    background_tasks.add_task(service.dispatch_distress, recorded)

    signal = recorded.event
    return {
        "success": True,
        "message": "Distress signal received. Authorities have been notified.",
        "event": {
            "id": signal.id,
            "status": signal.status.value,
            "location": signal.location.model_dump(),
            "timestamp": signal.timestamp.isoformat(),
        },
        "gridUpdated": _grid_summary(recorded.cell),
    }


@router.patch("/events/distress/{signal_id}/status")
async def update_distress_status(
    signal_id: str, update: DistressStatusUpdate, request: Request, background_tasks: BackgroundTasks
):
    service = _event_service(request)
    loop = asyncio.get_event_loop()
    signal = await loop.run_in_executor(None, service.update_distress_status, signal_id, update.status)
    if signal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Distress signal {signal_id} not found")

    background_tasks.add_task(service.dispatch_status_change, signal)
    return {"success": True, "id": signal.id, "status": signal.status.value}


@router.post("/events/incidents", status_code=status.HTTP_201_CREATED)
async def submit_incident(data: IncidentCreate, request: Request, background_tasks: BackgroundTasks):
    service = _event_service(request)
    logger.info(f"POST /events/incidents - '{data.title}' at ({data.location.lat}, {data.location.lng})")

    try:
        loop = asyncio.get_event_loop()
        recorded = await loop.run_in_executor(None, service.record_incident, data)
    except Exception as e:
        logger.error(f"POST /events/incidents - storing incident failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Incident creation failed: {str(e)}",
        )

    background_tasks.add_task(service.dispatch_incident, recorded)

    incident = recorded.event
    return {
        "success": True,
        "event": incident.model_dump(mode="json"),
        "gridUpdated": _grid_summary(recorded.cell),
    }


@router.post("/zones", status_code=status.HTTP_201_CREATED)
async def add_danger_zone(data: DangerZoneCreate, request: Request, background_tasks: BackgroundTasks):
    """Register a danger zone. Zones feed the safety score directly, not the risk grid."""
    service = _event_service(request)
    loop = asyncio.get_event_loop()
    zone = await loop.run_in_executor(None, service.add_danger_zone, data)

    background_tasks.add_task(service.dispatch_zone_added, zone)
    return {"success": True, "zone": zone.model_dump(mode="json")}


@router.get("/zones")
async def list_danger_zones(request: Request):
    service = _event_service(request)
    loop = asyncio.get_event_loop()
    zones = await loop.run_in_executor(None, service.list_danger_zones)
    return {"count": len(zones), "zones": [zone.model_dump(mode="json") for zone in zones]}


@router.get("/zones/count")
async def count_high_risk_zones(request: Request):
    """Number of danger zones rated High or Very High."""
    service = _event_service(request)
    loop = asyncio.get_event_loop()
    count = await loop.run_in_executor(None, service.count_high_risk_zones)
    return {"count": count}
