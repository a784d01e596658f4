"""
Real-time websocket endpoints.

Frames in both directions are {"event": <name>, "data": <payload>}.

- /ws/authority?identity=...            may send "authorityBroadcast"
- /ws/user?identity=...&lat=..&lng=..   may send "updateLocation"
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from safegrid.models.base import GeoPoint
from safegrid.services.alert_dispatcher import AlertDispatcher, ClientConnection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

AUTHORITY_BROADCAST = "authorityBroadcast"
UPDATE_LOCATION = "updateLocation"


def _dispatcher(websocket: WebSocket) -> Optional[AlertDispatcher]:
    return getattr(websocket.app.state, "dispatcher", None)


async def _receive_frames(websocket: WebSocket, connection: ClientConnection, handler) -> None:
    """Feed inbound frames to handler until the socket closes."""
    while True:
        message = await websocket.receive_json()
        if not isinstance(message, dict) or "event" not in message:
            logger.warning(f"Ignoring malformed frame from {connection!r}")
            continue
        await handler(message["event"], message.get("data") or {})


@router.websocket("/ws/authority")
async def authority_socket(websocket: WebSocket, identity: str = Query(..., min_length=1)):
    dispatcher = _dispatcher(websocket)
    if dispatcher is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    connection = ClientConnection(websocket)
    await dispatcher.register_authority(connection, identity)

    async def handle(event: str, data: dict) -> None:
        if event == AUTHORITY_BROADCAST:
            await dispatcher.handle_authority_broadcast(connection, data)
        else:
            logger.debug(f"Unhandled authority event '{event}' from {identity}")

    try:
        await _receive_frames(websocket, connection, handle)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Authority socket {connection.id} failed: {e}", exc_info=True)
    finally:
        dispatcher.unregister(connection)


@router.websocket("/ws/user")
async def end_user_socket(
    websocket: WebSocket,
    identity: str = Query(..., min_length=1),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
):
    dispatcher = _dispatcher(websocket)
    if dispatcher is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    connection = ClientConnection(websocket)
    location = GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None
    await dispatcher.register_end_user(connection, identity, location)

    async def handle(event: str, data: dict) -> None:
        if event == UPDATE_LOCATION:
            try:
                point = GeoPoint.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Invalid location update from {identity}: {e}")
                return
            await dispatcher.update_location(connection, point)
        elif event == AUTHORITY_BROADCAST:
            await dispatcher.handle_authority_broadcast(connection, data)
        else:
            logger.debug(f"Unhandled end-user event '{event}' from {identity}")

    try:
        await _receive_frames(websocket, connection, handle)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"End-user socket {connection.id} failed: {e}", exc_info=True)
    finally:
        dispatcher.unregister(connection)
