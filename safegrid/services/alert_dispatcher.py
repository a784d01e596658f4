"""
Alert Dispatcher - real-time fan-out to authorities and end users.

The dispatcher owns a ConnectionRegistry created at service start and torn
down at shutdown. The registry is the only shared mutable in-memory state:
every mutation is a set insert/remove scoped to one identity.

DELIVERY RULES:
- New distress alerts go to every live authority connection; if none is live,
  or no connection accepts the alert, it is handed to the FallbackStore
- Status changes, zones, incidents: authorities only, best effort
- Grid updates: every live connection, best effort
- Authority broadcasts: every end user, or only those whose last known
  location is within the target radius (inclusive)
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pydantic import BaseModel

from safegrid.models.base import GeoPoint
from safegrid.models.messages import (
    AuthorityAlert,
    AuthorityAlertRequest,
    BroadcastError,
    Channel,
    RegistrationConfirmed,
    ScoreChangeAlert,
    frame,
)
from safegrid.models.safety import SafetyScoreResult
from safegrid.services.fallback_store import FallbackStore
from safegrid.services.safety_scorer import NEUTRAL_SCORE, SafetyScorer, should_notify_score_change
from safegrid.utils.geo import haversine_meters, round_half_up, utc_now

logger = logging.getLogger(__name__)

Payload = Union[BaseModel, Dict[str, Any]]


class Role(str, Enum):
    AUTHORITY = "authority"
    END_USER = "end_user"


class ClientConnection:
    """One live websocket. Several may share an identity (multiple devices)."""

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex
        self.role: Optional[Role] = None
        self.identity: Optional[str] = None

    async def send(self, channel: str, payload: Payload) -> None:
        await self.websocket.send_json(frame(channel, payload))

    def __repr__(self) -> str:
        return f"ClientConnection({self.id}, {self.role}, {self.identity})"


class ConnectionRegistry:
    """identity -> set of live connections, per role, plus end-user session state."""

    def __init__(self):
        self._connections: Dict[Role, Dict[str, Set[ClientConnection]]] = {
            Role.AUTHORITY: {},
            Role.END_USER: {},
        }
        self._locations: Dict[str, GeoPoint] = {}
        self._last_scores: Dict[str, int] = {}

    def add(self, connection: ClientConnection, role: Role, identity: str) -> int:
        connection.role = role
        connection.identity = identity
        sockets = self._connections[role].setdefault(identity, set())
        sockets.add(connection)
        return len(sockets)

    def remove(self, connection: ClientConnection) -> bool:
        """
        Remove one connection. Returns True when it was the identity's last one,
        in which case end-user location and cached score are discarded too.
        """
        if connection.role is None or connection.identity is None:
            return False

        registry = self._connections[connection.role]
        sockets = registry.get(connection.identity)
        if sockets is None:
            return False

        sockets.discard(connection)
        if sockets:
            return False

        del registry[connection.identity]
        if connection.role == Role.END_USER:
            self._locations.pop(connection.identity, None)
            self._last_scores.pop(connection.identity, None)
        return True

    def connections(self, role: Role, identity: Optional[str] = None) -> List[ClientConnection]:
        registry = self._connections[role]
        if identity is not None:
            return list(registry.get(identity, ()))
        return [c for sockets in registry.values() for c in sockets]

    def all_connections(self) -> List[ClientConnection]:
        return self.connections(Role.AUTHORITY) + self.connections(Role.END_USER)

    def identities(self, role: Role) -> List[str]:
        return list(self._connections[role].keys())

    def set_location(self, identity: str, location: GeoPoint) -> None:
        self._locations[identity] = location

    def location_of(self, identity: str) -> Optional[GeoPoint]:
        return self._locations.get(identity)

    def set_last_score(self, identity: str, score: int) -> None:
        self._last_scores[identity] = score

    def last_score(self, identity: str) -> Optional[int]:
        return self._last_scores.get(identity)

    def clear(self) -> None:
        for registry in self._connections.values():
            registry.clear()
        self._locations.clear()
        self._last_scores.clear()


class AlertDispatcher:

    def __init__(self, registry: ConnectionRegistry, scorer: SafetyScorer, fallback: FallbackStore):
        self.registry = registry
        self.scorer = scorer
        self.fallback = fallback

    # ------------------------------------------------------------------
    # Delivery helpers
    # ------------------------------------------------------------------

    async def _send(self, connection: ClientConnection, channel: str, payload: Payload) -> bool:
        try:
            await connection.send(channel, payload)
            return True
        except Exception as e:
            logger.error(f"Delivery of {channel} to {connection!r} failed: {e}")
            return False

    async def _fan_out(self, connections: Iterable[ClientConnection], channel: str, payload: Payload) -> int:
        results = await asyncio.gather(*(self._send(c, channel, payload) for c in connections))
        return sum(results)

    async def _score(self, location: GeoPoint) -> SafetyScoreResult:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.scorer.score_at, location.lat, location.lng)

    async def _push_score(self, identity: str, result: SafetyScoreResult) -> None:
        """Push a fresh score and, if the change is significant, a score-change alert."""
        previous = self.registry.last_score(identity)
        if previous is None:
            previous = NEUTRAL_SCORE
        self.registry.set_last_score(identity, result.score)

        connections = self.registry.connections(Role.END_USER, identity)
        await self._fan_out(connections, Channel.SCORE_UPDATE, result)
        logger.info(f"safetyScoreUpdate emitted to {identity}: {result.score}/100")

        notification = should_notify_score_change(previous, result.score)
        if notification is not None:
            alert = ScoreChangeAlert(
                **notification.model_dump(),
                previousScore=previous,
                newScore=result.score,
                safetyScoreData=result,
            )
            await self._fan_out(connections, Channel.SCORE_CHANGE_ALERT, alert)
            logger.info(f"Safety score alert ({notification.type}) sent to {identity}: {previous} -> {result.score}")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_authority(self, connection: ClientConnection, identity: str) -> None:
        count = self.registry.add(connection, Role.AUTHORITY, identity)
        logger.info(f"Authority {identity} registered with connection {connection.id} (connections for user: {count})")

    async def register_end_user(
        self, connection: ClientConnection, identity: str, location: Optional[GeoPoint] = None
    ) -> None:
        count = self.registry.add(connection, Role.END_USER, identity)
        logger.info(f"End user {identity} registered with connection {connection.id} (connections for user: {count})")

        if location is not None:
            self.registry.set_location(identity, location)
            try:
                result = await self._score(location)
                self.registry.set_last_score(identity, result.score)
                await self._send(connection, Channel.SCORE_UPDATE, result)
            except Exception as e:
                logger.error(f"Failed to calculate initial safety score for {identity}: {e}")

        await self._send(connection, Channel.REGISTRATION_CONFIRMED, RegistrationConfirmed(identity=identity))

    async def update_location(self, connection: ClientConnection, location: GeoPoint) -> None:
        if connection.role != Role.END_USER or connection.identity is None:
            logger.warning(f"Ignoring location update from non end-user connection {connection!r}")
            return

        identity = connection.identity
        self.registry.set_location(identity, location)
        logger.info(f"End user {identity} location updated: {location.lat}, {location.lng}")

        try:
            result = await self._score(location)
            await self._push_score(identity, result)
        except Exception as e:
            logger.error(f"Failed to calculate safety score for {identity}: {e}")

    def unregister(self, connection: ClientConnection) -> None:
        emptied = self.registry.remove(connection)
        if emptied:
            logger.info(f"Last connection for {connection.identity} closed; session cleared")
        logger.info(f"Client disconnected: {connection.id}")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish_new_event(self, payload: Payload) -> int:
        """
        Deliver a new distress alert to authorities, falling back to the
        FallbackStore when nobody received it. Returns live deliveries.
        """
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        alert_id = data.get("alertId")
        if not alert_id:
            alert_id = f"sos-{uuid.uuid4().hex[:12]}"
            logger.warning(f"New alert arrived without an alertId; assigned {alert_id}")
            data["alertId"] = alert_id
        alert_id = str(alert_id)

        authorities = self.registry.connections(Role.AUTHORITY)
        if not authorities:
            logger.warning("No authorities are currently connected. Handling with fallback store.")
            await self.fallback.put(alert_id, data)
            return 0

        delivered = await self._fan_out(authorities, Channel.NEW_EVENT, data)
        if delivered == 0:
            logger.error(f"Failed to deliver alert {alert_id} in real-time. Falling back.")
            await self.fallback.put(alert_id, data)
        else:
            logger.info(f"SOS alert {alert_id} broadcasted to {delivered} authority connection(s).")
        return delivered

    async def publish_event_status_change(self, payload: Payload) -> int:
        return await self._fan_out(self.registry.connections(Role.AUTHORITY), Channel.EVENT_STATUS_CHANGED, payload)

    async def publish_zone_added(self, payload: Payload) -> int:
        return await self._fan_out(self.registry.connections(Role.AUTHORITY), Channel.ZONE_ADDED, payload)

    async def publish_incident_added(self, payload: Payload) -> int:
        return await self._fan_out(self.registry.connections(Role.AUTHORITY), Channel.INCIDENT_ADDED, payload)

    async def publish_grid_updated(self, payload: Payload) -> int:
        # everyone, not just authorities
        return await self._fan_out(self.registry.all_connections(), Channel.GRID_UPDATED, payload)

    async def broadcast_from_authority(self, payload: Payload) -> int:
        """
        Send an authority alert to end users, geofenced when a target area is set.

        Raises:
            ValueError: if type, title or message is missing.
        """
        data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
        if not data.get("type") or not data.get("title") or not data.get("message"):
            raise ValueError("Missing required fields: type, title, message")

        request = AuthorityAlertRequest.model_validate(data)
        alert = AuthorityAlert(
            **request.model_dump(),
            alertId=f"auth-alert-{uuid.uuid4().hex[:12]}",
            timestamp=utc_now().isoformat(),
        )

        identities = self.registry.identities(Role.END_USER)
        if not identities:
            logger.warning("No end users connected. Authority alert not delivered in real-time.")
            return 0

        target = request.targetArea
        if target is None:
            delivered = await self._fan_out(self.registry.connections(Role.END_USER), Channel.AUTHORITY_ALERT, alert)
            logger.info(f"Authority alert broadcasted to ALL {delivered} end-user connection(s)")
            return delivered

        delivered = 0
        for identity in identities:
            location = self.registry.location_of(identity)
            if location is None:
                continue
            distance = haversine_meters(target.lat, target.lng, location.lat, location.lng)
            if distance <= target.radius:
                tagged = alert.model_copy(update={"distanceFromEvent": round_half_up(distance)})
                delivered += await self._fan_out(
                    self.registry.connections(Role.END_USER, identity), Channel.AUTHORITY_ALERT, tagged
                )

        logger.info(
            f"Authority alert sent to {delivered} connection(s) within {target.radius}m of ({target.lat}, {target.lng})"
        )
        return delivered

    async def handle_authority_broadcast(self, connection: ClientConnection, data: Dict[str, Any]) -> None:
        """Entry point for a broadcast request arriving over a websocket."""
        if connection.role != Role.AUTHORITY:
            await self._send(
                connection,
                Channel.BROADCAST_ERROR,
                BroadcastError(message="Unauthorized: Only authorities can broadcast alerts"),
            )
            return
        try:
            await self.broadcast_from_authority(data)
        except ValueError as e:
            logger.error(f"Failed to broadcast authority alert: {e}")
            await self._send(connection, Channel.BROADCAST_ERROR, BroadcastError(message=str(e)))

    # ------------------------------------------------------------------
    # Periodic rescoring
    # ------------------------------------------------------------------

    async def run_periodic_rescore(self) -> int:
        """Rescore every live end user at their last known location. Returns identities rescored."""
        rescored = 0
        for identity in self.registry.identities(Role.END_USER):
            location = self.registry.location_of(identity)
            if location is None:
                continue
            try:
                result = await self._score(location)
                await self._push_score(identity, result)
                rescored += 1
            except Exception as e:
                logger.error(f"Failed periodic safety score calc for {identity}: {e}", exc_info=True)

        logger.info(f"Periodic rescore complete for {rescored} end user(s)")
        return rescored

    def shutdown(self) -> None:
        self.registry.clear()
