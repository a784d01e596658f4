"""
Fallback Store - durable hand-off for alerts no live channel could accept.

Two tiers:
- Redis key "<namespace>:fallback:<alert_id>" with a 1 hour TTL
- Append-only JSON-lines log, written when Redis is unavailable

get() removes the Redis entry on success (at-most-once hand-off). On a cache
miss or an unreachable cache it scans the durable log for a line tagged
"SOS_PAYLOAD" carrying the same alert id. Neither put() nor get() raise.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from safegrid.config.redis_client import RedisConnectionManager
from safegrid.core.settings import settings

logger = logging.getLogger(__name__)

PAYLOAD_MARKER = "SOS_PAYLOAD"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, with the alert payload when one is attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
        }
        if hasattr(record, "alertId"):
            entry["alertId"] = record.alertId
        if hasattr(record, "payload"):
            entry["payload"] = record.payload
        return json.dumps(entry, default=str)


def _durable_logger(log_path: str) -> logging.Logger:
    durable = logging.getLogger(f"{__name__}.durable:{os.path.abspath(log_path)}")
    if not durable.handlers:
        directory = os.path.dirname(os.path.abspath(log_path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create fallback log directory {directory}: {e}")
        # file is opened on first write
        handler = logging.FileHandler(log_path, encoding="utf-8", delay=True)
        handler.setFormatter(JsonLineFormatter())
        durable.addHandler(handler)
        durable.setLevel(logging.INFO)
        durable.propagate = False
    return durable


class FallbackStore:

    def __init__(
        self,
        connections: RedisConnectionManager,
        namespace: str = None,
        ttl_seconds: int = None,
        log_path: str = None,
    ):
        self._connections = connections
        self.namespace = namespace or settings.FALLBACK_NAMESPACE
        self.ttl_seconds = ttl_seconds or settings.FALLBACK_TTL_SECONDS
        self.log_path = log_path or settings.FALLBACK_LOG_PATH
        self._durable = _durable_logger(self.log_path)

    def key_for(self, alert_id: str) -> str:
        return f"{self.namespace}:fallback:{alert_id}"

    def _append_durable(self, alert_id: str, payload: Dict[str, Any]) -> None:
        self._durable.info(PAYLOAD_MARKER, extra={"alertId": alert_id, "payload": payload})
        for handler in self._durable.handlers:
            handler.flush()

    async def put(self, alert_id: str, payload: Dict[str, Any]) -> None:
        """Store an undeliverable alert. Degrades to the durable log, never raises."""
        try:
            client = await self._connections.get_client()
            if client is not None:
                try:
                    await client.set(self.key_for(alert_id), json.dumps(payload, default=str), ex=self.ttl_seconds)
                    logger.warning(f"Real-time channel down. Stored alert {alert_id} in Redis for fallback.")
                    return
                except (RedisError, OSError) as e:
                    logger.error(f"Redis write failed for alert {alert_id}: {e}")
                    self._connections.reset()

            logger.warning(f"Real-time channel down AND Redis unavailable. Alert {alert_id} logged to file only.")
            self._append_durable(alert_id, payload)
        except Exception as e:
            logger.error(f"Failed to handle fallback for alert {alert_id}: {e}", exc_info=True)

    async def get(self, alert_id: str) -> Optional[Dict[str, Any]]:
        """Hand off a pending alert: Redis first (consumed on read), then the durable log."""
        try:
            client = await self._connections.get_client()
        except Exception as e:
            logger.error(f"Redis lookup unavailable for {alert_id}: {e}")
            client = None

        if client is not None:
            try:
                raw = await client.getdel(self.key_for(alert_id))
                if raw:
                    return json.loads(raw)
            except (RedisError, OSError, ValueError) as e:
                logger.error(f"Redis retrieval failed for {alert_id}, checking durable log: {e}")
                self._connections.reset()

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._scan_durable, alert_id)

    def _scan_durable(self, alert_id: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.log_path):
            return None

        try:
            with open(self.log_path, "r", encoding="utf-8") as f:
                for line in f:
                    try:
                        entry = json.loads(line)
                    except ValueError:
                        # skip malformed lines
                        continue
                    if not isinstance(entry, dict) or entry.get("message") != PAYLOAD_MARKER:
                        continue
                    payload = entry.get("payload")
                    if not isinstance(payload, dict):
                        continue
                    if entry.get("alertId") == alert_id or payload.get("alertId") == alert_id:
                        return payload
        except OSError as e:
            logger.error(f"Failed to read durable log for alert {alert_id}: {e}")

        return None
