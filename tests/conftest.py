"""
Shared fixtures: in-memory Firestore, Redis and websocket doubles.

The Firestore fake implements only the client surface the services use:
collection / document / get / set / update / delete / where / limit / stream.
"""

import itertools
import math
import operator
from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from safegrid.config.redis_client import RedisConnectionManager
from safegrid.services.alert_dispatcher import AlertDispatcher, ClientConnection, ConnectionRegistry
from safegrid.services.fallback_store import FallbackStore
from safegrid.services.risk_aggregator import RiskAggregator
from safegrid.services.safety_scorer import SafetyScorer


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

# Calangute, Goa
BASE_LAT = 15.5440
BASE_LNG = 73.7553


# =============================================================
# Firestore fake
# =============================================================

_OPS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field, values: field in values,
}

_auto_ids = itertools.count(1)


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, store, doc_id):
        self._store = store
        self.id = doc_id

    def get(self):
        return FakeSnapshot(self.id, self._store.get(self.id))

    def set(self, data):
        self._store[self.id] = dict(data)

    def update(self, fields):
        if self.id not in self._store:
            raise KeyError(self.id)
        self._store[self.id].update(fields)

    def delete(self):
        self._store.pop(self.id, None)


class FakeQuery:
    def __init__(self, store, filters=(), limit=None):
        self._store = store
        self._filters = list(filters)
        self._limit = limit

    def where(self, field, op, value):
        return FakeQuery(self._store, self._filters + [(field, op, value)], self._limit)

    def limit(self, count):
        return FakeQuery(self._store, self._filters, count)

    def _matches(self, data):
        for field, op, value in self._filters:
            if field not in data or data[field] is None:
                return False
            if not _OPS[op](data[field], value):
                return False
        return True

    def stream(self):
        results = [FakeSnapshot(doc_id, data) for doc_id, data in list(self._store.items()) if self._matches(data)]
        if self._limit is not None:
            results = results[: self._limit]
        return iter(results)


class FakeCollection(FakeQuery):
    def __init__(self, store):
        super().__init__(store)

    def document(self, doc_id=None):
        return FakeDocument(self._store, doc_id or f"doc{next(_auto_ids)}")


class FakeFirestore:
    def __init__(self):
        self.data = {}

    def collection(self, name):
        return FakeCollection(self.data.setdefault(name, {}))

    def collections(self):
        return [self.collection(name) for name in self.data]

    def docs(self, name):
        return self.data.get(name, {})


# =============================================================
# Redis fakes
# =============================================================

class FakeRedis:
    def __init__(self):
        self.values = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def getdel(self, key):
        self.ttls.pop(key, None)
        return self.values.pop(key, None)


class FailingRedis(FakeRedis):
    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def getdel(self, key):
        raise RedisConnectionError("connection refused")


class FakeConnectionManager(RedisConnectionManager):
    """Hands out a fixed client (or None, for an unreachable cache)."""

    def __init__(self, client=None):
        super().__init__("redis://fake")
        self.client = client
        self.resets = 0

    async def get_client(self):
        return self.client

    def reset(self):
        self.resets += 1

    async def close(self):
        self.client = None


# =============================================================
# Websocket fake
# =============================================================

class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name=None):
        return [f for f in self.sent if name is None or f["event"] == name]


def make_connection(fail=False):
    return ClientConnection(FakeWebSocket(fail=fail))


# =============================================================
# Document builders
# =============================================================

def offset(lat, lng, north_m=0.0, east_m=0.0):
    """Shift a point by a number of meters (small-distance approximation)."""
    dlat = north_m / 111320.0
    dlng = east_m / (111320.0 * math.cos(math.radians(lat)))
    return lat + dlat, lng + dlng


def distress_doc(lat=BASE_LAT, lng=BASE_LNG, hours_ago=1.0, safety=60, status="new", reason="SOS", now=NOW):
    return {
        "user_id": "tourist-1",
        "latitude": lat,
        "longitude": lng,
        "timestamp": now - timedelta(hours=hours_ago),
        "safety_score": safety,
        "reason": reason,
        "location_name": None,
        "status": status,
    }


def incident_doc(lat=BASE_LAT, lng=BASE_LNG, hours_ago=1.0, severity=0.5, title="Theft", category="theft", now=NOW):
    return {
        "latitude": lat,
        "longitude": lng,
        "timestamp": now - timedelta(hours=hours_ago),
        "severity": severity,
        "title": title,
        "category": category,
    }


def put(db, collection, doc_id, data):
    db.collection(collection).document(doc_id).set(data)


# =============================================================
# Fixtures
# =============================================================

@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def aggregator(fake_db):
    return RiskAggregator(db=fake_db, namer=lambda lat, lng: "Calangute, North Goa")


@pytest.fixture
def scorer(fake_db):
    return SafetyScorer(db=fake_db)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fallback_store(fake_redis, tmp_path):
    return FallbackStore(
        FakeConnectionManager(fake_redis),
        namespace="sos",
        ttl_seconds=3600,
        log_path=str(tmp_path / "fallback.log"),
    )


@pytest.fixture
def offline_fallback_store(tmp_path):
    return FallbackStore(
        FakeConnectionManager(None),
        namespace="sos",
        ttl_seconds=3600,
        log_path=str(tmp_path / "fallback.log"),
    )


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry, scorer, fallback_store):
    return AlertDispatcher(registry, scorer, fallback_store)
