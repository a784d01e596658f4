"""
Tests for the fallback store: Redis hand-off and the durable JSON-lines log.
"""

import json

import pytest

from conftest import FailingRedis, FakeConnectionManager
from safegrid.services.fallback_store import PAYLOAD_MARKER, FallbackStore


PAYLOAD = {"alertId": "a1", "userId": "tourist-1", "reason": "SOS"}


def read_log(store):
    with open(store.log_path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


# =============================================================
# TEST: Cache path
# =============================================================

class TestCachePath:

    def test_key_format(self, fallback_store):
        assert fallback_store.key_for("a1") == "sos:fallback:a1"

    async def test_put_sets_key_with_ttl(self, fallback_store, fake_redis):
        await fallback_store.put("a1", PAYLOAD)

        assert json.loads(fake_redis.values["sos:fallback:a1"]) == PAYLOAD
        assert fake_redis.ttls["sos:fallback:a1"] == 3600

    async def test_get_is_at_most_once(self, fallback_store):
        await fallback_store.put("a1", PAYLOAD)

        assert await fallback_store.get("a1") == PAYLOAD
        assert await fallback_store.get("a1") is None

    async def test_unknown_id(self, fallback_store):
        assert await fallback_store.get("missing") is None


# =============================================================
# TEST: Degraded paths
# =============================================================

class TestDurableLog:

    async def test_put_without_cache_writes_log(self, offline_fallback_store):
        await offline_fallback_store.put("a1", PAYLOAD)

        entries = read_log(offline_fallback_store)
        assert len(entries) == 1
        assert entries[0]["message"] == PAYLOAD_MARKER
        assert entries[0]["alertId"] == "a1"
        assert entries[0]["payload"] == PAYLOAD

    async def test_get_without_cache_scans_log(self, offline_fallback_store):
        await offline_fallback_store.put("a1", PAYLOAD)
        assert await offline_fallback_store.get("a1") == PAYLOAD

    async def test_put_with_failing_cache_degrades_without_raising(self, tmp_path):
        connections = FakeConnectionManager(FailingRedis())
        store = FallbackStore(connections, log_path=str(tmp_path / "fallback.log"))

        await store.put("a1", PAYLOAD)

        assert read_log(store)[0]["payload"] == PAYLOAD
        assert connections.resets == 1

    async def test_get_with_failing_cache_falls_back_to_log(self, tmp_path):
        store = FallbackStore(FakeConnectionManager(FailingRedis()), log_path=str(tmp_path / "fallback.log"))
        await store.put("a1", PAYLOAD)

        assert await store.get("a1") == PAYLOAD

    async def test_malformed_lines_are_skipped(self, offline_fallback_store):
        with open(offline_fallback_store.log_path, "w", encoding="utf-8") as f:
            f.write("not json at all\n")
            f.write(json.dumps({"message": "something else", "payload": {"alertId": "a1"}}) + "\n")
            f.write("[1, 2, 3]\n")
            f.write(json.dumps({"message": PAYLOAD_MARKER, "payload": PAYLOAD}) + "\n")

        assert await offline_fallback_store.get("a1") == PAYLOAD

    async def test_missing_log_file(self, offline_fallback_store):
        assert await offline_fallback_store.get("a1") is None

    @pytest.mark.parametrize("alert_id", ["a2", ""])
    async def test_other_ids_do_not_match(self, offline_fallback_store, alert_id):
        await offline_fallback_store.put("a1", PAYLOAD)
        assert await offline_fallback_store.get(alert_id) is None


class TestUnwritableLog:

    @pytest.fixture
    def blocked_path(self, tmp_path):
        # a regular file where the log directory should be
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        return str(blocker / "logs" / "fallback.log")

    def test_store_builds_without_touching_the_file(self, blocked_path):
        store = FallbackStore(FakeConnectionManager(None), log_path=blocked_path)
        assert store.log_path == blocked_path

    async def test_put_and_get_degrade_without_raising(self, blocked_path):
        store = FallbackStore(FakeConnectionManager(None), log_path=blocked_path)

        await store.put("a1", PAYLOAD)

        assert await store.get("a1") is None
