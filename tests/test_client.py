"""Caller-side client, device id and fallback cache."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from canquota.client import LocalQuotaCache, LocalStateStore, QuotaClient, get_device_id
from canquota.client.device import DEVICE_ID_KEY, to_base36
from canquota.core.errors import QuotaExceeded, UpstreamUnavailable
from canquota.domain.identity import LimitType

from .conftest import FakeClock

BASE_URL = "https://quota.example.com/v1"


@pytest.fixture
def store(tmp_path) -> LocalStateStore:
    return LocalStateStore(tmp_path / "state.json")


def make_client(store, handler, **kwargs) -> QuotaClient:
    return QuotaClient(BASE_URL, store=store, transport=httpx.MockTransport(handler), **kwargs)


def test_device_id_is_persisted(store):
    first = get_device_id(store)
    second = get_device_id(store)

    assert first == second
    assert store.get(DEVICE_ID_KEY) == first
    assert len(first.split("_")) == 3


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_corrupt_state_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    assert LocalStateStore(path).get(DEVICE_ID_KEY) is None


async def test_check_usage_uses_server_response(store):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200,
            json={
                "canGenerate": True,
                "generationsUsed": 2,
                "generationsRemaining": 8,
                "resetTime": "2026-03-15T00:00:00Z",
                "isAuthenticated": True,
                "limitType": "authenticated",
            },
        )

    client = make_client(store, handler, access_token="token-1")
    stats = await client.check_usage()

    assert seen["url"] == f"{BASE_URL}/rate-limit"
    assert seen["auth"] == "Bearer token-1"
    assert client.device_id.encode() in seen["body"]
    assert stats.source == "server"
    assert stats.max_generations == 10
    assert stats.limit_type == LimitType.AUTHENTICATED
    assert stats.generations_remaining == 8


async def test_check_usage_falls_back_on_server_error(store):
    client = make_client(store, lambda request: httpx.Response(503, json={"fallback": True}))

    stats = await client.check_usage()

    assert stats.source == "fallback"
    assert stats.generations_used == 0
    assert stats.max_generations == 5


async def test_check_usage_falls_back_when_unreachable(store):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    stats = await make_client(store, handler).check_usage()

    assert stats.source == "fallback"
    assert stats.can_generate is True


async def test_record_fails_closed_and_mirrors_locally(store):
    client = make_client(store, lambda request: httpx.Response(500))

    with pytest.raises(UpstreamUnavailable):
        await client.record_generation(True)

    assert client.cache.status(False).generations_used == 1


async def test_failed_generation_is_not_mirrored(store):
    client = make_client(store, lambda request: httpx.Response(503))

    with pytest.raises(UpstreamUnavailable):
        await client.record_generation(False, "render failed")

    assert client.cache.status(False).generations_used == 0


async def test_record_raises_quota_exceeded_on_429(store):
    body = {
        "error": "Generation limit exceeded",
        "canGenerate": False,
        "generationsUsed": 5,
        "generationsRemaining": 0,
    }
    client = make_client(store, lambda request: httpx.Response(429, json=body))

    with pytest.raises(QuotaExceeded) as excinfo:
        await client.record_generation(True)

    assert excinfo.value.used == 5
    assert excinfo.value.limit == 5


async def test_record_returns_server_counts(store):
    body = {"success": True, "generationsUsed": 3, "generationsRemaining": 2}
    client = make_client(store, lambda request: httpx.Response(200, json=body))

    outcome = await client.record_generation(True)

    assert outcome.success is True
    assert outcome.generations_used == 3


def test_local_cache_is_clamped_to_cap(store):
    cache = LocalQuotaCache(store, "device-1")
    for _ in range(8):
        stats = cache.record(False)

    assert stats.generations_used == 5
    assert stats.generations_remaining == 0
    assert stats.can_generate is False


def test_local_cache_resets_at_utc_midnight(store):
    clock = FakeClock(datetime(2026, 3, 14, 23, 30, tzinfo=timezone.utc))
    cache = LocalQuotaCache(store, "device-1", clock=clock)
    for _ in range(5):
        cache.record(False)
    assert cache.status(False).can_generate is False

    clock.now += timedelta(hours=1)

    stats = cache.status(False)
    assert stats.generations_used == 0
    assert stats.reset_time == datetime(2026, 3, 16, tzinfo=timezone.utc)


def test_local_cache_tracks_kinds_separately(store):
    cache = LocalQuotaCache(store, "device-1")
    cache.record(False)
    cache.record(True)
    cache.record(True)

    assert cache.status(False).generations_used == 1
    assert cache.status(True).generations_used == 2
    assert cache.status(True).max_generations == 10


def test_clear_forgets_usage_and_device(store):
    device_id = get_device_id(store)
    cache = LocalQuotaCache(store, device_id)
    cache.record(False)
    store.set("unrelated", 1)

    cache.clear()

    assert store.keys() == ["unrelated"]
