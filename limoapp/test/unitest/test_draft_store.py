from datetime import date, time
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from limoapp.workflow import transitions
from limoapp.workflow._state import (
    AddressField,
    DraftBooking,
    InMemoryDraftStore,
    RedisDraftStore,
    WorkflowStep,
)


@pytest.fixture
def sparse_draft(places) -> DraftBooking:
    """Three via points where only the middle one has coordinates."""
    draft = DraftBooking()
    draft = transitions.resolve_address(draft, AddressField.origin(), places["jfk"])
    draft = transitions.resolve_address(draft, AddressField.destination(), places["midtown"])
    for _ in range(3):
        draft = transitions.add_via_point(draft)
    draft = transitions.type_address(draft, AddressField.via(0), "Somewhere typed")
    draft = transitions.resolve_address(draft, AddressField.via(1), places["newark"])
    return transitions.set_schedule(draft, date(2030, 5, 12), time(18, 30))


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.setex.return_value = True
    client.get.return_value = None
    client.delete.return_value = 1
    return client


@pytest.mark.asyncio
async def test_in_memory_round_trip_keeps_sparse_via_coordinates(sparse_draft):
    store = InMemoryDraftStore()

    await store.save(sparse_draft)
    loaded = await store.load()

    assert loaded == sparse_draft
    assert [via.coordinates is not None for via in loaded.trip.via_points] == [False, True, False]


@pytest.mark.asyncio
async def test_in_memory_single_slot_and_clear(sparse_draft):
    store = InMemoryDraftStore()
    await store.save(DraftBooking())
    await store.save(sparse_draft)

    assert await store.load() == sparse_draft
    assert await store.clear() is True
    assert await store.load() is None
    assert await store.clear() is False


@pytest.mark.asyncio
async def test_redis_save_uses_ttl(redis_client, sparse_draft):
    store = RedisDraftStore("session-1", redis_client=redis_client, ttl=3600)

    assert await store.save(sparse_draft) is True

    redis_client.setex.assert_awaited_once()
    key, ttl, value = redis_client.setex.await_args.args
    assert key == "booking:draft:session-1"
    assert ttl == 3600
    assert DraftBooking.model_validate_json(value) == sparse_draft


@pytest.mark.asyncio
async def test_redis_load_round_trip(redis_client, sparse_draft):
    redis_client.get.return_value = sparse_draft.model_dump_json()
    store = RedisDraftStore("session-1", redis_client=redis_client)

    assert await store.load() == sparse_draft


@pytest.mark.asyncio
async def test_redis_load_discards_corrupt_draft(redis_client):
    redis_client.get.return_value = '{"step": 9}'
    store = RedisDraftStore("session-1", redis_client=redis_client)

    assert await store.load() is None


@pytest.mark.asyncio
async def test_redis_errors_do_not_raise(redis_client):
    redis_client.setex.side_effect = RedisConnectionError("down")
    redis_client.get.side_effect = RedisConnectionError("down")
    store = RedisDraftStore("session-1", redis_client=redis_client)

    assert await store.save(DraftBooking(step=WorkflowStep.vehicle_selection)) is False
    assert await store.load() is None


@pytest.mark.asyncio
async def test_redis_clear(redis_client):
    store = RedisDraftStore("session-1", redis_client=redis_client)

    assert await store.clear() is True
    redis_client.delete.assert_awaited_once_with("booking:draft:session-1")


def test_session_id_is_sanitized(redis_client):
    store = RedisDraftStore("abc:123/../x", redis_client=redis_client)
    assert store.key == "booking:draft:abc123x"

    with pytest.raises(ValueError):
        RedisDraftStore(":::", redis_client=redis_client)
