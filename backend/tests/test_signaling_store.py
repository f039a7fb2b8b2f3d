from __future__ import annotations

import pytest

from app.core.errors import SignalNotFound
from app.services.signaling_store import InMemorySignalingStore, Role, RoomState


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_drain_returns_peer_queue_once() -> None:
    store = InMemorySignalingStore()
    await store.post_candidate("R1", {"c": 1}, Role.guest)
    await store.post_candidate("R1", {"c": 2}, Role.guest)
    await store.post_candidate("R1", {"c": 3}, Role.host)

    first = await store.drain_candidates("R1", Role.host)
    second = await store.drain_candidates("R1", Role.host)

    assert first == [{"c": 1}, {"c": 2}]
    assert second == []
    assert await store.drain_candidates("R1", Role.guest) == [{"c": 3}]


@pytest.mark.asyncio
async def test_candidates_are_relayed_verbatim() -> None:
    store = InMemorySignalingStore()
    odd = ["not", {"a": "dict"}, 42, None]
    await store.post_candidate("R1", odd, Role.host)

    assert await store.drain_candidates("R1", Role.guest) == [odd]


@pytest.mark.asyncio
async def test_second_offer_replaces_first() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer-1")
    await store.post_offer("R1", "offer-2")

    offer = await store.get_offer("R1")
    status = await store.room_status("R1")

    assert offer.sdp == "offer-2"
    assert status.overwrites == 1
    assert status.state is RoomState.offer_posted


@pytest.mark.asyncio
async def test_reads_do_not_consume() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer")
    await store.post_answer("R1", "answer")

    assert (await store.get_offer("R1")).sdp == "offer"
    assert (await store.get_offer("R1")).sdp == "offer"
    assert (await store.get_answer("R1")).sdp == "answer"
    assert (await store.get_answer("R1")).sdp == "answer"


@pytest.mark.asyncio
async def test_missing_artifacts_are_not_found() -> None:
    store = InMemorySignalingStore()

    with pytest.raises(SignalNotFound, match="No offer"):
        await store.get_offer("nope")
    with pytest.raises(SignalNotFound, match="No answer"):
        await store.get_answer("nope")
    with pytest.raises(SignalNotFound):
        await store.drain_candidates("nope", Role.host)

    await store.post_offer("R1", "offer")
    with pytest.raises(SignalNotFound, match="No answer"):
        await store.get_answer("R1")


@pytest.mark.asyncio
async def test_state_tag_follows_offer_and_answer() -> None:
    store = InMemorySignalingStore()
    await store.post_candidate("R1", {"c": 1}, Role.host)
    assert (await store.room_status("R1")).state is RoomState.empty

    await store.post_offer("R1", "offer")
    assert (await store.room_status("R1")).state is RoomState.offer_posted

    await store.post_answer("R1", "answer")
    status = await store.room_status("R1")
    assert status.state is RoomState.answer_posted
    assert status.has_offer and status.has_answer
    assert status.host_candidates == 1


@pytest.mark.asyncio
async def test_reoffer_drops_stale_answer() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer-1")
    await store.post_answer("R1", "answer-1")

    await store.post_offer("R1", "offer-2")

    with pytest.raises(SignalNotFound):
        await store.get_answer("R1")
    assert (await store.room_status("R1")).state is RoomState.offer_posted


@pytest.mark.asyncio
async def test_second_answer_is_counted() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer")
    await store.post_answer("R1", "answer-1")
    await store.post_answer("R1", "answer-2")

    assert (await store.get_answer("R1")).sdp == "answer-2"
    assert (await store.room_status("R1")).overwrites == 1


@pytest.mark.asyncio
async def test_timestamps_are_epoch_millis() -> None:
    store = InMemorySignalingStore(wall_clock=lambda: 1700000000.5)
    posted = await store.post_offer("R1", "offer")

    assert posted.timestamp == 1700000000500


@pytest.mark.asyncio
async def test_idle_rooms_expire_lazily() -> None:
    clock = _Clock()
    store = InMemorySignalingStore(room_ttl_seconds=60, clock=clock)
    await store.post_offer("R1", "offer")

    clock.now += 59
    assert (await store.get_offer("R1")).sdp == "offer"

    # The read above refreshed the room.
    clock.now += 59
    assert (await store.get_offer("R1")).sdp == "offer"

    clock.now += 60
    with pytest.raises(SignalNotFound):
        await store.get_offer("R1")
    assert len(store) == 0


@pytest.mark.asyncio
async def test_sweep_evicts_only_idle_rooms() -> None:
    clock = _Clock()
    store = InMemorySignalingStore(room_ttl_seconds=60, clock=clock)
    await store.post_offer("old", "offer")
    clock.now += 30
    await store.post_offer("fresh", "offer")
    clock.now += 31

    assert await store.sweep() == 1
    assert len(store) == 1
    assert (await store.get_offer("fresh")).sdp == "offer"


@pytest.mark.asyncio
async def test_delete_room_is_idempotent() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer")

    assert await store.delete_room("R1") is True
    assert await store.delete_room("R1") is False
    with pytest.raises(SignalNotFound):
        await store.room_status("R1")


@pytest.mark.asyncio
async def test_reoffer_drops_previous_guest_candidates() -> None:
    store = InMemorySignalingStore()
    await store.post_offer("R1", "offer-1")
    await store.post_candidate("R1", {"c": "old-guest"}, Role.guest)
    await store.post_answer("R1", "answer-1")
    await store.post_candidate("R1", {"c": "new-host"}, Role.host)

    await store.post_offer("R1", "offer-2")

    assert await store.drain_candidates("R1", Role.host) == []
    assert await store.drain_candidates("R1", Role.guest) == [{"c": "new-host"}]
