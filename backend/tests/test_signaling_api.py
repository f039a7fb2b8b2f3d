from __future__ import annotations

import json

import httpx
import pytest


@pytest.mark.asyncio
async def test_host_guest_exchange_in_room_r1(client: httpx.AsyncClient) -> None:
    offer = json.dumps({"type": "offer", "sdp": "v=0 host"})
    answer = json.dumps({"type": "answer", "sdp": "v=0 guest"})

    # Guest polls before the host has posted anything.
    early = await client.get("/api/signaling/R1/offer")
    assert early.status_code == 404
    assert early.json() == {"detail": "No offer"}

    posted = await client.post("/api/signaling/R1/offer", json={"sdp": offer})
    assert posted.json() == {"ok": True}

    got_offer = await client.get("/api/signaling/R1/offer")
    assert got_offer.status_code == 200
    assert got_offer.json()["sdp"] == offer
    assert isinstance(got_offer.json()["timestamp"], int)

    not_yet = await client.get("/api/signaling/R1/answer")
    assert not_yet.status_code == 404
    assert not_yet.json() == {"detail": "No answer"}

    await client.post("/api/signaling/R1/answer", json={"sdp": answer})
    got_answer = await client.get("/api/signaling/R1/answer")
    assert got_answer.json()["sdp"] == answer

    host_candidates = [{"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}]
    guest_candidates = [
        {"candidate": "candidate:2 1 udp 1 10.0.0.2 6000 typ host", "sdpMid": "0", "sdpMLineIndex": 0},
        {"candidate": "candidate:3 1 udp 1 10.0.0.2 6001 typ host", "sdpMid": "0", "sdpMLineIndex": 0},
    ]
    for c in host_candidates:
        await client.post("/api/signaling/R1/candidates", json={"candidate": c, "from": "host"})
    for c in guest_candidates:
        await client.post("/api/signaling/R1/candidates", json={"candidate": c, "from": "guest"})

    host_first = (await client.get("/api/signaling/R1/candidates", params={"role": "host"})).json()
    host_second = (await client.get("/api/signaling/R1/candidates", params={"role": "host"})).json()
    guest_first = (await client.get("/api/signaling/R1/candidates", params={"role": "guest"})).json()

    assert host_first == {"candidates": guest_candidates}
    assert host_second == {"candidates": []}
    assert guest_first == {"candidates": host_candidates}


@pytest.mark.asyncio
async def test_missing_fields_are_400(client: httpx.AsyncClient) -> None:
    assert (await client.post("/api/signaling/R2/offer", json={})).status_code == 400
    assert (await client.post("/api/signaling/R2/offer", json={"sdp": ""})).status_code == 400
    assert (await client.post("/api/signaling/R2/answer", json={})).status_code == 400
    assert (await client.post("/api/signaling/R2/candidates", json={"from": "host"})).status_code == 400
    assert (await client.post("/api/signaling/R2/candidates", json={"candidate": None, "from": "host"})).status_code == 400
    assert (await client.post("/api/signaling/R2/candidates", json={"candidate": {"c": 1}})).status_code == 400


@pytest.mark.asyncio
async def test_candidates_require_role_and_room(client: httpx.AsyncClient) -> None:
    await client.post("/api/signaling/R3/candidates", json={"candidate": {"c": 1}, "from": "host"})

    no_role = await client.get("/api/signaling/R3/candidates")
    bad_role = await client.get("/api/signaling/R3/candidates", params={"role": "viewer"})
    no_room = await client.get("/api/signaling/unknown/candidates", params={"role": "host"})

    for res in (no_role, bad_role, no_room):
        assert res.status_code == 404
        assert res.json() == {"detail": "No candidates or role not provided"}

    # The failed reads did not drain anything.
    guest = await client.get("/api/signaling/R3/candidates", params={"role": "guest"})
    assert guest.json() == {"candidates": [{"c": 1}]}


@pytest.mark.asyncio
async def test_room_status_and_delete(client: httpx.AsyncClient) -> None:
    missing = await client.get("/api/signaling/R4")
    assert missing.status_code == 404

    await client.post("/api/signaling/R4/offer", json={"sdp": "offer"})
    await client.post("/api/signaling/R4/candidates", json={"candidate": {"c": 1}, "from": "guest"})

    status = await client.get("/api/signaling/R4")
    assert status.status_code == 200
    assert status.json() == {
        "roomId": "R4",
        "state": "offer_posted",
        "hasOffer": True,
        "hasAnswer": False,
        "hostCandidates": 0,
        "guestCandidates": 1,
    }

    for _ in range(2):
        deleted = await client.delete("/api/signaling/R4")
        assert deleted.json() == {"ok": True}
    assert (await client.get("/api/signaling/R4/offer")).status_code == 404


@pytest.mark.asyncio
async def test_overlong_room_id_is_rejected(client: httpx.AsyncClient) -> None:
    res = await client.post(f"/api/signaling/{'r' * 129}/offer", json={"sdp": "offer"})

    assert res.status_code == 422
