from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.api.deps import get_signaling_store
from app.core.errors import SignalNotFound
from app.schemas.signaling import (
    CandidatePost,
    CandidatesResponse,
    OkResponse,
    RoomStatusResponse,
    SdpPost,
    SdpResponse,
)
from app.services.signaling_store import Role, SignalingStore

router = APIRouter(prefix="/signaling", tags=["signaling"])

RoomId = Annotated[str, Path(min_length=1, max_length=128)]


@router.post("/{room_id}/offer", response_model=OkResponse)
async def post_offer(
    body: SdpPost,
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> OkResponse:
    await store.post_offer(room_id, body.sdp)
    return OkResponse(ok=True)


@router.get("/{room_id}/offer", response_model=SdpResponse)
async def get_offer(
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> SdpResponse:
    offer = await store.get_offer(room_id)
    return SdpResponse(sdp=offer.sdp, timestamp=offer.timestamp)


@router.post("/{room_id}/answer", response_model=OkResponse)
async def post_answer(
    body: SdpPost,
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> OkResponse:
    await store.post_answer(room_id, body.sdp)
    return OkResponse(ok=True)


@router.get("/{room_id}/answer", response_model=SdpResponse)
async def get_answer(
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> SdpResponse:
    answer = await store.get_answer(room_id)
    return SdpResponse(sdp=answer.sdp, timestamp=answer.timestamp)


@router.post("/{room_id}/candidates", response_model=OkResponse)
async def post_candidate(
    body: CandidatePost,
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> OkResponse:
    if body.candidate is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required field(s): candidate",
        )
    await store.post_candidate(room_id, body.candidate, Role(body.from_))
    return OkResponse(ok=True)


@router.get("/{room_id}/candidates", response_model=CandidatesResponse)
async def get_candidates(
    room_id: RoomId,
    role: str | None = Query(default=None),
    store: SignalingStore = Depends(get_signaling_store),
) -> CandidatesResponse:
    # Unknown or missing role reads like an empty mailbox to a poller.
    if role not in (Role.host.value, Role.guest.value):
        raise SignalNotFound("No candidates or role not provided")
    candidates = await store.drain_candidates(room_id, Role(role))
    return CandidatesResponse(candidates=candidates)


@router.get("/{room_id}", response_model=RoomStatusResponse)
async def room_status(
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> RoomStatusResponse:
    info = await store.room_status(room_id)
    return RoomStatusResponse(
        roomId=info.room_id,
        state=info.state.value,
        hasOffer=info.has_offer,
        hasAnswer=info.has_answer,
        hostCandidates=info.host_candidates,
        guestCandidates=info.guest_candidates,
    )


@router.delete("/{room_id}", response_model=OkResponse)
async def delete_room(
    room_id: RoomId,
    store: SignalingStore = Depends(get_signaling_store),
) -> OkResponse:
    await store.delete_room(room_id)
    return OkResponse(ok=True)
