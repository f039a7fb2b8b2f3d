from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class SdpPost(BaseModel):
    # Serialized session description; relayed verbatim.
    sdp: str = Field(min_length=1)


class SdpResponse(BaseModel):
    sdp: str
    timestamp: int


class CandidatePost(BaseModel):
    candidate: Any
    from_: Literal["host", "guest"] = Field(alias="from")


class CandidatesResponse(BaseModel):
    candidates: list[Any]


class RoomStatusResponse(BaseModel):
    roomId: str
    state: str
    hasOffer: bool
    hasAnswer: bool
    hostCandidates: int
    guestCandidates: int


class OkResponse(BaseModel):
    ok: bool = True
