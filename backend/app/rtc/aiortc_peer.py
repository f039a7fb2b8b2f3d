from __future__ import annotations

from typing import Any

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from app.core.logging import get_logger
from app.rtc.negotiation import (
    CandidateCallback,
    MediaTrack,
    SessionDescription,
    StateCallback,
    TrackCallback,
)

logger = get_logger(__name__)

DEFAULT_ICE_SERVERS = ("stun:stun.l.google.com:19302",)

_CANDIDATE_PREFIX = "candidate:"


def parse_candidate(payload: dict[str, Any]):
    """Build an aiortc candidate from browser-shaped ``{candidate, sdpMid, sdpMLineIndex}`` JSON."""
    line = str(payload.get("candidate") or "").strip()
    if line.startswith("a="):
        line = line[2:]
    if line.startswith(_CANDIDATE_PREFIX):
        line = line[len(_CANDIDATE_PREFIX):]
    if not line:
        raise ValueError("empty candidate")
    candidate = candidate_from_sdp(line)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


def candidates_from_sdp(sdp: str) -> list[dict[str, Any]]:
    """Extract gathered candidates from a local description, one dict per ``a=candidate`` line."""
    out: list[dict[str, Any]] = []
    mline_index = -1
    mid: str | None = None
    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            out.append(
                {
                    "candidate": line[2:],
                    "sdpMid": mid,
                    "sdpMLineIndex": mline_index,
                }
            )
    return out


class AiortcPeerConnection:
    """Adapts :class:`aiortc.RTCPeerConnection` to the negotiation's peer protocol.

    aiortc gathers candidates while the local description is being set and
    does not emit them one by one, so they are read back out of the local
    SDP and reported through the candidate callback afterwards.
    """

    def __init__(self, pc: RTCPeerConnection | None = None, *, ice_servers: tuple[str, ...] = DEFAULT_ICE_SERVERS):
        if pc is None:
            config = RTCConfiguration(iceServers=[RTCIceServer(urls=list(ice_servers))] if ice_servers else [])
            pc = RTCPeerConnection(configuration=config)
        self.pc = pc
        self._candidate_callback: CandidateCallback | None = None
        self._state_callback: StateCallback | None = None
        self._track_callback: TrackCallback | None = None

        @pc.on("connectionstatechange")
        async def _on_connection_state() -> None:
            if self._state_callback is not None:
                self._state_callback(self.pc.connectionState)

        @pc.on("track")
        def _on_track(track) -> None:
            if self._track_callback is not None:
                self._track_callback(track)

    @property
    def signaling_state(self) -> str:
        return self.pc.signalingState

    @property
    def local_description(self) -> SessionDescription | None:
        desc = self.pc.localDescription
        if desc is None:
            return None
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    async def create_offer(self) -> SessionDescription:
        desc = await self.pc.createOffer()
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    async def create_answer(self) -> SessionDescription:
        desc = await self.pc.createAnswer()
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self.pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        if self._candidate_callback is None or self.pc.localDescription is None:
            return
        for candidate in candidates_from_sdp(self.pc.localDescription.sdp):
            self._candidate_callback(candidate)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        await self.pc.addIceCandidate(parse_candidate(candidate))

    def add_track(self, track: MediaTrack) -> None:
        self.pc.addTrack(track)

    def on_ice_candidate(self, callback: CandidateCallback) -> None:
        self._candidate_callback = callback

    def on_connection_state_change(self, callback: StateCallback) -> None:
        self._state_callback = callback

    def on_track(self, callback: TrackCallback) -> None:
        self._track_callback = callback

    async def close(self) -> None:
        await self.pc.close()
