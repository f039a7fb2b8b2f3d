"""Client-side offer/answer negotiation over the polling signaling relay.

One :class:`NegotiationStateMachine` drives one side of a two-party call.
The initiator posts an offer and polls for the answer; the responder polls
for the offer and posts an answer. Once a remote description is applied
both sides trickle local candidates to the relay and drain the peer's.

Descriptions travel through the relay as JSON ``{"type": ..., "sdp": ...}``
strings, the shape a browser produces for ``JSON.stringify(description)``.
"""

from __future__ import annotations

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from app.core.logging import get_logger
from app.rtc.signaling_client import SignalingClient

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.5


class NegotiationState(str, enum.Enum):
    idle = "idle"
    local_media_ready = "local_media_ready"
    offer_sent = "offer_sent"
    awaiting_answer = "awaiting_answer"
    awaiting_offer = "awaiting_offer"
    answer_sent = "answer_sent"
    remote_set = "remote_set"
    candidate_exchange = "candidate_exchange"
    active = "active"
    terminated = "terminated"


class NegotiationRole(str, enum.Enum):
    initiator = "initiator"
    responder = "responder"

    @property
    def relay_role(self) -> str:
        # The relay names the offering side "host".
        return "host" if self is NegotiationRole.initiator else "guest"


@dataclass(frozen=True)
class SessionDescription:
    type: str
    sdp: str

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "sdp": self.sdp})

    @classmethod
    def from_relay(cls, raw: str, *, expected_type: str) -> "SessionDescription":
        """Parse a relayed description, accepting bare SDP text as well."""
        try:
            data = json.loads(raw)
        except ValueError:
            return cls(type=expected_type, sdp=raw)
        if not isinstance(data, dict) or not isinstance(data.get("sdp"), str):
            raise ValueError("relayed description has no sdp")
        return cls(type=str(data.get("type") or expected_type), sdp=data["sdp"])


CandidateCallback = Callable[[dict[str, Any]], None]
StateCallback = Callable[[str], None]
TrackCallback = Callable[[Any], None]


class MediaTrack(Protocol):
    def stop(self) -> None: ...


class MediaSource(Protocol):
    async def acquire(self) -> list[MediaTrack]: ...


class PeerConnection(Protocol):
    """The subset of a WebRTC peer connection the negotiation needs."""

    @property
    def signaling_state(self) -> str: ...

    @property
    def local_description(self) -> SessionDescription | None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None: ...

    def add_track(self, track: MediaTrack) -> None: ...

    def on_ice_candidate(self, callback: CandidateCallback) -> None: ...

    def on_connection_state_change(self, callback: StateCallback) -> None: ...

    def on_track(self, callback: TrackCallback) -> None: ...

    async def close(self) -> None: ...


class Poller:
    """Run ``tick`` every ``interval`` seconds until it returns True or is stopped.

    Stopping is cooperative: it prevents the next tick but does not abort one
    already in flight. A tick that raises is logged and the loop carries on.
    """

    def __init__(self, name: str, tick: Callable[[], Awaitable[bool]], interval: float):
        self.name = name
        self._tick = tick
        self._interval = interval
        self._stopped = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"poller:{self.name}")

    def stop(self) -> None:
        self._stopped.set()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while not self._stopped.is_set():
            self.ticks += 1
            try:
                if await self._tick():
                    self._stopped.set()
                    break
            except Exception:
                logger.warning("Poll tick failed", poller=self.name, exc_info=True)
            if self._stopped.is_set():
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass


class NegotiationStateMachine:
    def __init__(
        self,
        *,
        role: NegotiationRole | str,
        room_id: str,
        peer: PeerConnection,
        signaling: SignalingClient,
        media: MediaSource | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.role = NegotiationRole(role)
        self.room_id = room_id
        self.peer = peer
        self.signaling = signaling
        self.media = media
        self.poll_interval = poll_interval

        self.state = NegotiationState.idle
        self.history: list[NegotiationState] = [NegotiationState.idle]
        self.local_tracks: list[MediaTrack] = []
        self.remote_tracks: list[Any] = []
        self.applied_candidates = 0
        self.failed_candidates = 0

        self._changed = asyncio.Event()
        self._description_poller: Poller | None = None
        self._candidate_poller: Poller | None = None
        self._pending_posts: set[asyncio.Task[None]] = set()
        self._closing: asyncio.Task[None] | None = None

    @property
    def relay_role(self) -> str:
        return self.role.relay_role

    @property
    def terminated(self) -> bool:
        return self.state is NegotiationState.terminated

    def _transition(self, state: NegotiationState) -> None:
        # terminated is final; late callbacks and in-flight awaits cannot leave it.
        if state is self.state or self.terminated:
            return
        logger.info(
            "Negotiation state changed",
            room_id=self.room_id,
            role=self.role.value,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state
        self.history.append(state)
        self._changed.set()

    async def wait_for(self, *states: NegotiationState, timeout: float | None = None) -> NegotiationState:
        async def _wait() -> NegotiationState:
            while self.state not in states:
                self._changed.clear()
                await self._changed.wait()
            return self.state

        return await asyncio.wait_for(_wait(), timeout=timeout)

    async def start(self) -> None:
        if self.state is not NegotiationState.idle:
            logger.warning("Negotiation already started", room_id=self.room_id, state=self.state.value)
            return

        self.peer.on_ice_candidate(self._on_local_candidate)
        self.peer.on_connection_state_change(self._on_connection_state)
        self.peer.on_track(self._on_remote_track)

        if self.media is not None:
            tracks = list(await self.media.acquire())
            if self.terminated:
                self._stop_tracks(tracks)
                return
            self.local_tracks = tracks
            for track in self.local_tracks:
                self.peer.add_track(track)
        self._transition(NegotiationState.local_media_ready)

        if self.role is NegotiationRole.initiator:
            offer = await self.peer.create_offer()
            if self.terminated:
                return
            await self.peer.set_local_description(offer)
            if self.terminated:
                return
            local = self.peer.local_description or offer
            await self.signaling.post_offer(self.room_id, local.to_json())
            if self.terminated:
                return
            self._transition(NegotiationState.offer_sent)
            self._transition(NegotiationState.awaiting_answer)
            self._description_poller = Poller("answer", self._poll_answer, self.poll_interval)
        else:
            self._transition(NegotiationState.awaiting_offer)
            self._description_poller = Poller("offer", self._poll_offer, self.poll_interval)

        if not self.terminated:
            self._description_poller.start()

    async def _poll_answer(self) -> bool:
        if self.state is not NegotiationState.awaiting_answer:
            return True
        relayed = await self.signaling.get_answer(self.room_id)
        if self.terminated:
            return True
        if relayed is None:
            return False

        answer = SessionDescription.from_relay(relayed.sdp, expected_type="answer")
        if answer.type != "answer" or self.peer.signaling_state != "have-local-offer":
            logger.info(
                "Ignoring answer not expected in current state",
                room_id=self.room_id,
                description_type=answer.type,
                signaling_state=self.peer.signaling_state,
            )
            return False

        await self.peer.set_remote_description(answer)
        if self.terminated:
            return True
        self._transition(NegotiationState.remote_set)
        self._start_candidate_exchange()
        return True

    async def _poll_offer(self) -> bool:
        if self.state is not NegotiationState.awaiting_offer:
            return True
        relayed = await self.signaling.get_offer(self.room_id)
        if self.terminated:
            return True
        if relayed is None:
            return False

        offer = SessionDescription.from_relay(relayed.sdp, expected_type="offer")
        if offer.type != "offer" or self.peer.signaling_state != "stable":
            logger.info(
                "Ignoring offer not expected in current state",
                room_id=self.room_id,
                description_type=offer.type,
                signaling_state=self.peer.signaling_state,
            )
            return False

        await self.peer.set_remote_description(offer)
        if self.terminated:
            return True
        answer = await self.peer.create_answer()
        if self.terminated:
            return True
        await self.peer.set_local_description(answer)
        if self.terminated:
            return True
        local = self.peer.local_description or answer
        await self.signaling.post_answer(self.room_id, local.to_json())
        if self.terminated:
            return True
        self._transition(NegotiationState.answer_sent)
        self._transition(NegotiationState.remote_set)
        self._start_candidate_exchange()
        return True

    def _start_candidate_exchange(self) -> None:
        if self.terminated:
            return
        self._transition(NegotiationState.candidate_exchange)
        self._candidate_poller = Poller("candidates", self._poll_candidates, self.poll_interval)
        self._candidate_poller.start()

    async def _poll_candidates(self) -> bool:
        if self.terminated:
            return True
        candidates = await self.signaling.drain_candidates(self.room_id, self.relay_role)
        for candidate in candidates or []:
            if self.terminated:
                return True
            try:
                await self.peer.add_ice_candidate(candidate)
                self.applied_candidates += 1
            except Exception:
                self.failed_candidates += 1
                logger.warning("Failed to add remote candidate", room_id=self.room_id, exc_info=True)
        return False

    def _on_local_candidate(self, candidate: dict[str, Any]) -> None:
        if self.terminated or not candidate:
            return
        task = asyncio.create_task(self._post_candidate(candidate))
        self._pending_posts.add(task)
        task.add_done_callback(self._pending_posts.discard)

    async def _post_candidate(self, candidate: dict[str, Any]) -> None:
        try:
            await self.signaling.post_candidate(self.room_id, candidate, self.relay_role)
        except Exception:
            logger.warning("Failed to post local candidate", room_id=self.room_id, exc_info=True)

    def _on_connection_state(self, state: str) -> None:
        logger.info("Peer connection state", room_id=self.room_id, connection_state=state)
        if state == "connected" and self.state in (
            NegotiationState.remote_set,
            NegotiationState.candidate_exchange,
        ):
            self._transition(NegotiationState.active)
        elif state in ("failed", "closed") and not self.terminated and self._closing is None:
            self._closing = asyncio.create_task(self.terminate())

    def _on_remote_track(self, track: Any) -> None:
        if not self.terminated:
            self.remote_tracks.append(track)

    async def flush(self) -> None:
        """Wait for candidate posts already handed to the relay client."""
        if self._pending_posts:
            await asyncio.gather(*list(self._pending_posts), return_exceptions=True)

    async def terminate(self) -> None:
        if self.terminated:
            return
        self._transition(NegotiationState.terminated)

        for poller in (self._description_poller, self._candidate_poller):
            if poller is not None:
                poller.stop()
        for task in list(self._pending_posts):
            task.cancel()

        self._stop_tracks(self.local_tracks)
        self.local_tracks.clear()
        self.remote_tracks.clear()

        try:
            await self.peer.close()
        except Exception:
            logger.warning("Failed to close peer connection", room_id=self.room_id, exc_info=True)

    def _stop_tracks(self, tracks: list[MediaTrack]) -> None:
        for track in tracks:
            try:
                track.stop()
            except Exception:
                logger.warning("Failed to stop local track", room_id=self.room_id, exc_info=True)
