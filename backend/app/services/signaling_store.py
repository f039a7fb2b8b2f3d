"""Per-room mailbox for offer/answer/candidate exchange.

Each room holds at most one offer, one answer and two candidate queues, one
per sending role. Candidates are opaque JSON values and are never inspected.
Reading a candidate queue drains it, which is the only thing preventing a
candidate from being delivered twice to the same role, so exactly one poller
per (room, role) is assumed.

Rooms are created on first write and evicted after sitting idle for the
configured TTL.
"""

from __future__ import annotations

import enum
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from app.core.errors import SignalNotFound
from app.core.logging import get_logger

logger = get_logger(__name__)

Candidate = Any


class Role(str, enum.Enum):
    host = "host"
    guest = "guest"

    @property
    def peer(self) -> "Role":
        return Role.guest if self is Role.host else Role.host


class RoomState(str, enum.Enum):
    empty = "empty"
    offer_posted = "offer_posted"
    answer_posted = "answer_posted"


@dataclass(frozen=True)
class SignalMessage:
    sdp: str
    timestamp: int  # ms since epoch


@dataclass
class SignalingRoom:
    room_id: str
    created_at: float
    touched_at: float
    state: RoomState = RoomState.empty
    offer: SignalMessage | None = None
    answer: SignalMessage | None = None
    host_candidates: list[Candidate] = field(default_factory=list)
    guest_candidates: list[Candidate] = field(default_factory=list)
    # Writes that replaced an already-present offer/answer.
    overwrites: int = 0

    def queue_from(self, role: Role) -> list[Candidate]:
        return self.host_candidates if role is Role.host else self.guest_candidates


@dataclass(frozen=True)
class RoomStatus:
    room_id: str
    state: RoomState
    has_offer: bool
    has_answer: bool
    host_candidates: int
    guest_candidates: int
    overwrites: int


class SignalingStore(ABC):
    @abstractmethod
    async def post_offer(self, room_id: str, sdp: str) -> SignalMessage: ...

    @abstractmethod
    async def get_offer(self, room_id: str) -> SignalMessage: ...

    @abstractmethod
    async def post_answer(self, room_id: str, sdp: str) -> SignalMessage: ...

    @abstractmethod
    async def get_answer(self, room_id: str) -> SignalMessage: ...

    @abstractmethod
    async def post_candidate(self, room_id: str, candidate: Candidate, from_role: Role) -> None: ...

    @abstractmethod
    async def drain_candidates(self, room_id: str, for_role: Role) -> list[Candidate]: ...

    @abstractmethod
    async def room_status(self, room_id: str) -> RoomStatus: ...

    @abstractmethod
    async def delete_room(self, room_id: str) -> bool: ...

    @abstractmethod
    async def sweep(self) -> int:
        """Evict idle rooms; return how many were dropped."""


class InMemorySignalingStore(SignalingStore):
    """Process-local store.

    Every operation runs without awaiting, so read-and-clear in
    :meth:`drain_candidates` is atomic with respect to the event loop.
    """

    def __init__(
        self,
        *,
        room_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._rooms: dict[str, SignalingRoom] = {}
        self._ttl = float(room_ttl_seconds)
        self._clock = clock
        self._wall_clock = wall_clock

    def __len__(self) -> int:
        return len(self._rooms)

    def _timestamp(self) -> int:
        return int(self._wall_clock() * 1000)

    def _is_stale(self, room: SignalingRoom, now: float) -> bool:
        return now - room.touched_at >= self._ttl

    def _lookup(self, room_id: str) -> SignalingRoom | None:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        now = self._clock()
        if self._is_stale(room, now):
            del self._rooms[room_id]
            logger.info("Signaling room evicted", room_id=room_id)
            return None
        room.touched_at = now
        return room

    def _ensure_room(self, room_id: str) -> SignalingRoom:
        room = self._lookup(room_id)
        if room is None:
            now = self._clock()
            room = SignalingRoom(room_id=room_id, created_at=now, touched_at=now)
            self._rooms[room_id] = room
            logger.debug("Signaling room created", room_id=room_id)
        return room

    async def post_offer(self, room_id: str, sdp: str) -> SignalMessage:
        room = self._ensure_room(room_id)
        if room.offer is not None:
            room.overwrites += 1
            logger.info("Offer replaced", room_id=room_id, overwrites=room.overwrites)
            # Guest candidates belong to the answer to the replaced offer. Host
            # candidates are kept: the offerer posts them concurrently with the
            # offer, so the new round's may already be queued.
            room.guest_candidates.clear()
        if room.answer is not None:
            # A fresh offer starts a new negotiation; the old answer no longer applies.
            logger.info("Stale answer dropped on re-offer", room_id=room_id)
            room.answer = None
        room.offer = SignalMessage(sdp=sdp, timestamp=self._timestamp())
        room.state = RoomState.offer_posted
        return room.offer

    async def post_answer(self, room_id: str, sdp: str) -> SignalMessage:
        room = self._ensure_room(room_id)
        if room.state is RoomState.empty:
            logger.warning("Answer posted before any offer", room_id=room_id)
        if room.answer is not None:
            room.overwrites += 1
            logger.warning("Answer replaced", room_id=room_id, overwrites=room.overwrites)
        room.answer = SignalMessage(sdp=sdp, timestamp=self._timestamp())
        room.state = RoomState.answer_posted
        return room.answer

    async def get_offer(self, room_id: str) -> SignalMessage:
        room = self._lookup(room_id)
        if room is None or room.offer is None:
            raise SignalNotFound("No offer")
        return room.offer

    async def get_answer(self, room_id: str) -> SignalMessage:
        room = self._lookup(room_id)
        if room is None or room.answer is None:
            raise SignalNotFound("No answer")
        return room.answer

    async def post_candidate(self, room_id: str, candidate: Candidate, from_role: Role) -> None:
        room = self._ensure_room(room_id)
        room.queue_from(Role(from_role)).append(candidate)

    async def drain_candidates(self, room_id: str, for_role: Role) -> list[Candidate]:
        room = self._lookup(room_id)
        if room is None:
            raise SignalNotFound("No candidates or role not provided")
        source = Role(for_role).peer
        out = list(room.queue_from(source))
        room.queue_from(source).clear()
        return out

    async def room_status(self, room_id: str) -> RoomStatus:
        room = self._lookup(room_id)
        if room is None:
            raise SignalNotFound("No such room")
        return RoomStatus(
            room_id=room.room_id,
            state=room.state,
            has_offer=room.offer is not None,
            has_answer=room.answer is not None,
            host_candidates=len(room.host_candidates),
            guest_candidates=len(room.guest_candidates),
            overwrites=room.overwrites,
        )

    async def delete_room(self, room_id: str) -> bool:
        return self._rooms.pop(room_id, None) is not None

    async def sweep(self) -> int:
        now = self._clock()
        stale = [room_id for room_id, room in self._rooms.items() if self._is_stale(room, now)]
        for room_id in stale:
            del self._rooms[room_id]
        if stale:
            logger.info("Signaling rooms evicted", count=len(stale))
        return len(stale)
