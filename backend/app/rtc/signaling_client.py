from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx


@dataclass(frozen=True)
class RelayedDescription:
    sdp: str
    timestamp: int


class SignalingClient:
    """HTTP client for the signaling relay.

    ``base_url`` includes the API prefix, e.g. ``http://localhost:3001/api``.
    Reads that the relay answers with 404 return ``None``: a missing offer,
    answer or room is the normal "nothing yet" outcome of a poll.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        if client is None and not base_url:
            raise ValueError("base_url or client is required")
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> "SignalingClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _path(room_id: str, suffix: str = "") -> str:
        path = f"/signaling/{quote(room_id, safe='')}"
        return f"{path}/{suffix}" if suffix else path

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        res = await self._client.post(path, json=payload)
        res.raise_for_status()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any] | None:
        res = await self._client.get(path, params=params)
        if res.status_code == httpx.codes.NOT_FOUND:
            return None
        res.raise_for_status()
        return res.json()

    async def post_offer(self, room_id: str, sdp: str) -> None:
        await self._post(self._path(room_id, "offer"), {"sdp": sdp})

    async def post_answer(self, room_id: str, sdp: str) -> None:
        await self._post(self._path(room_id, "answer"), {"sdp": sdp})

    async def get_offer(self, room_id: str) -> RelayedDescription | None:
        data = await self._get(self._path(room_id, "offer"))
        if data is None:
            return None
        return RelayedDescription(sdp=data["sdp"], timestamp=int(data["timestamp"]))

    async def get_answer(self, room_id: str) -> RelayedDescription | None:
        data = await self._get(self._path(room_id, "answer"))
        if data is None:
            return None
        return RelayedDescription(sdp=data["sdp"], timestamp=int(data["timestamp"]))

    async def post_candidate(self, room_id: str, candidate: Any, from_role: str) -> None:
        await self._post(self._path(room_id, "candidates"), {"candidate": candidate, "from": from_role})

    async def drain_candidates(self, room_id: str, role: str) -> list[Any] | None:
        data = await self._get(self._path(room_id, "candidates"), params={"role": role})
        if data is None:
            return None
        return list(data.get("candidates") or [])

    async def delete_room(self, room_id: str) -> None:
        res = await self._client.delete(self._path(room_id))
        res.raise_for_status()
