from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class EphemeralKeyRequest(BaseModel):
    scope: list[str] | None = None


class EphemeralKeyResponse(BaseModel):
    ephemeralKeyId: UUID
    publicKey: str
    expiresAt: datetime
    scope: list[str]
    # Access credential bound to this key and its scope.
    accessToken: str


class AutoSignRequest(BaseModel):
    # Opaque to the signer: strings are signed as UTF-8, anything else as canonical JSON.
    txPayload: Any
    scope: str | list[str]


class AutoSignResponse(BaseModel):
    signature: str
    publicKey: str
    ephemeralKeyId: UUID


class SessionInfo(BaseModel):
    id: UUID
    status: str
    expiresAt: datetime
    lastUsedAt: datetime | None


class SessionUser(BaseModel):
    id: UUID
    walletAddress: str


class EphemeralKeyInfo(BaseModel):
    id: UUID
    scope: list[str]
    expiresAt: datetime


class SessionMeResponse(BaseModel):
    session: SessionInfo
    user: SessionUser
    ephemeralKeys: list[EphemeralKeyInfo]


class OkResponse(BaseModel):
    ok: bool = True
