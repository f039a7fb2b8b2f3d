from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class NonceRequest(BaseModel):
    walletAddress: str = Field(min_length=1, max_length=128)

    @field_validator("walletAddress")
    @classmethod
    def _normalize_address(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Wallet address is required")
        return v


class NonceResponse(BaseModel):
    nonce: str
    expiresAt: datetime


class VerifyRequest(BaseModel):
    walletAddress: str = Field(min_length=1, max_length=128)
    signature: str = Field(min_length=1)
    walletType: str = Field(default="sui", min_length=1, max_length=32)

    @field_validator("walletAddress")
    @classmethod
    def _normalize_address(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Wallet address is required")
        return v


class SessionSummary(BaseModel):
    id: UUID
    expiresAt: datetime


class UserSummary(BaseModel):
    id: UUID
    walletAddress: str


class VerifyResponse(BaseModel):
    accessToken: str
    refreshToken: str
    session: SessionSummary
    user: UserSummary


class RefreshRequest(BaseModel):
    refreshToken: str = Field(min_length=1)


class RefreshResponse(BaseModel):
    accessToken: str


class LogoutResponse(BaseModel):
    ok: bool = True
