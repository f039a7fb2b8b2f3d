from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import (
    get_active_session,
    get_current_session,
    get_delegated_signer,
    get_session_service,
)
from app.db.models.session import AuthSession
from app.db.models.user import User
from app.db.models.wallet import Wallet
from app.schemas.sessions import (
    AutoSignRequest,
    AutoSignResponse,
    EphemeralKeyInfo,
    EphemeralKeyRequest,
    EphemeralKeyResponse,
    OkResponse,
    SessionInfo,
    SessionMeResponse,
    SessionUser,
)
from app.services.delegated_signer import DelegatedSigner
from app.services.session_service import SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _payload_bytes(tx_payload: Any) -> bytes:
    if isinstance(tx_payload, str):
        return tx_payload.encode("utf-8")
    return json.dumps(tx_payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


@router.post("/ephemeral-key", response_model=EphemeralKeyResponse)
async def create_ephemeral_key(
    body: EphemeralKeyRequest | None = None,
    session: AuthSession = Depends(get_active_session),
    signer: DelegatedSigner = Depends(get_delegated_signer),
    service: SessionService = Depends(get_session_service),
) -> EphemeralKeyResponse:
    requested = body.scope if body is not None else None
    issued = await signer.issue_ephemeral_key(session, requested)
    access_token = await service.issue_access_credential(
        session,
        scopes=issued.scopes,
        ephemeral_key_id=str(issued.id),
    )
    return EphemeralKeyResponse(
        ephemeralKeyId=issued.id,
        publicKey=issued.public_key,
        expiresAt=issued.expires_at,
        scope=issued.scopes,
        accessToken=access_token,
    )


@router.delete("/ephemeral-key/{key_id}", response_model=OkResponse)
async def revoke_ephemeral_key(
    key_id: UUID,
    session: AuthSession = Depends(get_current_session),
    signer: DelegatedSigner = Depends(get_delegated_signer),
) -> OkResponse:
    await signer.revoke_key(session, key_id)
    return OkResponse(ok=True)


@router.post("/auto-sign", response_model=AutoSignResponse)
async def auto_sign(
    body: AutoSignRequest,
    session: AuthSession = Depends(get_active_session),
    signer: DelegatedSigner = Depends(get_delegated_signer),
) -> AutoSignResponse:
    if not body.txPayload or not body.scope:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Transaction payload and scope are required",
        )

    result = await signer.auto_sign(session, _payload_bytes(body.txPayload), body.scope)
    return AutoSignResponse(
        signature=result.signature,
        publicKey=result.public_key,
        ephemeralKeyId=result.ephemeral_key_id,
    )


@router.get("/me", response_model=SessionMeResponse)
async def me(
    session: AuthSession = Depends(get_current_session),
    signer: DelegatedSigner = Depends(get_delegated_signer),
    service: SessionService = Depends(get_session_service),
) -> SessionMeResponse:
    user = await service.db.get(User, session.user_id)
    wallet = await service.db.get(Wallet, session.wallet_id)
    keys = await signer.list_active_keys(session)
    return SessionMeResponse(
        session=SessionInfo(
            id=session.id,
            status=session.status,
            expiresAt=session.expires_at,
            lastUsedAt=session.last_used_at,
        ),
        user=SessionUser(
            id=user.id if user is not None else session.user_id,
            walletAddress=wallet.address if wallet is not None else "",
        ),
        ephemeralKeys=[
            EphemeralKeyInfo(id=k.id, scope=k.scopes, expiresAt=k.expires_at) for k in keys
        ],
    )
