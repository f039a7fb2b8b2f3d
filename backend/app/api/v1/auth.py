from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_current_session, get_session_service
from app.db.models.session import AuthSession
from app.schemas.auth import (
    LogoutResponse,
    NonceRequest,
    NonceResponse,
    RefreshRequest,
    RefreshResponse,
    SessionSummary,
    UserSummary,
    VerifyRequest,
    VerifyResponse,
)
from app.services.session_service import SessionService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/nonce", response_model=NonceResponse)
async def nonce(
    body: NonceRequest,
    service: SessionService = Depends(get_session_service),
) -> NonceResponse:
    record = await service.issue_nonce(body.walletAddress)
    return NonceResponse(nonce=record.nonce, expiresAt=record.expires_at)


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    body: VerifyRequest,
    service: SessionService = Depends(get_session_service),
) -> VerifyResponse:
    result = await service.login_with_wallet(
        wallet_address=body.walletAddress,
        signature=body.signature,
        wallet_type=body.walletType,
    )
    return VerifyResponse(
        accessToken=result.access_token,
        refreshToken=result.refresh_token,
        session=SessionSummary(id=result.session.id, expiresAt=result.session.expires_at),
        user=UserSummary(id=result.user.id, walletAddress=result.wallet.address),
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    body: RefreshRequest,
    service: SessionService = Depends(get_session_service),
) -> RefreshResponse:
    access_token = await service.refresh(body.refreshToken)
    return RefreshResponse(accessToken=access_token)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    session: AuthSession = Depends(get_current_session),
    service: SessionService = Depends(get_session_service),
) -> LogoutResponse:
    await service.revoke(session)
    return LogoutResponse(ok=True)
