from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidCredential
from app.core.security import AccessClaims
from app.core.settings import Settings, get_settings
from app.db.models.session import AuthSession
from app.db.session import get_db
from app.services.delegated_signer import DelegatedSigner
from app.services.session_service import SessionService
from app.services.signaling_store import SignalingStore
from app.services.wallet_verifier import WalletSignatureVerifier, build_wallet_verifier

# auto_error=False: a missing header is a 401 from our own error type, not
# HTTPBearer's default 403.
bearer_scheme = HTTPBearer(auto_error=False)


def get_wallet_verifier(settings: Settings = Depends(get_settings)) -> WalletSignatureVerifier:
    return build_wallet_verifier(settings)


def get_session_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    verifier: WalletSignatureVerifier = Depends(get_wallet_verifier),
) -> SessionService:
    return SessionService(db, settings, verifier)


def get_delegated_signer(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> DelegatedSigner:
    return DelegatedSigner(db, settings)


def get_signaling_store(request: Request) -> SignalingStore:
    return request.app.state.signaling_store


async def get_current_claims(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: SessionService = Depends(get_session_service),
) -> AccessClaims:
    if creds is None or not creds.credentials:
        raise InvalidCredential("no bearer token provided")
    return service.verify(creds.credentials)


async def get_current_session(
    claims: AccessClaims = Depends(get_current_claims),
    service: SessionService = Depends(get_session_service),
) -> AuthSession:
    session = await service.get_session(claims.sid)
    if session is None:
        raise InvalidCredential(f"session {claims.sid} not found")
    return session


async def get_active_session(
    session: AuthSession = Depends(get_current_session),
    service: SessionService = Depends(get_session_service),
) -> AuthSession:
    await service.ensure_active(session)
    return session
