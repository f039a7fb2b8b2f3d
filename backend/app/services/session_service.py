"""Wallet login, session lifecycle and credential issuance.

A session is created once a wallet proves control of a freshly issued,
single-use nonce. It is then reachable through two credentials:

* a short-lived access JWT, verified statelessly by every request;
* a longer-lived refresh JWT, of which only an HMAC is persisted.

Session states are ``active -> expired`` (time) and ``active -> revoked``
(explicit). Both terminal states reject refresh and signing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidCredential, InvalidNonce, InvalidSignature, SessionExpired
from app.core.logging import get_logger
from app.core.security import (
    AccessClaims,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    generate_nonce,
    hash_refresh_token,
    require_secret,
)
from app.core.settings import Settings
from app.db.models.auth_nonce import AuthNonce
from app.db.models.ephemeral_key import EphemeralKey
from app.db.models.refresh_token import RefreshToken
from app.db.models.session import AuthSession, SessionStatus
from app.db.models.user import User
from app.db.models.wallet import Wallet
from app.db.types import utcnow
from app.services.wallet_verifier import RejectingVerifier, WalletSignatureVerifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    session: AuthSession
    user: User
    wallet: Wallet


def parse_session_id(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as e:
        raise InvalidCredential("session id claim is not a UUID") from e


class SessionService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        verifier: WalletSignatureVerifier | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.verifier = verifier or RejectingVerifier()

    # -- nonces ---------------------------------------------------------

    async def issue_nonce(self, wallet_address: str) -> AuthNonce:
        now = utcnow()
        record = AuthNonce(
            wallet_address=wallet_address,
            nonce=generate_nonce(),
            expires_at=now + timedelta(seconds=self.settings.nonce_ttl_seconds),
        )
        self.db.add(record)
        await self.db.commit()
        return record

    async def _latest_nonce(self, wallet_address: str, now: datetime) -> AuthNonce:
        res = await self.db.execute(
            select(AuthNonce)
            .where(
                AuthNonce.wallet_address == wallet_address,
                AuthNonce.consumed_at.is_(None),
                AuthNonce.expires_at > now,
            )
            .order_by(AuthNonce.created_at.desc())
            .limit(1)
        )
        record = res.scalar_one_or_none()
        if record is None:
            raise InvalidNonce(f"no usable nonce for {wallet_address}")
        return record

    async def _consume_nonce(self, record: AuthNonce, now: datetime) -> None:
        # Conditional update: of two concurrent logins presenting the same
        # nonce only one sees rowcount == 1.
        res = await self.db.execute(
            update(AuthNonce)
            .where(AuthNonce.id == record.id, AuthNonce.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvalidNonce(f"nonce {record.id} already consumed")
        record.consumed_at = now

    # -- sessions -------------------------------------------------------

    async def create_session(self, user_id: UUID, wallet_id: UUID) -> AuthSession:
        now = utcnow()
        session = AuthSession(
            user_id=user_id,
            wallet_id=wallet_id,
            status=SessionStatus.active.value,
            created_at=now,
            expires_at=now + timedelta(seconds=self.settings.session_max_age_seconds),
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def login_with_wallet(
        self,
        *,
        wallet_address: str,
        signature: str,
        wallet_type: str = "sui",
    ) -> LoginResult:
        # Fail on a missing secret before touching the nonce.
        require_secret(self.settings.jwt_secret)
        now = utcnow()
        nonce = await self._latest_nonce(wallet_address, now)

        verified = await self.verifier.verify(
            wallet_address=wallet_address,
            message=nonce.nonce,
            signature=signature,
            wallet_type=wallet_type,
        )
        if not verified:
            raise InvalidSignature(f"signature check failed for {wallet_address}")

        await self._consume_nonce(nonce, now)

        res = await self.db.execute(select(User).where(User.primary_wallet_address == wallet_address))
        user = res.scalar_one_or_none()
        if user is None:
            user = User(primary_wallet_address=wallet_address)
            self.db.add(user)
            await self.db.flush()

        res = await self.db.execute(select(Wallet).where(Wallet.address == wallet_address))
        wallet = res.scalar_one_or_none()
        if wallet is None:
            wallet = Wallet(user_id=user.id, address=wallet_address, type=wallet_type)
            self.db.add(wallet)
            await self.db.flush()

        session = await self.create_session(user.id, wallet.id)
        refresh_token = await self.issue_refresh_credential(session.id)
        access_token = self._encode_access(session, wallet)

        # Nonce consumption, session and refresh record commit together.
        await self.db.commit()
        logger.info("Session created", session_id=str(session.id), user_id=str(user.id))
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            session=session,
            user=user,
            wallet=wallet,
        )

    async def get_session(self, session_id: str | UUID) -> AuthSession | None:
        return await self.db.get(AuthSession, parse_session_id(session_id))

    async def get_active_session(self, session_id: str | UUID) -> AuthSession:
        session = await self.get_session(session_id)
        if session is None:
            raise InvalidCredential(f"session {session_id} not found")
        await self.ensure_active(session)
        return session

    async def ensure_active(self, session: AuthSession) -> None:
        now = utcnow()
        if session.is_active(now):
            return
        if session.status == SessionStatus.active.value:
            session.status = SessionStatus.expired.value
            await self.db.commit()
            logger.info("Session expired", session_id=str(session.id))
        raise SessionExpired(f"session {session.id} is {session.status}")

    async def revoke(self, session: AuthSession) -> None:
        if session.status == SessionStatus.revoked.value:
            return
        now = utcnow()
        session.status = SessionStatus.revoked.value
        session.revoked_at = now
        session.encrypted_private_key = None
        await self.db.execute(
            update(EphemeralKey)
            .where(EphemeralKey.session_id == session.id, EphemeralKey.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Session revoked", session_id=str(session.id))

    # -- credentials ----------------------------------------------------

    def _encode_access(
        self,
        session: AuthSession,
        wallet: Wallet,
        *,
        scopes: Iterable[str] | None = None,
        ephemeral_key_id: str | None = None,
    ) -> str:
        return create_access_token(
            subject=str(session.user_id),
            wallet=wallet.address,
            session_id=str(session.id),
            ttl_seconds=self.settings.jwt_access_ttl_seconds,
            secret=self.settings.jwt_secret,
            ephemeral_key_id=ephemeral_key_id,
            scopes=scopes,
        )

    async def issue_access_credential(
        self,
        session: AuthSession,
        *,
        scopes: Iterable[str] | None = None,
        ephemeral_key_id: str | None = None,
    ) -> str:
        wallet = await self.db.get(Wallet, session.wallet_id)
        if wallet is None:
            raise InvalidCredential(f"wallet for session {session.id} not found")
        return self._encode_access(session, wallet, scopes=scopes, ephemeral_key_id=ephemeral_key_id)

    async def issue_refresh_credential(self, session_id: UUID) -> str:
        token = create_refresh_token(
            session_id=str(session_id),
            ttl_seconds=self.settings.jwt_refresh_ttl_seconds,
            secret=self.settings.jwt_secret,
        )
        self.db.add(
            RefreshToken(
                session_id=session_id,
                token_hash=hash_refresh_token(token, self.settings.jwt_secret),
                expires_at=utcnow() + timedelta(seconds=self.settings.jwt_refresh_ttl_seconds),
            )
        )
        await self.db.flush()
        return token

    async def refresh(self, refresh_token: str) -> str:
        token_hash = hash_refresh_token(refresh_token, self.settings.jwt_secret)
        now = utcnow()

        res = await self.db.execute(select(RefreshToken).where(RefreshToken.token_hash == token_hash))
        record = res.scalar_one_or_none()
        if record is None or record.revoked_at is not None or record.expires_at <= now:
            raise InvalidCredential("refresh token not found, revoked or expired")

        session = await self.db.get(AuthSession, record.session_id)
        if session is None:
            raise InvalidCredential(f"refresh token {record.id} has no session")
        await self.ensure_active(session)

        session.last_used_at = now
        # No scope or key id: a refreshed credential never inherits stale grants.
        access_token = await self.issue_access_credential(session)
        await self.db.commit()
        return access_token

    def verify(self, access_token: str) -> AccessClaims:
        return decode_access_token(access_token, self.settings.jwt_secret)
