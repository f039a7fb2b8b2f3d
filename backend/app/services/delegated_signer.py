from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConfigurationError,
    DecryptionFailed,
    EphemeralKeyNotFound,
    InsufficientScope,
    InvalidScope,
    NoActiveKey,
    SessionExpired,
)
from app.core.logging import get_logger
from app.core.settings import Settings
from app.core.vault import KeyVault
from app.db.models.ephemeral_key import EphemeralKey
from app.db.models.session import AuthSession
from app.db.types import utcnow

logger = get_logger(__name__)

KEY_ALGORITHM = "ed25519"
DEFAULT_SCOPES: tuple[str, ...] = ("room:create", "room:approve")


@dataclass(frozen=True)
class IssuedKey:
    id: UUID
    public_key: str
    expires_at: datetime
    scopes: list[str]


@dataclass(frozen=True)
class SignResult:
    signature: str
    public_key: str
    ephemeral_key_id: UUID


def normalize_scopes(scopes: Iterable[str] | str | None) -> list[str]:
    """Strip, drop empties and dedupe while keeping order.

    Scopes are stored comma-joined, so a tag containing a comma is rejected
    rather than silently split into two grants.
    """
    if scopes is None:
        return []
    if isinstance(scopes, str):
        scopes = [scopes]
    out: list[str] = []
    for raw in scopes:
        if not isinstance(raw, str):
            raise InvalidScope(f"scope must be a string, got {type(raw).__name__}")
        tag = raw.strip()
        if not tag:
            continue
        if "," in tag:
            raise InvalidScope(f"scope {tag!r} contains a comma")
        if tag not in out:
            out.append(tag)
    return out


def verify_signature(public_key_pem: str, payload: bytes, signature: str) -> bool:
    public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(public_key, Ed25519PublicKey):
        return False
    try:
        public_key.verify(base64.b64decode(signature), payload)
    except (InvalidSignature, ValueError):
        return False
    return True


def _public_pem(private_key: Ed25519PrivateKey) -> str:
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )


class DelegatedSigner:
    def __init__(self, db: AsyncSession, settings: Settings, vault: KeyVault | None = None) -> None:
        self.db = db
        self.settings = settings
        self.vault = vault or KeyVault(settings.encryption_key)

    async def issue_ephemeral_key(
        self,
        session: AuthSession,
        requested_scopes: Iterable[str] | None = None,
        ttl_seconds: int | None = None,
    ) -> IssuedKey:
        now = utcnow()
        if not session.is_active(now):
            raise SessionExpired(f"session {session.id} is not active")

        scopes = normalize_scopes(requested_scopes) or list(DEFAULT_SCOPES)
        ttl = ttl_seconds or self.settings.ephemeral_key_ttl_seconds

        private_key = Ed25519PrivateKey.generate()
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        # Encrypt before any write so a missing ENCRYPTION_KEY leaves no row behind.
        blob = self.vault.encrypt(private_pem)

        key = EphemeralKey(
            session_id=session.id,
            public_key=_public_pem(private_key),
            alg=KEY_ALGORITHM,
            scope=",".join(scopes),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        self.db.add(key)

        # Last writer wins if two issuances race on one session.
        session.encrypted_private_key = blob
        session.last_used_at = now
        await self.db.commit()

        logger.info(
            "Ephemeral key issued",
            session_id=str(session.id),
            ephemeral_key_id=str(key.id),
            scope=key.scope,
        )
        return IssuedKey(id=key.id, public_key=key.public_key, expires_at=key.expires_at, scopes=scopes)

    async def current_key(self, session: AuthSession) -> EphemeralKey | None:
        res = await self.db.execute(
            select(EphemeralKey)
            .where(
                EphemeralKey.session_id == session.id,
                EphemeralKey.revoked_at.is_(None),
                EphemeralKey.expires_at > utcnow(),
            )
            .order_by(EphemeralKey.created_at.desc(), EphemeralKey.expires_at.desc())
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def list_active_keys(self, session: AuthSession) -> list[EphemeralKey]:
        res = await self.db.execute(
            select(EphemeralKey)
            .where(
                EphemeralKey.session_id == session.id,
                EphemeralKey.revoked_at.is_(None),
                EphemeralKey.expires_at > utcnow(),
            )
            .order_by(EphemeralKey.created_at.desc())
        )
        return list(res.scalars().all())

    async def auto_sign(
        self,
        session: AuthSession,
        payload: bytes,
        requested_scopes: Iterable[str] | str,
    ) -> SignResult:
        now = utcnow()
        if not session.is_active(now):
            raise SessionExpired(f"session {session.id} is not active")

        requested = normalize_scopes(requested_scopes)
        if not requested:
            raise InvalidScope("at least one scope is required")

        key = await self.current_key(session)
        if key is None:
            raise NoActiveKey(f"session {session.id} has no eligible ephemeral key")

        # Exact subset: every requested tag must have been granted.
        missing = set(requested) - set(key.scopes)
        if missing:
            raise InsufficientScope(f"key {key.id} lacks scope(s) {sorted(missing)}")

        if not session.encrypted_private_key:
            raise NoActiveKey(f"session {session.id} has no stored private key")

        private_key = self._load_private_key(session.encrypted_private_key)
        if _public_pem(private_key) != key.public_key:
            raise DecryptionFailed(f"stored private key does not belong to key {key.id}")

        signature = base64.b64encode(private_key.sign(payload)).decode("ascii")

        session.last_used_at = now
        await self.db.commit()

        logger.info(
            "Payload auto-signed",
            session_id=str(session.id),
            ephemeral_key_id=str(key.id),
            scope=",".join(requested),
        )
        return SignResult(signature=signature, public_key=key.public_key, ephemeral_key_id=key.id)

    def _load_private_key(self, blob: str) -> Ed25519PrivateKey:
        try:
            private_pem = self.vault.decrypt(blob)
        except ConfigurationError as e:
            logger.error("Vault key unavailable for signing", error=e.message)
            raise DecryptionFailed("vault key unavailable") from e
        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise DecryptionFailed("decrypted blob is not a private key") from e
        if not isinstance(private_key, Ed25519PrivateKey):
            raise DecryptionFailed("decrypted key is not ed25519")
        return private_key

    async def revoke_key(self, session: AuthSession, key_id: UUID) -> None:
        res = await self.db.execute(
            select(EphemeralKey).where(EphemeralKey.id == key_id, EphemeralKey.session_id == session.id)
        )
        key = res.scalar_one_or_none()
        if key is None:
            raise EphemeralKeyNotFound(f"key {key_id} not found for session {session.id}")
        if key.revoked_at is not None:
            return

        current = await self.current_key(session)
        key.revoked_at = utcnow()
        if current is not None and current.id == key.id:
            # Only the newest key's private half is stored; older keys cannot
            # take over after it is revoked.
            session.encrypted_private_key = None
        await self.db.commit()
        logger.info("Ephemeral key revoked", session_id=str(session.id), ephemeral_key_id=str(key.id))
