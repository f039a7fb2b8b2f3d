from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import secrets
from typing import Any, Iterable
from uuid import uuid4

import jwt
from jwt import InvalidTokenError

from app.core.errors import ConfigurationError, InvalidCredential

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class AccessClaims:
    sub: str
    wal: str
    sid: str
    iat: int
    exp: int
    ekey: str | None = None
    scope: str | None = None

    @property
    def scopes(self) -> frozenset[str]:
        return split_scope(self.scope)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessClaims":
        return cls(
            sub=str(payload["sub"]),
            wal=str(payload["wal"]),
            sid=str(payload["sid"]),
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            ekey=payload.get("ekey"),
            scope=payload.get("scope"),
        )


def join_scope(scopes: Iterable[str] | None) -> str | None:
    if not scopes:
        return None
    joined = ",".join(scopes)
    return joined or None


def split_scope(scope: str | None) -> frozenset[str]:
    if not scope:
        return frozenset()
    return frozenset(s for s in scope.split(",") if s)


def require_secret(secret: str | None) -> str:
    if not secret:
        raise ConfigurationError("JWT_SECRET is not configured")
    return secret


def create_access_token(
    *,
    subject: str,
    wallet: str,
    session_id: str,
    ttl_seconds: int,
    secret: str | None,
    ephemeral_key_id: str | None = None,
    scopes: Iterable[str] | None = None,
) -> str:
    key = require_secret(secret)
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=ttl_seconds)
    payload: dict[str, Any] = {
        "sub": subject,
        "wal": wallet,
        "sid": session_id,
        "typ": ACCESS_TOKEN_TYPE,
        "exp": exp,
        "iat": now,
    }
    if ephemeral_key_id:
        payload["ekey"] = ephemeral_key_id
    scope = join_scope(scopes)
    if scope:
        payload["scope"] = scope
    return jwt.encode(payload, key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str | None) -> AccessClaims:
    key = require_secret(secret)
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "iat", "sub", "sid", "wal"]},
        )
    except InvalidTokenError as e:
        raise InvalidCredential(f"access token rejected: {e}") from e

    # A refresh token is signed with the same secret; never accept it as access.
    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        raise InvalidCredential("access token rejected: wrong token type")
    try:
        return AccessClaims.from_payload(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidCredential(f"access token rejected: bad claims ({e})") from e


def create_refresh_token(*, session_id: str, ttl_seconds: int, secret: str | None) -> str:
    key = require_secret(secret)
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sid": session_id,
        "typ": REFRESH_TOKEN_TYPE,
        # Two tokens minted for one session within the same second must differ.
        "jti": uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, key, algorithm=ALGORITHM)


def hash_refresh_token(token: str, secret: str | None) -> str:
    # Store only a keyed hash so DB leaks can't be replayed.
    key = require_secret(secret)
    return hmac.new(
        key=key.encode("utf-8"),
        msg=token.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def generate_nonce() -> str:
    return secrets.token_hex(32)
