from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.core.errors import ConfigurationError, InvalidCredential
from app.core.security import (
    ALGORITHM,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    hash_refresh_token,
)

SECRET = "unit-secret"


def _access(**overrides) -> str:
    kwargs = {
        "subject": "user-1",
        "wallet": "0xAA",
        "session_id": "sess-1",
        "ttl_seconds": 60,
        "secret": SECRET,
    }
    kwargs.update(overrides)
    return create_access_token(**kwargs)


def test_access_token_round_trip_carries_claims() -> None:
    token = _access(ephemeral_key_id="key-1", scopes=["room:create", "room:approve"])

    claims = decode_access_token(token, SECRET)

    assert claims.sub == "user-1"
    assert claims.wal == "0xAA"
    assert claims.sid == "sess-1"
    assert claims.ekey == "key-1"
    assert claims.scope == "room:create,room:approve"
    assert claims.scopes == frozenset({"room:create", "room:approve"})
    assert claims.exp > claims.iat


def test_access_token_without_scope_has_no_scope_claim() -> None:
    token = _access()

    payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM])

    assert "scope" not in payload
    assert "ekey" not in payload


def test_bad_signature_expired_and_garbage_are_uniformly_rejected() -> None:
    expired = jwt.encode(
        {
            "sub": "u",
            "wal": "w",
            "sid": "s",
            "typ": "access",
            "iat": datetime.now(timezone.utc) - timedelta(minutes=10),
            "exp": datetime.now(timezone.utc) - timedelta(minutes=5),
        },
        SECRET,
        algorithm=ALGORITHM,
    )
    for token in (_access(secret="other-secret"), expired, "not.a.jwt", ""):
        with pytest.raises(InvalidCredential) as exc:
            decode_access_token(token, SECRET)
        assert exc.value.public_message == "Invalid or expired credential"


def test_refresh_token_is_not_accepted_as_access() -> None:
    refresh = create_refresh_token(session_id="sess-1", ttl_seconds=60, secret=SECRET)

    with pytest.raises(InvalidCredential):
        decode_access_token(refresh, SECRET)


def test_refresh_tokens_minted_together_differ() -> None:
    first = create_refresh_token(session_id="sess-1", ttl_seconds=60, secret=SECRET)
    second = create_refresh_token(session_id="sess-1", ttl_seconds=60, secret=SECRET)

    assert first != second
    assert hash_refresh_token(first, SECRET) != hash_refresh_token(second, SECRET)


def test_refresh_hash_is_keyed_hex() -> None:
    token = create_refresh_token(session_id="sess-1", ttl_seconds=60, secret=SECRET)

    digest = hash_refresh_token(token, SECRET)

    assert len(digest) == 64
    assert digest != hash_refresh_token(token, "another-secret")
    assert token not in digest


def test_missing_secret_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        _access(secret=None)
    with pytest.raises(ConfigurationError):
        decode_access_token("x", None)
