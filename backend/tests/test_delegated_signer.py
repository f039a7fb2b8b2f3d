from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.errors import (
    ConfigurationError,
    DecryptionFailed,
    EphemeralKeyNotFound,
    InsufficientScope,
    InvalidScope,
    MalformedBlob,
    NoActiveKey,
    SessionExpired,
)
from app.db.models.ephemeral_key import EphemeralKey
from app.db.types import utcnow
from app.services.delegated_signer import DEFAULT_SCOPES, DelegatedSigner, normalize_scopes, verify_signature
from app.services.session_service import SessionService
from app.services.wallet_verifier import UnverifiedWalletVerifier


async def _session(db, settings):
    service = SessionService(db, settings, UnverifiedWalletVerifier())
    await service.issue_nonce("0xAA")
    result = await service.login_with_wallet(wallet_address="0xAA", signature="sig")
    return service, result.session


def test_normalize_scopes() -> None:
    assert normalize_scopes(None) == []
    assert normalize_scopes("room:create") == ["room:create"]
    assert normalize_scopes([" a ", "b", "a", ""]) == ["a", "b"]
    with pytest.raises(InvalidScope):
        normalize_scopes(["a,b"])
    with pytest.raises(InvalidScope):
        normalize_scopes([1])


@pytest.mark.asyncio
async def test_issue_uses_default_scope_and_stores_only_ciphertext(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)

    issued = await signer.issue_ephemeral_key(session)

    assert issued.scopes == list(DEFAULT_SCOPES)
    assert issued.public_key.startswith("-----BEGIN PUBLIC KEY-----")
    assert session.encrypted_private_key is not None
    assert "PRIVATE KEY" not in session.encrypted_private_key
    assert len(session.encrypted_private_key.split(":")) == 3

    expected = utcnow() + timedelta(seconds=settings.ephemeral_key_ttl_seconds)
    assert abs((issued.expires_at - expected).total_seconds()) < 5


@pytest.mark.asyncio
async def test_auto_sign_produces_verifiable_signature(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    issued = await signer.issue_ephemeral_key(session, ["a", "b"])

    result = await signer.auto_sign(session, b"tx-bytes", ["a"])

    assert result.ephemeral_key_id == issued.id
    assert result.public_key == issued.public_key
    assert verify_signature(result.public_key, b"tx-bytes", result.signature)
    assert not verify_signature(result.public_key, b"other-bytes", result.signature)


@pytest.mark.asyncio
async def test_scope_check_is_exact_subset(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    await signer.issue_ephemeral_key(session, ["a", "b"])

    await signer.auto_sign(session, b"p", ["a"])
    await signer.auto_sign(session, b"p", ["a", "b"])
    with pytest.raises(InsufficientScope):
        await signer.auto_sign(session, b"p", ["a", "c"])


@pytest.mark.asyncio
async def test_empty_requested_scope_is_rejected(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    await signer.issue_ephemeral_key(session)

    with pytest.raises(InvalidScope):
        await signer.auto_sign(session, b"p", [])


@pytest.mark.asyncio
async def test_no_key_means_no_active_key(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)

    with pytest.raises(NoActiveKey):
        await signer.auto_sign(session, b"p", ["room:create"])


@pytest.mark.asyncio
async def test_expired_key_is_not_eligible(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    issued = await signer.issue_ephemeral_key(session)

    key = await db.get(EphemeralKey, issued.id)
    key.expires_at = utcnow() - timedelta(seconds=1)
    await db.commit()

    with pytest.raises(NoActiveKey):
        await signer.auto_sign(session, b"p", ["room:create"])


@pytest.mark.asyncio
async def test_newest_key_is_authoritative(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    await signer.issue_ephemeral_key(session, ["a"])
    newest = await signer.issue_ephemeral_key(session, ["b"])

    result = await signer.auto_sign(session, b"p", ["b"])
    assert result.ephemeral_key_id == newest.id
    with pytest.raises(InsufficientScope):
        await signer.auto_sign(session, b"p", ["a"])

    assert len(await signer.list_active_keys(session)) == 2


@pytest.mark.asyncio
async def test_tampered_blob_fails_closed(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    await signer.issue_ephemeral_key(session)

    iv, tag, ciphertext = session.encrypted_private_key.split(":")
    raw = bytearray(bytes.fromhex(ciphertext))
    raw[0] ^= 0xFF
    session.encrypted_private_key = ":".join((iv, tag, raw.hex()))
    with pytest.raises(DecryptionFailed):
        await signer.auto_sign(session, b"p", ["room:create"])

    session.encrypted_private_key = "garbage"
    with pytest.raises(DecryptionFailed) as exc_info:
        await signer.auto_sign(session, b"p", ["room:create"])
    assert isinstance(exc_info.value, MalformedBlob)


@pytest.mark.asyncio
async def test_sign_without_vault_key_is_decryption_failure(db, settings) -> None:
    _, session = await _session(db, settings)
    await DelegatedSigner(db, settings).issue_ephemeral_key(session)
    signer = DelegatedSigner(db, settings.model_copy(update={"encryption_key": None}))

    with pytest.raises(DecryptionFailed) as exc_info:
        await signer.auto_sign(session, b"p", ["room:create"])
    assert not isinstance(exc_info.value, ConfigurationError)


@pytest.mark.asyncio
async def test_missing_encryption_key_is_configuration_error(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings.model_copy(update={"encryption_key": None}))

    with pytest.raises(ConfigurationError):
        await signer.issue_ephemeral_key(session)
    assert await signer.list_active_keys(session) == []


@pytest.mark.asyncio
async def test_revoke_current_key_clears_blob(db, settings) -> None:
    _, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    issued = await signer.issue_ephemeral_key(session)

    await signer.revoke_key(session, issued.id)

    assert session.encrypted_private_key is None
    with pytest.raises(NoActiveKey):
        await signer.auto_sign(session, b"p", ["room:create"])
    with pytest.raises(EphemeralKeyNotFound):
        await signer.revoke_key(session, session.id)


@pytest.mark.asyncio
async def test_terminal_session_cannot_issue_or_sign(db, settings) -> None:
    service, session = await _session(db, settings)
    signer = DelegatedSigner(db, settings)
    await signer.issue_ephemeral_key(session)

    await service.revoke(session)

    with pytest.raises(SessionExpired):
        await signer.issue_ephemeral_key(session)
    with pytest.raises(SessionExpired):
        await signer.auto_sign(session, b"p", ["room:create"])
