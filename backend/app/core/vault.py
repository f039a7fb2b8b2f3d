"""AES-256-GCM encryption of private-key material at rest.

Blob format::

    hex(iv) ":" hex(tag) ":" hex(ciphertext)

*iv* is 16 random bytes per encryption and *tag* is the 16-byte GCM
authentication tag, which ``AESGCM`` appends to the ciphertext and this
module splits out. Any modification of the blob makes :meth:`KeyVault.decrypt`
raise instead of returning altered plaintext.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.errors import ConfigurationError, DecryptionFailed, MalformedBlob

_IV_SIZE = 16
_TAG_SIZE = 16
_KEY_SIZE = 32
_SEPARATOR = ":"


def load_key(hex_key: str | None) -> bytes:
    """Decode the configured hex key, keeping the first 32 bytes."""
    if not hex_key:
        raise ConfigurationError("ENCRYPTION_KEY not configured")
    try:
        raw = bytes.fromhex(hex_key.strip())
    except ValueError as e:
        raise ConfigurationError("ENCRYPTION_KEY is not valid hex") from e
    if len(raw) < _KEY_SIZE:
        raise ConfigurationError("ENCRYPTION_KEY must be at least 32 bytes")
    return raw[:_KEY_SIZE]


def generate_key_hex() -> str:
    return AESGCM.generate_key(bit_length=256).hex()


class KeyVault:
    def __init__(self, hex_key: str | None) -> None:
        # Key errors surface on use, so a vault can be built from settings
        # that do not (yet) carry a key.
        self._hex_key = hex_key

    def _cipher(self) -> AESGCM:
        return AESGCM(load_key(self._hex_key))

    def encrypt(self, plaintext: bytes) -> str:
        # An empty ciphertext field would be indistinguishable from a truncated blob.
        if not plaintext:
            raise ValueError("plaintext must not be empty")
        cipher = self._cipher()
        iv = os.urandom(_IV_SIZE)
        sealed = cipher.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-_TAG_SIZE], sealed[-_TAG_SIZE:]
        return _SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, blob: str) -> bytes:
        iv, tag, ciphertext = _split_blob(blob)
        cipher = self._cipher()
        try:
            return cipher.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionFailed("authentication tag mismatch") from e


def _split_blob(blob: str) -> tuple[bytes, bytes, bytes]:
    if not isinstance(blob, str):
        raise MalformedBlob("encrypted blob must be a string")
    parts = blob.split(_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise MalformedBlob("encrypted blob must have three non-empty fields")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as e:
        raise MalformedBlob("encrypted blob fields must be hex") from e
    if len(iv) != _IV_SIZE or len(tag) != _TAG_SIZE:
        raise MalformedBlob("encrypted blob has a truncated iv or tag")
    return iv, tag, ciphertext
