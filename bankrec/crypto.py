"""AES-256-GCM primitives shared by the store, the key manager and backups.

Field values are stored as three colon-joined hex components::

    hex(iv[16]) ":" hex(tag[16]) ":" hex(ciphertext)

``AESGCM`` appends the 16-byte tag to the ciphertext; the helpers below split
and rejoin it so the on-disk layout keeps the tag in its own component.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .logging_setup import get_logger

IV_SIZE = 16
TAG_SIZE = 16
KEY_SIZE = 32

# scrypt cost parameters (N=2**14, r=8, p=1)
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1

FIELD_KEY_SALT = b"bankrec-field-encryption"

_logger = get_logger("bankrec.crypto")


def derive_key(secret: str | bytes, salt: bytes) -> bytes:
    """Derive a 32-byte key from ``secret`` with scrypt."""

    material = secret.encode("utf-8") if isinstance(secret, str) else secret
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(material)


def seal(key: bytes, plaintext: bytes) -> tuple[bytes, bytes, bytes]:
    """Encrypt under a fresh random IV; return ``(iv, tag, ciphertext)``."""

    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    return iv, sealed[-TAG_SIZE:], sealed[:-TAG_SIZE]


def open_sealed(key: bytes, iv: bytes, tag: bytes, ciphertext: bytes) -> bytes:
    """Decrypt and verify; raises ``cryptography.exceptions.InvalidTag`` on failure."""

    if len(tag) != TAG_SIZE:
        raise InvalidTag()
    return AESGCM(key).decrypt(iv, ciphertext + tag, None)


def encode_hex_triplet(key: bytes, plaintext: str) -> str:
    iv, tag, ct = seal(key, plaintext.encode("utf-8"))
    return f"{iv.hex()}:{tag.hex()}:{ct.hex()}"


def decode_hex_triplet(key: bytes, value: str) -> str:
    """Inverse of :func:`encode_hex_triplet`.

    Raises ``ValueError`` when ``value`` is not three hex components and
    ``InvalidTag`` when authentication fails.
    """

    parts = value.split(":")
    if len(parts) != 3:
        raise ValueError("expected iv:tag:ciphertext")
    iv, tag, ct = (bytes.fromhex(p) for p in parts)
    if not iv:
        raise ValueError("empty initialization vector")
    return open_sealed(key, iv, tag, ct).decode("utf-8")


class FieldCipher:
    """Transparent per-field encryption for sensitive store columns.

    The key is derived once, at construction, from the store secret and a fixed
    application salt.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError("field key must be 32 bytes")
        self._key = key

    @classmethod
    def from_secret(cls, secret: str) -> FieldCipher:
        return cls(derive_key(secret, FIELD_KEY_SALT))

    def encrypt(self, text: str | None) -> str | None:
        if not text:
            return None
        return encode_hex_triplet(self._key, str(text))

    def decrypt(self, value: str | None) -> str | None:
        """Return the plaintext, or ``None`` when authentication fails.

        Values that do not split into exactly three components are legacy
        plaintext and come back unchanged.
        """

        if not value:
            return None
        if len(value.split(":")) != 3:
            return value
        try:
            return decode_hex_triplet(self._key, value)
        except (InvalidTag, ValueError, UnicodeDecodeError) as exc:
            _logger.warning("field decryption failed: %s", type(exc).__name__)
            return None


__all__ = [
    "FIELD_KEY_SALT",
    "FieldCipher",
    "IV_SIZE",
    "KEY_SIZE",
    "TAG_SIZE",
    "decode_hex_triplet",
    "derive_key",
    "encode_hex_triplet",
    "open_sealed",
    "seal",
]
