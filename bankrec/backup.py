"""Backup codec: the whole store as one password-protected file.

File layout (binary)::

    salt[16] || iv[16] || tag[16] || ciphertext[...]

The key is scrypt(password, salt); the cipher is AES-256-GCM over the bytes of
a point-in-time copy of the SQLite file. The export password is chosen by the
user and is independent of the store secret.

Failures to authenticate are reported with one generic message whether the
password is wrong or the file is damaged.
"""

from __future__ import annotations

import os
import sqlite3
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from sqlalchemy.exc import SQLAlchemyError

from .crypto import IV_SIZE, TAG_SIZE, derive_key, open_sealed, seal
from .errors import (
    BackupAuthError,
    ExportFailed,
    NotFound,
    RateLimited,
    ResourceLimit,
    ValidationError,
)
from .logging_setup import get_logger
from .validation import RateLimiter, validate_file_path

if TYPE_CHECKING:
    from .store import EncryptedStore

SALT_SIZE = 16
HEADER_SIZE = SALT_SIZE + IV_SIZE + TAG_SIZE
MAX_IMPORT_BYTES = 100 * 1024 * 1024
MIN_PASSWORD_LENGTH = 8
EXPORT_MAX_ATTEMPTS = 5
EXPORT_WINDOW_SECONDS = 300.0
SQLITE_MAGIC = b"SQLite format 3\x00"

_logger = get_logger("bankrec.backup")


def encrypt_backup(data: bytes, password: str) -> bytes:
    salt = os.urandom(SALT_SIZE)
    key = derive_key(password, salt)
    iv, tag, ciphertext = seal(key, data)
    return salt + iv + tag + ciphertext


def decrypt_backup(blob: bytes, password: str) -> bytes:
    """Inverse of :func:`encrypt_backup`; raises ``BackupAuthError`` on any failure."""

    if len(blob) < HEADER_SIZE:
        raise BackupAuthError()
    salt = blob[:SALT_SIZE]
    iv = blob[SALT_SIZE : SALT_SIZE + IV_SIZE]
    tag = blob[SALT_SIZE + IV_SIZE : HEADER_SIZE]
    ciphertext = blob[HEADER_SIZE:]
    try:
        return open_sealed(derive_key(password, salt), iv, tag, ciphertext)
    except (InvalidTag, ValueError) as exc:
        _logger.warning("backup authentication failed")
        raise BackupAuthError() from exc


def looks_like_sqlite(data: bytes) -> bool:
    return data.startswith(SQLITE_MAGIC)


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


class BackupCodec:
    """Export/import of store files, with a per-process export rate limit."""

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self.rate_limiter = rate_limiter or RateLimiter(
            EXPORT_MAX_ATTEMPTS, EXPORT_WINDOW_SECONDS
        )

    def export_store(
        self,
        store: EncryptedStore,
        dest: str | os.PathLike[str],
        password: str,
        *,
        workdir: Path,
    ) -> Path:
        """Encrypt a consistent copy of ``store`` into ``dest``.

        The temporary plaintext copy lives in ``workdir`` and is removed
        whether or not the export succeeds.
        """

        if not self.rate_limiter.check("export"):
            raise RateLimited("Too many export requests. Please wait and try again.")
        target = Path(validate_file_path(dest))
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

        workdir.mkdir(parents=True, exist_ok=True)
        snapshot = workdir / f"temp-export-{uuid.uuid4().hex}.db"
        try:
            store.backup_to(snapshot)
            payload = encrypt_backup(snapshot.read_bytes(), password)
            _write_atomic(target, payload)
        except (OSError, sqlite3.Error, SQLAlchemyError) as exc:
            _logger.error("export failed: %s", exc)
            raise ExportFailed() from exc
        finally:
            snapshot.unlink(missing_ok=True)
        _logger.info("exported store (%d bytes)", len(payload))
        return target

    def read_backup(self, path: str | os.PathLike[str], password: str) -> bytes:
        """Return the decrypted store bytes of the backup at ``path``.

        The size ceiling is checked with ``stat`` before anything is read.
        """

        source = Path(validate_file_path(path))
        if not password or not isinstance(password, str):
            raise ValidationError("Password is required")
        try:
            size = source.stat().st_size
        except FileNotFoundError as exc:
            raise NotFound("Import file not found") from exc
        if size > MAX_IMPORT_BYTES:
            raise ResourceLimit("Import file is too large (max 100MB)")
        data = decrypt_backup(source.read_bytes(), password)
        if not looks_like_sqlite(data):
            _logger.warning("backup decrypted but does not contain a store file")
            raise BackupAuthError()
        return data


__all__ = [
    "BackupCodec",
    "EXPORT_MAX_ATTEMPTS",
    "EXPORT_WINDOW_SECONDS",
    "HEADER_SIZE",
    "MAX_IMPORT_BYTES",
    "MIN_PASSWORD_LENGTH",
    "decrypt_backup",
    "encrypt_backup",
    "looks_like_sqlite",
]
