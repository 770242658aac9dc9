"""Secret Manager: generate, persist and retrieve the store secret.

The secret is 32 random bytes, base64-encoded. It is kept outside the
database by an ordered chain of backends:

1. ``SecureStoreBackend`` wraps an OS keychain-like capability (anything with
   ``set``/``get``/``delete`` taking ``(service, account)``). Every failure of
   the capability is logged and treated as "unavailable".
2. ``EncryptedFileBackend`` writes ``hex(iv):hex(tag):hex(ct)`` to a file only
   the owning user can read. The file key is derived from stable machine
   attributes (platform, architecture, home directory, app-data directory).
   The hostname is deliberately left out: it can change at runtime and a
   changed derivation key makes the stored secret unrecoverable.

File-backend write failures (disk full, permission denied) propagate to the
caller. Retrieval failures surface as distinct ``SecretError`` subclasses.
"""

from __future__ import annotations

import base64
import hashlib
import os
import platform
import secrets
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Literal, Protocol

from cryptography.exceptions import InvalidTag

from .config import Settings
from .crypto import decode_hex_triplet, derive_key, encode_hex_triplet
from .errors import SecretCorruptError, SecretDecryptError, SecretNotFoundError
from .logging_setup import get_logger

SERVICE_NAME = "BankRec"
ACCOUNT_NAME = "encryption-key"
SECRET_BYTES = 32
DISPLAY_GROUP = 4
DISPLAY_DELIMITER = "-"
_FILE_KEY_SALT = b"bankrec-salt"

StorageKind = Literal["keychain", "file"]

_logger = get_logger("bankrec.key_manager")


class SecureStore(Protocol):
    """The OS secure-storage capability, consumed as an opaque collaborator."""

    def set(self, service: str, account: str, secret: str) -> None: ...

    def get(self, service: str, account: str) -> str | None: ...

    def delete(self, service: str, account: str) -> bool: ...


class SecretBackend(Protocol):
    kind: StorageKind

    def store(self, secret: str) -> bool: ...

    def retrieve(self) -> str | None: ...

    def erase(self) -> bool: ...


class SecureStoreBackend:
    """Backend over a :class:`SecureStore`; never raises."""

    kind: StorageKind = "keychain"

    def __init__(
        self,
        capability: SecureStore,
        *,
        service: str = SERVICE_NAME,
        account: str = ACCOUNT_NAME,
    ) -> None:
        self._capability = capability
        self._service = service
        self._account = account

    def store(self, secret: str) -> bool:
        try:
            self._capability.set(self._service, self._account, secret)
        except Exception as exc:
            _logger.warning("secure store unavailable for write: %s", type(exc).__name__)
            return False
        return True

    def retrieve(self) -> str | None:
        try:
            value = self._capability.get(self._service, self._account)
        except Exception as exc:
            _logger.warning("secure store unavailable for read: %s", type(exc).__name__)
            return None
        return value or None

    def erase(self) -> bool:
        try:
            return bool(self._capability.delete(self._service, self._account))
        except Exception as exc:
            _logger.warning("secure store unavailable for delete: %s", type(exc).__name__)
            return False


def machine_fingerprint(app_data_dir: str | os.PathLike[str]) -> str:
    """Hash of stable machine attributes; excludes the hostname."""

    components = [sys.platform, platform.machine(), str(Path.home()), str(app_data_dir)]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


class EncryptedFileBackend:
    """Fallback backend: the secret encrypted under a machine-derived key."""

    kind: StorageKind = "file"

    def __init__(self, path: Path, app_data_dir: Path) -> None:
        self.path = path
        self._app_data_dir = app_data_dir

    def _file_key(self) -> bytes:
        return derive_key(machine_fingerprint(self._app_data_dir), _FILE_KEY_SALT)

    def store(self, secret: str) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        payload = encode_hex_triplet(self._file_key(), secret)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(payload)
        os.chmod(self.path, 0o600)
        return True

    def retrieve(self) -> str | None:
        """Return the secret or ``None`` when no file exists.

        Raises ``SecretCorruptError`` / ``SecretDecryptError`` for unreadable files.
        """

        try:
            data = self.path.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise SecretCorruptError("Invalid key file format") from exc
        if len(data.split(":")) != 3:
            raise SecretCorruptError("Invalid key file format")
        try:
            return decode_hex_triplet(self._file_key(), data)
        except ValueError as exc:
            raise SecretCorruptError("Invalid key file format") from exc
        except InvalidTag as exc:
            raise SecretDecryptError("Key file could not be decrypted") from exc

    def erase(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            _logger.error("failed to delete key file: %s", exc)
            return False
        return True


class SecretManager:
    """Ordered fallback chain over secret backends, fixed at construction."""

    def __init__(self, backends: Sequence[SecretBackend]) -> None:
        if not backends:
            raise ValueError("SecretManager needs at least one backend")
        self.backends = list(backends)

    @classmethod
    def default(
        cls, settings: Settings, *, secure_store: SecureStore | None = None
    ) -> SecretManager:
        chain: list[SecretBackend] = []
        if secure_store is not None:
            chain.append(SecureStoreBackend(secure_store))
        chain.append(EncryptedFileBackend(settings.keystore_path, settings.data_dir))
        return cls(chain)

    @staticmethod
    def generate() -> str:
        return base64.b64encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii")

    def store(self, secret: str) -> StorageKind:
        """Store through the first backend that accepts the secret."""

        for backend in self.backends:
            if backend.store(secret):
                _logger.info("secret stored in %s", backend.kind)
                return backend.kind
        raise OSError("no secret backend accepted the secret")

    def retrieve(self) -> str:
        """Return the stored secret, trying backends in order.

        A corrupt or undecryptable fallback file is reported as such; an
        absent secret raises ``SecretNotFoundError``.
        """

        for backend in self.backends:
            value = backend.retrieve()
            if value:
                return value
        raise SecretNotFoundError("No encryption key found")

    def has_secret(self) -> bool:
        try:
            self.retrieve()
        except (SecretNotFoundError, SecretCorruptError, SecretDecryptError):
            return False
        return True

    def erase(self) -> bool:
        results = [backend.erase() for backend in self.backends]
        return any(results)

    @staticmethod
    def format_for_display(secret: str) -> str:
        groups = [secret[i : i + DISPLAY_GROUP] for i in range(0, len(secret), DISPLAY_GROUP)]
        return DISPLAY_DELIMITER.join(groups)

    @staticmethod
    def parse_display(text: str) -> str:
        return "".join(text.split()).replace(DISPLAY_DELIMITER, "")


__all__ = [
    "ACCOUNT_NAME",
    "EncryptedFileBackend",
    "SERVICE_NAME",
    "SecretBackend",
    "SecretManager",
    "SecureStore",
    "SecureStoreBackend",
    "StorageKind",
    "machine_fingerprint",
]
