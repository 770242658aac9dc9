"""Error taxonomy for ``bankrec``.

Validation and constraint errors carry messages that are safe to show to the
end user. Crypto and storage errors carry generic messages; the diagnostic
detail goes to the operator log and is chained via ``raise ... from``.
"""

from __future__ import annotations

from collections.abc import Iterable


class BankRecError(Exception):
    """Base class for every error raised by the package."""


class ValidationError(BankRecError, ValueError):
    """Malformed input, rejected before touching storage.

    ``violations`` holds every problem found, in discovery order; the message
    joins them with ``", "``.
    """

    def __init__(self, violations: Iterable[str] | str) -> None:
        if isinstance(violations, str):
            violations = [violations]
        self.violations: list[str] = list(violations) or ["Invalid input"]
        super().__init__(", ".join(self.violations))


class ConstraintViolation(BankRecError):
    """A unique key already exists (user email, category name+type per user)."""


class NotFound(BankRecError):
    """A record the caller explicitly referenced does not exist."""


class CryptoFailure(BankRecError):
    """Decryption or authentication failed."""


class SecretError(BankRecError):
    """Base for Secret Manager retrieval failures."""


class SecretNotFoundError(SecretError):
    """No secret is stored in any backend."""


class SecretCorruptError(SecretError, CryptoFailure):
    """The fallback key file does not have the ``iv:tag:ct`` layout."""


class SecretDecryptError(SecretError, CryptoFailure):
    """The fallback key file failed authentication."""


BACKUP_AUTH_MESSAGE = "Incorrect password or corrupted file"


class BackupAuthError(CryptoFailure):
    """Wrong export password or a damaged backup; deliberately indistinguishable."""

    def __init__(self, message: str = BACKUP_AUTH_MESSAGE) -> None:
        super().__init__(message)


class StorageUnavailable(BankRecError):
    """The store cannot be opened yet: the user needs to onboard or unlock."""


class RateLimited(BankRecError):
    """Too many attempts inside the rate-limit window."""


class ResourceLimit(BankRecError):
    """Input exceeds a configured size ceiling."""


class IdentifierCollisionError(BankRecError):
    """Identifier generation kept colliding with existing primary keys."""


class ExportFailed(BankRecError):
    def __init__(self, message: str = "Export failed. Please try again.") -> None:
        super().__init__(message)


class ImportFailed(BankRecError):
    def __init__(
        self, message: str = "Import failed. Please check your file and password."
    ) -> None:
        super().__init__(message)


__all__ = [
    "BACKUP_AUTH_MESSAGE",
    "BackupAuthError",
    "BankRecError",
    "ConstraintViolation",
    "CryptoFailure",
    "ExportFailed",
    "IdentifierCollisionError",
    "ImportFailed",
    "NotFound",
    "RateLimited",
    "ResourceLimit",
    "SecretCorruptError",
    "SecretDecryptError",
    "SecretError",
    "SecretNotFoundError",
    "StorageUnavailable",
    "ValidationError",
]
