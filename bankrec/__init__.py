"""Public interface for the ``bankrec`` package.

Symbol re-exports only; the application context in :mod:`bankrec.app` is the
usual entry point.
"""

from .app import BankRecApp, derive_balance
from .backup import BackupCodec, decrypt_backup, encrypt_backup
from .config import ConfigManager, Settings, load_settings
from .errors import (
    BackupAuthError,
    BankRecError,
    ConstraintViolation,
    CryptoFailure,
    ExportFailed,
    IdentifierCollisionError,
    ImportFailed,
    NotFound,
    RateLimited,
    ResourceLimit,
    SecretCorruptError,
    SecretDecryptError,
    SecretError,
    SecretNotFoundError,
    StorageUnavailable,
    ValidationError,
)
from .ingest import parse_statement
from .key_manager import SecretManager, SecureStore
from .matching import default_choice, find_matches, rank_candidates
from .models import (
    CandidateRecord,
    Category,
    ImportSummary,
    LedgerSnapshot,
    MatchCandidate,
    NewTransaction,
    NewUser,
    OnboardResult,
    Transaction,
    TransactionPatch,
    User,
    UserPatch,
)
from .store import EncryptedStore

__all__ = [
    # Application
    "BankRecApp",
    "derive_balance",
    # Components
    "BackupCodec",
    "ConfigManager",
    "EncryptedStore",
    "SecretManager",
    "SecureStore",
    "Settings",
    "decrypt_backup",
    "default_choice",
    "encrypt_backup",
    "find_matches",
    "load_settings",
    "parse_statement",
    "rank_candidates",
    # Models
    "CandidateRecord",
    "Category",
    "ImportSummary",
    "LedgerSnapshot",
    "MatchCandidate",
    "NewTransaction",
    "NewUser",
    "OnboardResult",
    "Transaction",
    "TransactionPatch",
    "User",
    "UserPatch",
    # Errors
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
