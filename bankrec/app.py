"""Application context: the operations a UI calls.

``BankRecApp`` owns the open store, the Secret Manager, the persisted config
and the backup codec for one process. Nothing here is module-level state;
entrypoints build one context and pass it around.

Storage opens lazily. The first operation that needs the store calls
:meth:`BankRecApp.initialize_storage`, which retries a bounded number of times
(the secret may not be readable yet right after onboarding) and then raises
``StorageUnavailable`` rather than pretending the ledger is empty.
"""

from __future__ import annotations

import os
import shutil
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .backup import BackupCodec
from .config import ConfigManager, Settings, load_settings
from .errors import (
    BankRecError,
    ImportFailed,
    NotFound,
    SecretError,
    SecretNotFoundError,
    StorageUnavailable,
    ValidationError,
)
from .ingest import parse_statement
from .key_manager import SecretManager, SecureStore
from .logging_setup import get_logger
from .matching import default_choice, rank_candidates
from .models import (
    CandidateRecord,
    ImportSummary,
    LedgerSnapshot,
    NewTransaction,
    NewUser,
    OnboardResult,
    Transaction,
    TransactionPatch,
    User,
)
from .store import EncryptedStore
from .validation import validate, validate_file_path

STORAGE_ATTEMPTS = 3
STORAGE_RETRY_DELAY = 0.5
_SIDECAR_SUFFIXES = ("-wal", "-shm")

_logger = get_logger("bankrec.app")


def derive_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Credits add, debits subtract, folded in ascending date order."""

    balance = Decimal("0.00")
    for tx in sorted(transactions, key=lambda t: t.date):
        balance += tx.signed_amount
    return balance


def _remove_sidecars(db_path: Path) -> None:
    for suffix in _SIDECAR_SUFFIXES:
        db_path.with_name(db_path.name + suffix).unlink(missing_ok=True)


def _check_sqlite_file(path: Path) -> None:
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("PRAGMA quick_check").fetchone()
    finally:
        conn.close()
    if not row or row[0] != "ok":
        raise sqlite3.DatabaseError(f"integrity check failed: {row[0] if row else 'no result'}")


class BankRecApp:
    def __init__(
        self,
        settings: Settings,
        secret_manager: SecretManager,
        config_manager: ConfigManager,
        codec: BackupCodec | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.secret_manager = secret_manager
        self.config_manager = config_manager
        self.codec = codec or BackupCodec()
        self._sleep = sleep
        self.store: EncryptedStore | None = None

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        secure_store: SecureStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> BankRecApp:
        """Wire the default collaborators for ``settings`` (from the environment if omitted)."""

        settings = settings or load_settings()
        return cls(
            settings,
            SecretManager.default(settings, secure_store=secure_store),
            ConfigManager(settings),
            BackupCodec(),
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.store is not None

    def open(self) -> BankRecApp:
        self.initialize_storage()
        return self

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None

    def __enter__(self) -> BankRecApp:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def workdir(self) -> Path:
        return self.settings.data_dir / "tmp"

    def initialize_storage(self) -> EncryptedStore:
        """Return the open store, opening it with the stored secret if needed.

        Makes ``STORAGE_ATTEMPTS`` attempts ``STORAGE_RETRY_DELAY`` seconds
        apart, then raises ``StorageUnavailable``.
        """

        if self.store is not None:
            return self.store
        last_error: Exception | None = None
        for attempt in range(1, STORAGE_ATTEMPTS + 1):
            try:
                secret = self.secret_manager.retrieve()
                self.store = EncryptedStore.open(self.config_manager.get_db_path(), secret)
                return self.store
            except (SecretError, OSError, SQLAlchemyError) as exc:
                last_error = exc
                _logger.warning(
                    "storage initialization failed (attempt %d/%d): %s",
                    attempt,
                    STORAGE_ATTEMPTS,
                    type(exc).__name__,
                )
            if attempt < STORAGE_ATTEMPTS:
                self._sleep(STORAGE_RETRY_DELAY)
        raise StorageUnavailable(
            "Storage is not initialized. Please complete onboarding or unlock."
        ) from last_error

    def _resolve_user(self, store: EncryptedStore, user_id: int | None) -> User | None:
        if user_id is None:
            return store.get_first_user()
        return store.get_user_by_id(user_id)

    def _require_user(self, store: EncryptedStore, user_id: int | None) -> User:
        user = self._resolve_user(store, user_id)
        if user is None:
            raise NotFound("No user found. Please complete onboarding.")
        return user

    # ------------------------------------------------------------------
    # Onboarding and ledger
    # ------------------------------------------------------------------

    def onboard(
        self, email: str, first_name: str | None = None, last_name: str | None = None
    ) -> OnboardResult:
        """Create (or refresh) the primary user, provisioning a secret on first run.

        An email that already exists updates the supplied names instead of
        failing. The returned secret is the one the store is keyed by, for the
        user to write down.
        """

        profile = validate(
            NewUser, {"email": email, "first_name": first_name, "last_name": last_name}
        )
        try:
            secret = self.secret_manager.retrieve()
        except SecretNotFoundError:
            secret = self.secret_manager.generate()
            kind = self.secret_manager.store(secret)
            _logger.info("provisioned a new store secret (%s)", kind)

        store = self.initialize_storage()
        existing = store.get_user_by_email(profile.email)
        if existing is not None:
            names = {
                k: v
                for k, v in (("first_name", profile.first_name), ("last_name", profile.last_name))
                if v is not None
            }
            if names:
                store.update_user(existing.id, names)
            user_id = existing.id
        else:
            user_id = store.create_user(profile.email, profile.first_name, profile.last_name)
        store.seed_default_categories(user_id)
        return OnboardResult(user_id=user_id, secret=secret)

    def load_all(self, user_id: int | None = None) -> LedgerSnapshot | None:
        store = self.initialize_storage()
        user = self._resolve_user(store, user_id)
        if user is None:
            return None
        seeded = store.seed_default_categories(user.id)
        if seeded:
            _logger.info("seeded %d default categories for user %d", seeded, user.id)
        transactions = store.get_transactions_by_user(user.id)
        return LedgerSnapshot(
            user=user,
            transactions=transactions,
            categories=store.list_categories(user.id),
            balance=derive_balance(transactions),
        )

    def submit_transaction(self, record: NewTransaction | Mapping[str, Any]) -> str:
        """Create a transaction; a mapping without ``owner_id`` goes to the primary user."""

        store = self.initialize_storage()
        if isinstance(record, Mapping) and "owner_id" not in record:
            record = {**record, "owner_id": self._require_user(store, None).id}
        return store.create_transaction(record)

    def edit_transaction(self, tx_id: str, patch: TransactionPatch | Mapping[str, Any]) -> int:
        return self.initialize_storage().update_transaction(tx_id, patch)

    def remove_transaction(self, tx_id: str) -> int:
        return self.initialize_storage().delete_transaction(tx_id)

    # ------------------------------------------------------------------
    # Statement import and reconciliation
    # ------------------------------------------------------------------

    def import_csv(self, raw_text: str, user_id: int | None = None) -> list[CandidateRecord]:
        """Parse a statement and attach ranked matches from the user's ledger."""

        candidates = parse_statement(raw_text)
        if not candidates:
            return candidates
        store = self.initialize_storage()
        user = self._resolve_user(store, user_id)
        stored = store.get_transactions_by_user(user.id) if user else []
        rank_candidates(candidates, stored)
        _logger.info("parsed %d statement rows", len(candidates))
        return candidates

    def confirm_import(
        self,
        candidates: Sequence[CandidateRecord],
        choices: Sequence[str | None] | None = None,
        *,
        user_id: int | None = None,
    ) -> ImportSummary:
        """Apply the reviewer's answers in order.

        ``choices[i]`` is the id of the stored transaction that candidate ``i``
        reconciles, or ``None`` to create the candidate as a new, reconciled
        transaction. Without ``choices`` every candidate takes
        :func:`bankrec.matching.default_choice`. Unselected candidates are
        skipped. Candidates to be created are all validated before anything is
        written; invalid ones are logged and counted as skipped.
        """

        if choices is None:
            choices = [default_choice(c) for c in candidates]
        if len(choices) != len(candidates):
            raise ValidationError("One choice is required per candidate")

        store = self.initialize_storage()
        user = self._require_user(store, user_id)
        created = reconciled = skipped = 0
        plan: list[tuple[NewTransaction | None, str | None]] = []
        for index, (candidate, choice) in enumerate(zip(candidates, choices)):
            if not candidate.selected:
                skipped += 1
                continue
            if choice is not None:
                plan.append((None, choice))
                continue
            try:
                plan.append((candidate.to_new_transaction(user.id), None))
            except ValidationError as exc:
                _logger.warning("candidate %d skipped: %s", index, exc)
                skipped += 1

        for record, choice in plan:
            if record is not None:
                store.create_transaction(record)
                created += 1
            elif store.mark_reconciled(choice):
                reconciled += 1
            else:
                _logger.warning("matched transaction %s no longer exists", choice)
                skipped += 1
        return ImportSummary(created=created, reconciled=reconciled, skipped=skipped)

    def start_reconciliation_review(self, user_id: int | None = None) -> list[Transaction]:
        store = self.initialize_storage()
        user = self._resolve_user(store, user_id)
        if user is None:
            return []
        return store.get_unreconciled_transactions(user.id)

    def confirm_reconciliation(self, tx_ids: Iterable[str]) -> int:
        store = self.initialize_storage()
        return sum(store.mark_reconciled(tx_id) for tx_id in tx_ids)

    # ------------------------------------------------------------------
    # Backup, restore and relocation
    # ------------------------------------------------------------------

    def export_store(self, path: str | os.PathLike[str], password: str) -> Path:
        return self.codec.export_store(
            self.initialize_storage(), path, password, workdir=self.workdir
        )

    def import_store(self, path: str | os.PathLike[str], password: str) -> None:
        """Replace the live store with the backup at ``path``.

        The previous database file is renamed aside and only deleted once the
        imported one has been opened successfully. If opening fails, the
        previous file is put back and reopened, and ``ImportFailed`` is raised.
        """

        data = self.codec.read_backup(path, password)
        db_path = self.config_manager.get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        staged = db_path.with_name(f"{db_path.name}.import-{token}")
        aside = db_path.with_name(f"{db_path.name}.previous-{token}")

        try:
            staged.write_bytes(data)
            _check_sqlite_file(staged)
        except (OSError, sqlite3.Error) as exc:
            staged.unlink(missing_ok=True)
            _logger.error("imported data is not a usable database: %s", exc)
            raise ImportFailed() from exc

        self.close()
        moved_aside = False
        try:
            if db_path.exists():
                os.replace(db_path, aside)
                moved_aside = True
            _remove_sidecars(db_path)
            os.replace(staged, db_path)
            self.initialize_storage()
        except (OSError, SQLAlchemyError, StorageUnavailable) as exc:
            _logger.error("import failed, restoring previous store: %s", exc)
            self._restore_previous(db_path, aside if moved_aside else None)
            raise ImportFailed() from exc
        finally:
            staged.unlink(missing_ok=True)

        if moved_aside:
            aside.unlink(missing_ok=True)
        _logger.info("store replaced from backup")

    def _restore_previous(self, db_path: Path, aside: Path | None) -> None:
        self.close()
        try:
            if aside is not None:
                _remove_sidecars(db_path)
                os.replace(aside, db_path)
            self.initialize_storage()
        except (OSError, BankRecError) as exc:
            _logger.error("could not reopen previous store: %s", exc)

    def change_db_path(self, new_path: str | os.PathLike[str]) -> Path:
        """Copy the store to ``new_path``, remember it in config and reopen there."""

        if self.settings.db_path is not None:
            raise ValidationError("Database path is pinned by BANKREC_DB_PATH")
        target = Path(validate_file_path(new_path)).expanduser()
        old_path = self.config_manager.get_db_path()
        if target.resolve() == old_path.resolve():
            return old_path

        if self.store is not None:
            self.store.backup_to(target)
        elif old_path.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(old_path, target)
        self.config_manager.set_db_path(target)

        self.close()
        try:
            self.initialize_storage()
        except StorageUnavailable:
            _logger.error("could not open %s, reverting to %s", target, old_path)
            self.config_manager.set_db_path(old_path)
            self.close()
            self.initialize_storage()
            raise
        _logger.info("database moved to %s", target)
        return target


__all__ = [
    "BankRecApp",
    "STORAGE_ATTEMPTS",
    "STORAGE_RETRY_DELAY",
    "derive_balance",
]
