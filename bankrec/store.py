"""Encrypted Record Store.

Durable storage for users, transactions and categories in a single SQLite
file. ``description`` and ``category`` of every transaction are encrypted per
write by :class:`bankrec.crypto.FieldCipher` and decrypted on read; a value that
fails authentication reads back as ``None`` instead of aborting the query.

Conventions:
- Every statement is built with SQLAlchemy and uses bound parameters.
- Input is validated into the pydantic models in :mod:`bankrec.models` before
  any statement runs; invalid input raises ``ValidationError``.
- Updates and deletes report the affected row count. An unknown id yields
  ``0``; callers decide whether that is an error.
- Duplicate unique keys raise ``ConstraintViolation``.
"""

from __future__ import annotations

import os
import sqlite3
import uuid
from collections.abc import Callable, Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy import delete, func, insert, inspect, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .crypto import FieldCipher
from .db import Base, CategoryRow, TransactionRow, UserRow
from .db.client import create_sqlite_engine, make_session_factory, session_scope
from .errors import ConstraintViolation, IdentifierCollisionError, NotFound, ValidationError
from .logging_setup import get_logger
from .models import (
    Category,
    NewCategory,
    NewTransaction,
    NewUser,
    Transaction,
    TransactionPatch,
    User,
    UserPatch,
    to_cents,
)
from .validation import validate

MAX_ID_ATTEMPTS = 3

DEFAULT_CATEGORIES: dict[str, tuple[str, ...]] = {
    "income": (
        "Salary",
        "Freelance Income",
        "Investment Income",
        "Rental Income",
        "Business Income",
        "Bonus",
        "Tax Refund",
        "Gift Received",
        "Other Income",
    ),
    "expense": (
        "Groceries",
        "Rent/Mortgage",
        "Utilities",
        "Transportation",
        "Healthcare",
        "Insurance",
        "Entertainment",
        "Dining Out",
        "Shopping",
        "Education",
        "Travel",
        "Personal Care",
        "Home Maintenance",
        "Subscriptions",
        "Debt Payment",
        "Savings",
        "Taxes",
        "Charity/Donations",
        "Other Expense",
    ),
}

# Columns added after the first schema version shipped: name -> SQL type
_LEGACY_COLUMNS: dict[str, dict[str, str]] = {
    "transactions": {"check_number": "TEXT", "account_id": "TEXT"},
}

_ENCRYPTED_FIELDS = ("description", "category")

_logger = get_logger("bankrec.store")


def _new_id() -> str:
    return str(uuid.uuid4())


def _is_primary_key_collision(exc: IntegrityError) -> bool:
    return "UNIQUE constraint failed: transactions.id" in str(exc.orig)


def _is_foreign_key_failure(exc: IntegrityError) -> bool:
    return "FOREIGN KEY constraint failed" in str(exc.orig)


def _migrate_legacy_columns(engine: Engine) -> None:
    inspector = inspect(engine)
    for table, columns in _LEGACY_COLUMNS.items():
        present = {c["name"] for c in inspector.get_columns(table)}
        for name, sql_type in columns.items():
            if name in present:
                continue
            _logger.info("adding missing column %s.%s", table, name)
            with engine.begin() as conn:
                conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {sql_type}")


class EncryptedStore:
    """Single-process handle over one store file; use :meth:`open` to create."""

    def __init__(
        self,
        engine: Engine,
        cipher: FieldCipher,
        *,
        path: Path | None = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._engine = engine
        self._sessions = make_session_factory(engine)
        self.cipher = cipher
        self.path = path
        self._id_factory = id_factory

    @classmethod
    def open(
        cls,
        path: str | os.PathLike[str],
        secret: str,
        *,
        id_factory: Callable[[], str] | None = None,
    ) -> EncryptedStore:
        """Open (creating when needed) the store at ``path`` keyed by ``secret``."""

        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_sqlite_engine(db_path)
        try:
            Base.metadata.create_all(engine)
            _migrate_legacy_columns(engine)
        except Exception:
            engine.dispose()
            raise
        return cls(
            engine,
            FieldCipher.from_secret(secret),
            path=db_path,
            id_factory=id_factory or _new_id,
        )

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> EncryptedStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_user(row: UserRow) -> User:
        return User(
            id=row.id,
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
            address=row.address,
            created_at=row.created_at,
        )

    def _to_transaction(self, row: TransactionRow) -> Transaction:
        return Transaction(
            id=row.id,
            owner_id=row.user_id,
            date=row.date,
            description=self.cipher.decrypt(row.description),
            amount=to_cents(row.amount),
            type=row.type,  # type: ignore[arg-type]
            category=self.cipher.decrypt(row.category),
            check_number=row.check_number,
            is_reconciled=bool(row.is_reconciled),
            account_id=row.account_id,
        )

    @staticmethod
    def _to_category(row: CategoryRow) -> Category:
        return Category(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            type=row.type,  # type: ignore[arg-type]
            is_default=bool(row.is_default),
        )

    def _encode_transaction_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in values.items():
            if name in _ENCRYPTED_FIELDS:
                out[name] = self.cipher.encrypt(value)
            elif name == "amount":
                out[name] = float(to_cents(value))
            elif name == "owner_id":
                out["user_id"] = value
            else:
                out[name] = value
        return out

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        address: str | None = None,
    ) -> int:
        user = validate(
            NewUser,
            {"email": email, "first_name": first_name, "last_name": last_name, "address": address},
        )
        try:
            with session_scope(self._sessions) as s:
                row = UserRow(**user.model_dump())
                s.add(row)
                s.flush()
                return row.id
        except IntegrityError as exc:
            raise ConstraintViolation(f"A user with email {user.email} already exists") from exc

    def get_user_by_email(self, email: str) -> User | None:
        with session_scope(self._sessions) as s:
            row = s.execute(select(UserRow).where(UserRow.email == email)).scalar_one_or_none()
            return self._to_user(row) if row else None

    def get_user_by_id(self, user_id: int) -> User | None:
        with session_scope(self._sessions) as s:
            row = s.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_first_user(self) -> User | None:
        """Oldest user; assumes one primary user per store."""

        stmt = select(UserRow).order_by(UserRow.created_at.asc(), UserRow.id.asc()).limit(1)
        with session_scope(self._sessions) as s:
            row = s.execute(stmt).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, user_id: int, patch: UserPatch | Mapping[str, Any]) -> int:
        changes = validate(UserPatch, patch).changes()
        if not changes:
            return 0
        try:
            with session_scope(self._sessions) as s:
                result = s.execute(update(UserRow).where(UserRow.id == user_id).values(**changes))
                return result.rowcount
        except IntegrityError as exc:
            raise ConstraintViolation("A user with that email already exists") from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(self, record: NewTransaction | Mapping[str, Any]) -> str:
        """Insert ``record`` under a freshly generated id and return the id.

        A primary-key collision retries with a new id, at most
        ``MAX_ID_ATTEMPTS`` times in total; any other integrity failure is
        raised immediately.
        """

        tx = validate(NewTransaction, record)
        values = self._encode_transaction_values(tx.model_dump())
        last_error: IntegrityError | None = None
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            tx_id = self._id_factory()
            try:
                with session_scope(self._sessions) as s:
                    s.execute(insert(TransactionRow).values(id=tx_id, **values))
                return tx_id
            except IntegrityError as exc:
                if _is_foreign_key_failure(exc):
                    raise NotFound(f"User {tx.owner_id} does not exist") from exc
                if not _is_primary_key_collision(exc):
                    raise
                _logger.warning(
                    "transaction id collision (attempt %d/%d)", attempt, MAX_ID_ATTEMPTS
                )
                last_error = exc
        raise IdentifierCollisionError(
            f"Failed to create transaction after {MAX_ID_ATTEMPTS} attempts"
        ) from last_error

    def get_transaction(self, tx_id: str) -> Transaction | None:
        with session_scope(self._sessions) as s:
            row = s.get(TransactionRow, tx_id)
            return self._to_transaction(row) if row else None

    def get_transactions_by_user(self, user_id: int) -> list[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.user_id == user_id)
            .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
        )
        with session_scope(self._sessions) as s:
            return [self._to_transaction(r) for r in s.execute(stmt).scalars()]

    def get_unreconciled_transactions(self, user_id: int) -> list[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.user_id == user_id)
            .where(TransactionRow.is_reconciled.is_(False))
            .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
        )
        with session_scope(self._sessions) as s:
            return [self._to_transaction(r) for r in s.execute(stmt).scalars()]

    def update_transaction(
        self, tx_id: str, patch: TransactionPatch | Mapping[str, Any]
    ) -> int:
        if not tx_id:
            raise ValidationError("Transaction ID is required for update")
        changes = validate(TransactionPatch, patch).changes()
        if not changes:
            return 0
        values = self._encode_transaction_values(changes)
        with session_scope(self._sessions) as s:
            result = s.execute(
                update(TransactionRow).where(TransactionRow.id == tx_id).values(**values)
            )
            return result.rowcount

    def delete_transaction(self, tx_id: str) -> int:
        if not tx_id:
            raise ValidationError("Transaction ID is required for delete")
        with session_scope(self._sessions) as s:
            return s.execute(delete(TransactionRow).where(TransactionRow.id == tx_id)).rowcount

    def find_by_amount(
        self,
        user_id: int,
        amount: Decimal | float | str,
        date_from: str | None = None,
        date_to: str | None = None,
        *,
        include_reconciled: bool = True,
    ) -> list[Transaction]:
        """Exact-amount lookup with optional inclusive date bounds.

        Unreconciled rows come first, each group newest first.
        """

        stmt = (
            select(TransactionRow)
            .where(TransactionRow.user_id == user_id)
            .where(TransactionRow.amount == float(to_cents(amount)))
        )
        if date_from:
            stmt = stmt.where(TransactionRow.date >= date_from)
        if date_to:
            stmt = stmt.where(TransactionRow.date <= date_to)
        if not include_reconciled:
            stmt = stmt.where(TransactionRow.is_reconciled.is_(False))
        stmt = stmt.order_by(TransactionRow.is_reconciled.asc(), TransactionRow.date.desc())
        with session_scope(self._sessions) as s:
            return [self._to_transaction(r) for r in s.execute(stmt).scalars()]

    def mark_reconciled(self, tx_id: str, flag: bool = True) -> int:
        with session_scope(self._sessions) as s:
            result = s.execute(
                update(TransactionRow)
                .where(TransactionRow.id == tx_id)
                .values(is_reconciled=bool(flag))
            )
            return result.rowcount

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def create_category(
        self, user_id: int, name: str, type: str, is_default: bool = False
    ) -> int:
        cat = validate(
            NewCategory,
            {"user_id": user_id, "name": name, "type": type, "is_default": is_default},
        )
        try:
            with session_scope(self._sessions) as s:
                row = CategoryRow(**cat.model_dump())
                s.add(row)
                s.flush()
                return row.id
        except IntegrityError as exc:
            if _is_foreign_key_failure(exc):
                raise NotFound(f"User {user_id} does not exist") from exc
            raise ConstraintViolation(
                f"Category {cat.name!r} ({cat.type}) already exists"
            ) from exc

    def list_categories(self, user_id: int) -> list[Category]:
        stmt = (
            select(CategoryRow)
            .where(CategoryRow.user_id == user_id)
            .order_by(CategoryRow.type, CategoryRow.name)
        )
        with session_scope(self._sessions) as s:
            return [self._to_category(r) for r in s.execute(stmt).scalars()]

    def delete_category(self, category_id: int) -> int:
        """Delete a user-created category; default categories are never removed."""

        with session_scope(self._sessions) as s:
            result = s.execute(
                delete(CategoryRow)
                .where(CategoryRow.id == category_id)
                .where(CategoryRow.is_default.is_(False))
            )
            return result.rowcount

    def seed_default_categories(self, user_id: int) -> int:
        """Insert the default set once; a user with any category is left alone."""

        with session_scope(self._sessions) as s:
            existing = s.execute(
                select(func.count()).select_from(CategoryRow).where(CategoryRow.user_id == user_id)
            ).scalar_one()
            if existing:
                return 0
            rows = [
                CategoryRow(user_id=user_id, name=name, type=kind, is_default=True)
                for kind, names in DEFAULT_CATEGORIES.items()
                for name in names
            ]
            s.add_all(rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup_to(self, path: str | os.PathLike[str]) -> Path:
        """Write a point-in-time consistent copy of the store to ``path``."""

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        raw = self._engine.raw_connection()
        try:
            dest = sqlite3.connect(target)
            try:
                raw.driver_connection.backup(dest)
            finally:
                dest.close()
        finally:
            raw.close()
        return target


__all__ = [
    "DEFAULT_CATEGORIES",
    "EncryptedStore",
    "MAX_ID_ATTEMPTS",
]
