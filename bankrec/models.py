"""Data models for ``bankrec``.

Two families live here:

- pydantic models for input crossing into the core (``NewUser``,
  ``UserPatch``, ``NewTransaction``, ``TransactionPatch``, ``NewCategory``).
  Every field of a ``*Patch`` model is optional; only fields the caller
  actually supplied (``model_fields_set``) are written.
- frozen dataclasses for records read back out of the store, plus the
  ephemeral ``CandidateRecord`` produced by CSV ingestion.

Amounts are non-negative ``Decimal`` magnitudes quantized to cents; the sign
of a transaction is carried by ``type`` alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date as date_type
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .validation import MAX_EMAIL_LENGTH, is_valid_email, sanitize_string, validate

TransactionType = Literal["debit", "credit"]
CategoryType = Literal["income", "expense"]

MAX_AMOUNT = Decimal("999999999.99")
CENT = Decimal("0.01")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def to_cents(value: Decimal | float | int | str) -> Decimal:
    """Quantize to two decimal places (half-up), going through ``str`` for floats."""

    d = value if isinstance(value, Decimal) else Decimal(str(value))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def _check_iso_date(value: str) -> str:
    if not _ISO_DATE_RE.fullmatch(value):
        raise ValueError("Transaction date must be YYYY-MM-DD")
    try:
        date_type.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("Transaction date is not a valid calendar date") from exc
    return value


def _check_amount(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValueError("Transaction amount must be a valid number")
    if value < 0:
        raise ValueError("Transaction amount must not be negative")
    if value > MAX_AMOUNT:
        raise ValueError("Transaction amount exceeds maximum allowed value")
    return to_cents(value)


def _check_email(value: str) -> str:
    value = value.strip()
    if not is_valid_email(value):
        raise ValueError("Invalid email address")
    return sanitize_string(value, MAX_EMAIL_LENGTH)


def _optional_text(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None
    cleaned = sanitize_string(value, max_length)
    return cleaned or None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class NewUser(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    first_name: str | None = None
    last_name: str | None = None
    address: str | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        if v is not None and len(v) > 100:
            raise ValueError("Name too long (max 100 characters)")
        return _optional_text(v, 100)

    @field_validator("address")
    @classmethod
    def _address(cls, v: str | None) -> str | None:
        return _optional_text(v, 500)


class UserPatch(NewUser):
    email: str | None = None  # type: ignore[assignment]

    @field_validator("email")
    @classmethod
    def _email(cls, v: str | None) -> str | None:
        if v is None:
            raise ValueError("Email cannot be cleared")
        return _check_email(v)

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class _TransactionFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("date", check_fields=False)
    @classmethod
    def _date(cls, v: str | None) -> str | None:
        return None if v is None else _check_iso_date(v.strip())

    @field_validator("description", check_fields=False)
    @classmethod
    def _description(cls, v: str | None) -> str | None:
        if v is None:
            return None
        cleaned = sanitize_string(v, 500)
        if not cleaned:
            raise ValueError("Transaction description is required")
        return cleaned

    @field_validator("amount", check_fields=False)
    @classmethod
    def _amount(cls, v: Decimal | None) -> Decimal | None:
        return None if v is None else _check_amount(v)

    @field_validator("category", "account_id", check_fields=False)
    @classmethod
    def _label(cls, v: str | None) -> str | None:
        return _optional_text(v, 100)

    @field_validator("check_number", check_fields=False)
    @classmethod
    def _check_number(cls, v: str | None) -> str | None:
        return _optional_text(v, 50)


class NewTransaction(_TransactionFields):
    """A transaction to create. The store generates ``id``; callers never supply it."""

    owner_id: int
    date: str
    description: str
    amount: Decimal
    type: TransactionType
    category: str | None = None
    check_number: str | None = None
    is_reconciled: bool = False
    account_id: str | None = None


class TransactionPatch(_TransactionFields):
    """Partial update; ``category``/``check_number``/``account_id`` may be cleared with ``None``."""

    date: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    type: TransactionType | None = None
    category: str | None = None
    check_number: str | None = None
    is_reconciled: bool | None = None
    account_id: str | None = None

    @model_validator(mode="after")
    def _required_not_cleared(self) -> TransactionPatch:
        cleared = [
            name
            for name in ("date", "description", "amount", "type", "is_reconciled")
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError("Cannot clear required fields: " + ", ".join(cleared))
        return self

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class NewCategory(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: int
    name: str
    type: CategoryType
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        if len(v) > 100:
            raise ValueError("Category name too long (max 100 characters)")
        cleaned = sanitize_string(v, 100)
        if not cleaned:
            raise ValueError("Category name is required")
        return cleaned


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class User:
    id: int
    email: str
    first_name: str | None
    last_name: str | None
    address: str | None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """A stored transaction with sensitive fields already decrypted.

    ``description`` and ``category`` are ``None`` when the stored ciphertext
    failed authentication (for example after restoring a backup made under a
    different secret).
    """

    id: str
    owner_id: int
    date: str
    description: str | None
    amount: Decimal
    type: TransactionType
    category: str | None = None
    check_number: str | None = None
    is_reconciled: bool = False
    account_id: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == "credit" else -self.amount


@dataclass(frozen=True, slots=True)
class Category:
    id: int
    user_id: int
    name: str
    type: CategoryType
    is_default: bool


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    """One stored transaction proposed as the counterpart of a candidate record."""

    transaction: Transaction
    score: int
    days_diff: int | None
    is_reconciled: bool


@dataclass(slots=True)
class CandidateRecord:
    """A parsed, not-yet-persisted statement row awaiting review."""

    date: str
    description: str
    amount: Decimal
    type: TransactionType
    category: str | None = None
    check_number: str | None = None
    is_reconciled: bool = False
    account_id: str | None = None
    selected: bool = True
    matches: list[MatchCandidate] = field(default_factory=list)

    def to_new_transaction(self, owner_id: int, *, is_reconciled: bool = True) -> NewTransaction:
        """Raises ``ValidationError`` when the row cannot be stored."""

        return validate(
            NewTransaction,
            {
                "owner_id": owner_id,
                "date": self.date,
                "description": self.description,
                "amount": self.amount,
                "type": self.type,
                "category": self.category,
                "check_number": self.check_number,
                "is_reconciled": is_reconciled,
                "account_id": self.account_id,
            },
        )


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    user: User
    transactions: list[Transaction]
    categories: list[Category]
    balance: Decimal

    def category_names(self, kind: CategoryType) -> list[str]:
        return [c.name for c in self.categories if c.type == kind]


@dataclass(frozen=True, slots=True)
class ImportSummary:
    created: int
    reconciled: int
    skipped: int = 0


@dataclass(frozen=True, slots=True)
class OnboardResult:
    user_id: int
    secret: str


__all__ = [
    "CENT",
    "MAX_AMOUNT",
    "CandidateRecord",
    "Category",
    "CategoryType",
    "ImportSummary",
    "LedgerSnapshot",
    "MatchCandidate",
    "NewCategory",
    "NewTransaction",
    "NewUser",
    "OnboardResult",
    "Transaction",
    "TransactionPatch",
    "TransactionType",
    "User",
    "UserPatch",
    "to_cents",
]
