from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# users
# ---------------------------


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.current_timestamp()
    )


# ---------------------------
# transactions
# ---------------------------


class TransactionRow(Base):
    __tablename__ = "transactions"

    # uuid4 text generated by the store, never by callers
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    # ISO YYYY-MM-DD; text ordering equals date ordering
    date: Mapped[str] = mapped_column(String, nullable=False)
    # Encrypted: hex(iv):hex(tag):hex(ciphertext)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Magnitude only; sign lives in ``type``
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    # Encrypted like ``description``
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_number: Mapped[str | None] = mapped_column(String, nullable=True)
    is_reconciled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("0")
    )
    # Reserved for multi-account partitioning; unused by matching
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint("type in ('debit','credit')", name="ck_transactions_type"),
        CheckConstraint(
            "amount >= 0 AND amount <= 999999999.99", name="ck_transactions_amount"
        ),
        Index("idx_transactions_user_id", "user_id"),
        Index("idx_transactions_date", "date"),
        Index("idx_transactions_amount", "amount"),
        Index("idx_transactions_is_reconciled", "is_reconciled"),
    )


# ---------------------------
# categories
# ---------------------------


class CategoryRow(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    # System-seeded rows; never deleted
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint("type in ('income','expense')", name="ck_categories_type"),
        UniqueConstraint("user_id", "name", "type", name="uq_categories_user_name_type"),
        Index("idx_categories_user_id", "user_id"),
    )


__all__ = [
    "Base",
    "CategoryRow",
    "TransactionRow",
    "UserRow",
]
