"""db: SQLAlchemy schema and engine helpers for the embedded store.

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM rows in ``bankrec.db.models`` (re-exported for convenience)
- Engine/session helpers in ``bankrec.db.client``
"""

from __future__ import annotations

from .models import Base, CategoryRow, TransactionRow, UserRow

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "CategoryRow",
    "TransactionRow",
    "UserRow",
]
