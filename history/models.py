"""
history/models.py -- Domain dataclass for the account audit trail.

Pure data container. The append-only rule is enforced by history/store.py,
which exposes insert and read operations only.
"""

from dataclasses import dataclass
from typing import Optional

CREATED_ACCOUNT = "created account"
LOGIN = "login"
LOGOUT = "logout"

OPERATIONS = frozenset({CREATED_ACCOUNT, LOGIN, LOGOUT})


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one account lifecycle event.

    Records are never updated or deleted -- only inserted.
    id is None before the record is written to the database.
    """

    email: str
    operation: str  # one of OPERATIONS
    created_at: str  # ISO 8601, UTC
    id: Optional[int] = None
