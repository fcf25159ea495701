"""
history/store.py -- SQLAlchemy Core persistence for the account audit trail.

Pattern: Repository + Data Mapper. HistoryStore is append-only by
construction: it has no update or delete method.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = HistoryStore()
    store.append("ada@example.com", "login")
    entries = store.list_for_email("ada@example.com")
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from history.models import OPERATIONS, HistoryEntry

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_history = Table(
    "history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(254), nullable=False),
    Column("operation", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_history_email_created", "email", "created_at"),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so audit writes never block readers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class HistoryStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().history_db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def append(self, email: str, operation: str) -> HistoryEntry:
        """Insert one audit entry stamped with the current UTC time.

        Raises ValueError for an operation outside OPERATIONS. Database errors
        propagate; HistoryRecorder decides what to do with them.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown history operation: {operation!r}")
        created_at = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_history.insert().values(email=email, operation=operation, created_at=created_at))
            conn.commit()
        return HistoryEntry(email=email, operation=operation, created_at=created_at, id=result.inserted_primary_key[0])

    def list_for_email(self, email: str, limit: int = 50) -> list[HistoryEntry]:
        """Return the newest entries for one identity, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _history.select()
                .where(_history.c.email == email)
                .order_by(_history.c.created_at.desc(), _history.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def count(self, email: Optional[str] = None, operation: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(_history)
        if email is not None:
            stmt = stmt.where(_history.c.email == email)
        if operation is not None:
            stmt = stmt.where(_history.c.operation == operation)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        email=row.email,
        operation=row.operation,
        created_at=row.created_at,
    )
