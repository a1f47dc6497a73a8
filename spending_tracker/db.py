"""SQLite-backed transaction store.

The store owns two tables: ``transactions`` (unique on the
``(date, amount, description)`` duplicate key) and ``import_sessions``.
Every mutating call commits before returning; any ``sqlite3`` failure is
re-raised as :class:`StorageError`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd

from . import config
from .errors import NotFoundError, PaginationError, StorageError
from .models import (
    TRANSACTION_COLUMNS,
    CandidateTransaction,
    ImportSession,
    ImportStatus,
    InsertResult,
    Transaction,
    timestamp,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    amount REAL NOT NULL,
    description TEXT NOT NULL,
    category TEXT,
    created_at TEXT NOT NULL,
    CHECK (amount != 0),
    CHECK (length(description) > 0 AND length(description) <= 500),
    CHECK (category IS NULL OR length(category) <= 100)
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_txn_dedup
ON transactions (date, amount, description);

CREATE INDEX IF NOT EXISTS ix_txn_date ON transactions (date);
CREATE INDEX IF NOT EXISTS ix_txn_category ON transactions (category);
CREATE INDEX IF NOT EXISTS ix_txn_amount ON transactions (amount);

CREATE TABLE IF NOT EXISTS import_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    total_rows INTEGER NOT NULL DEFAULT 0,
    imported_count INTEGER NOT NULL DEFAULT 0,
    duplicate_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'completed', 'failed')),
    error_message TEXT,
    CHECK (imported_count + duplicate_count + error_count <= total_rows)
);

CREATE INDEX IF NOT EXISTS ix_session_status ON import_sessions (status);
CREATE INDEX IF NOT EXISTS ix_session_started ON import_sessions (started_at);
"""

SORT_COLUMNS = {'date': 'date', 'amount': 'amount', 'category': 'category'}
SORT_ORDERS = {'asc': 'ASC', 'desc': 'DESC'}

_TXN_SELECT = "SELECT id, date, amount, description, category, created_at FROM transactions"
_SESSION_SELECT = (
    "SELECT id, source_name, started_at, completed_at, total_rows, imported_count, "
    "duplicate_count, error_count, status, error_message FROM import_sessions"
)

# One writer lock per database file, shared by every store instance in the process.
_WRITE_LOCKS: Dict[str, threading.Lock] = {}
_WRITE_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _WRITE_LOCKS_GUARD:
        lock = _WRITE_LOCKS.get(key)
        if lock is None:
            lock = _WRITE_LOCKS[key] = threading.Lock()
        return lock


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row['id'],
        date=date.fromisoformat(row['date']),
        amount=float(row['amount']),
        description=row['description'],
        category=row['category'],
        created_at=row['created_at'],
    )


def _row_to_session(row: sqlite3.Row) -> ImportSession:
    return ImportSession(
        id=row['id'],
        source_name=row['source_name'],
        started_at=row['started_at'],
        completed_at=row['completed_at'],
        total_rows=row['total_rows'],
        imported_count=row['imported_count'],
        duplicate_count=row['duplicate_count'],
        error_count=row['error_count'],
        status=ImportStatus(row['status']),
        error_message=row['error_message'],
    )


def _iso(value: Union[str, date, None]) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class TransactionStore:
    """Durable store for transactions and import sessions."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None, initialize: bool = True):
        """Create a store.

        Args:
            db_path: Optional SQLite file. Defaults to ``config.DB_PATH``.
            initialize: Create the schema if it does not exist yet.
        """
        self.db_path = Path(db_path) if db_path else config.DB_PATH
        if initialize:
            self.init_db()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Could not open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        logger.debug("Initialized schema at %s", self.db_path)

    @contextmanager
    def write_lock(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold exclusive write access to this database file."""
        lock = _lock_for(self.db_path)
        wait = config.IMPORT_LOCK_TIMEOUT if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            raise StorageError(
                f"Another import is writing to {self.db_path}; gave up after {wait:.0f}s"
            )
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def insert(self, candidate: CandidateTransaction) -> InsertResult:
        """Insert a candidate, or report the existing row with the same key.

        Duplicates are a normal outcome and never raise.
        """
        params = candidate.key
        with self.connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO transactions (date, amount, description, category, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                params + (candidate.category, timestamp()),
            )
            if cur.rowcount == 1:
                conn.commit()
                return InsertResult(created=True, transaction_id=int(cur.lastrowid))
            existing = conn.execute(
                "SELECT id FROM transactions WHERE date = ? AND amount = ? AND description = ?",
                params,
            ).fetchone()
        if existing is None:
            raise StorageError(
                f"Transaction rejected by store constraints: {params[0]}, {params[1]}, {params[2]!r}"
            )
        return InsertResult(created=False, transaction_id=int(existing['id']))

    def find_duplicate(self, candidate: CandidateTransaction) -> Optional[int]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id FROM transactions WHERE date = ? AND amount = ? AND description = ?",
                candidate.key,
            ).fetchone()
        return int(row['id']) if row else None

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self.connect() as conn:
            row = conn.execute(f"{_TXN_SELECT} WHERE id = ?", (transaction_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Transaction with ID {transaction_id} not found")
        return _row_to_transaction(row)

    def delete_transaction(self, transaction_id: int) -> bool:
        """Delete a transaction. Returns False when it did not exist."""
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            conn.commit()
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted transaction %s", transaction_id)
        return deleted

    def list_transactions(
        self,
        start_date: Union[str, date, None] = None,
        end_date: Union[str, date, None] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_SIZE,
        sort_by: str = 'date',
        sort_order: str = 'desc',
    ) -> Tuple[List[Transaction], int]:
        """Return one page of transactions and the total matching count."""
        if page < 1:
            raise PaginationError("Page must be 1 or greater")
        if limit < 1 or limit > config.MAX_PAGE_SIZE:
            raise PaginationError(f"Limit must be between 1 and {config.MAX_PAGE_SIZE}")
        if sort_by not in SORT_COLUMNS:
            raise PaginationError(f"Invalid sortBy field: {sort_by}")
        if sort_order not in SORT_ORDERS:
            raise PaginationError(f"Invalid sortOrder: {sort_order}")

        where, params = self._where(start_date, end_date, [category] if category else None)
        order = f" ORDER BY {SORT_COLUMNS[sort_by]} {SORT_ORDERS[sort_order]}, id {SORT_ORDERS[sort_order]}"

        with self.connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM transactions{where}", params).fetchone()[0]
            rows = conn.execute(
                f"{_TXN_SELECT}{where}{order} LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        return [_row_to_transaction(r) for r in rows], int(total)

    def fetch_transactions(
        self,
        start_date: Union[str, date, None] = None,
        end_date: Union[str, date, None] = None,
        categories: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """All matching transactions as a DataFrame, oldest first."""
        where, params = self._where(start_date, end_date, categories)
        sql = f"{_TXN_SELECT}{where} ORDER BY date ASC, id ASC"
        with self.connect() as conn:
            df = pd.read_sql_query(sql, conn, params=params)
        if df.empty:
            return pd.DataFrame(columns=TRANSACTION_COLUMNS)
        df['date'] = pd.to_datetime(df['date'])
        return df

    def distinct_categories(self) -> List[str]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT category FROM transactions WHERE category IS NOT NULL ORDER BY category"
            ).fetchall()
        return [r[0] for r in rows]

    def transaction_stats(self) -> Dict[str, Any]:
        sql = """
        SELECT COUNT(*) AS total_count,
               COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS total_income,
               COALESCE(SUM(CASE WHEN amount < 0 THEN -amount ELSE 0 END), 0) AS total_expenses,
               MIN(date) AS earliest_date,
               MAX(date) AS latest_date,
               COUNT(DISTINCT category) AS category_count
        FROM transactions
        """
        with self.connect() as conn:
            row = conn.execute(sql).fetchone()
        return dict(row)

    @staticmethod
    def _where(
        start_date: Union[str, date, None],
        end_date: Union[str, date, None],
        categories: Optional[Sequence[str]],
    ) -> Tuple[str, List[Any]]:
        where: List[str] = []
        params: List[Any] = []
        start = _iso(start_date)
        end = _iso(end_date)
        if start:
            where.append("date >= ?")
            params.append(start)
        if end:
            where.append("date <= ?")
            params.append(end)
        if categories:
            where.append("category IN ({})".format(",".join(["?" for _ in categories])))
            params.extend(list(categories))
        clause = " WHERE " + " AND ".join(where) if where else ""
        return clause, params

    # ------------------------------------------------------------------
    # Import sessions
    # ------------------------------------------------------------------

    def create_session(self, source_name: str) -> ImportSession:
        with self.connect() as conn:
            cur = conn.execute(
                "INSERT INTO import_sessions (source_name, started_at, status) VALUES (?, ?, 'pending')",
                (source_name, timestamp()),
            )
            conn.commit()
            session_id = int(cur.lastrowid)
        logger.info("Started import session %s for %s", session_id, source_name)
        return self.get_session(session_id)

    def complete_session(
        self, session_id: int, total_rows: int, imported: int, duplicates: int, errors: int
    ) -> ImportSession:
        return self._finalize(
            session_id, ImportStatus.COMPLETED, total_rows, imported, duplicates, errors, None
        )

    def fail_session(
        self,
        session_id: int,
        message: str,
        total_rows: int = 0,
        imported: int = 0,
        duplicates: int = 0,
        errors: int = 0,
    ) -> ImportSession:
        return self._finalize(
            session_id, ImportStatus.FAILED, total_rows, imported, duplicates, errors, message
        )

    def _finalize(
        self,
        session_id: int,
        status: ImportStatus,
        total_rows: int,
        imported: int,
        duplicates: int,
        errors: int,
        message: Optional[str],
    ) -> ImportSession:
        with self.connect() as conn:
            cur = conn.execute(
                "UPDATE import_sessions SET status = ?, completed_at = ?, total_rows = ?, "
                "imported_count = ?, duplicate_count = ?, error_count = ?, error_message = ? "
                "WHERE id = ? AND status = 'pending'",
                (status.value, timestamp(), total_rows, imported, duplicates, errors, message, session_id),
            )
            conn.commit()
            updated = cur.rowcount
        if not updated:
            # Either missing or already terminal
            current = self.get_session(session_id)
            raise StorageError(
                f"Import session {session_id} is already {current.status.value}"
            )
        logger.info(
            "Import session %s %s: %s rows, %s imported, %s duplicates, %s errors",
            session_id, status.value, total_rows, imported, duplicates, errors,
        )
        return self.get_session(session_id)

    def get_session(self, session_id: int) -> ImportSession:
        with self.connect() as conn:
            row = conn.execute(f"{_SESSION_SELECT} WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Import session with ID {session_id} not found")
        return _row_to_session(row)

    def recent_sessions(self, limit: int = 10) -> List[ImportSession]:
        with self.connect() as conn:
            rows = conn.execute(
                f"{_SESSION_SELECT} ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def has_pending_sessions(self) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM import_sessions WHERE status = 'pending'"
            ).fetchone()
        return row[0] > 0

    def import_stats(self) -> Dict[str, Any]:
        sql = """
        SELECT COUNT(*) AS total_sessions,
               COALESCE(SUM(status = 'completed'), 0) AS completed_sessions,
               COALESCE(SUM(status = 'failed'), 0) AS failed_sessions,
               COALESCE(SUM(status = 'pending'), 0) AS pending_sessions,
               COALESCE(SUM(imported_count), 0) AS total_imported,
               COALESCE(SUM(duplicate_count), 0) AS total_duplicates,
               COALESCE(SUM(error_count), 0) AS total_errors
        FROM import_sessions
        """
        with self.connect() as conn:
            stats = dict(conn.execute(sql).fetchone())
        finished = stats['completed_sessions'] + stats['failed_sessions']
        stats['success_rate'] = (stats['completed_sessions'] / finished * 100) if finished else 0.0
        return stats

    def delete_sessions_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Remove finalized sessions started more than ``days`` ago."""
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        cutoff = (now - timedelta(days=days)).isoformat(timespec='seconds')
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM import_sessions WHERE started_at < ? AND status != 'pending'",
                (cutoff,),
            )
            conn.commit()
            removed = cur.rowcount
        if removed:
            logger.info("Removed %s import sessions older than %s days", removed, days)
        return removed
