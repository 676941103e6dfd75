"""
SQLite-backed stores for statements, transactions and categories.

Every mutation is a single-key upsert. Transaction writes also append to a
change log that the analytics mirror drains (see services/change_feed.py).
"""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence

from core.config import get_settings
from core.exceptions import NotFoundError, PersistenceError
from core.logger import setup_logger
from core.schema import UNASSIGNED, Category, Statement, StatementStatus, Transaction

logger = setup_logger(__name__)

INDEX_WIDTH = 5


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def build_transaction_key(item_date: str, statement_id: str, index: int) -> str:
    """
    Build the per-user ordering key for a transaction.

    Keys sort by date, then statement, then extraction order; embedding the
    statement id keeps keys from different statements apart.
    """
    return f"DATE#{item_date}#TXN#{statement_id}-{index:0{INDEX_WIDTH}d}"


class Database:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().database_path

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, wrap driver errors."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database operation '{operation}' failed: {e}")
            raise PersistenceError(
                f"Database operation '{operation}' failed",
                details={"operation": operation, "error": str(e)}
            )
        finally:
            conn.close()

    def init_db(self) -> None:
        """Initialize database tables."""
        with self._session("init_db") as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS statements (
                    user_id TEXT NOT NULL,
                    statement_id TEXT NOT NULL,
                    document_key TEXT NOT NULL,
                    issuer TEXT NOT NULL,
                    card_last4 TEXT NOT NULL,
                    status TEXT NOT NULL,
                    line_item_count INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, statement_id)
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    user_id TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    statement_id TEXT NOT NULL,
                    issuer TEXT NOT NULL DEFAULT '',
                    card_last4 TEXT NOT NULL DEFAULT '',
                    merchant_raw TEXT NOT NULL,
                    merchant_norm TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    memo TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT 0,
                    manually_updated INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, sk)
                );

                CREATE INDEX IF NOT EXISTS idx_transactions_statement
                    ON transactions (statement_id, sk);

                CREATE TABLE IF NOT EXISTS categories (
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    hints TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, name)
                );

                CREATE TABLE IF NOT EXISTS transaction_changes (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_name TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    image TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
            """)
        logger.info("Database initialized successfully")

    # ---- Statements ---------------------------------------------------------

    def put_statement(self, statement: Statement) -> None:
        """Insert or overwrite a statement record."""
        with self._session("put_statement") as conn:
            conn.execute(
                """
                INSERT INTO statements (user_id, statement_id, document_key, issuer, card_last4,
                                        status, line_item_count, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, statement_id) DO UPDATE SET
                    document_key = excluded.document_key,
                    issuer = excluded.issuer,
                    card_last4 = excluded.card_last4,
                    status = excluded.status,
                    line_item_count = excluded.line_item_count,
                    error = excluded.error,
                    updated_at = excluded.updated_at
                """,
                (
                    statement.user_id, statement.statement_id, statement.document_key,
                    statement.issuer, statement.card_last4, statement.status.value,
                    statement.line_item_count, statement.error,
                    statement.created_at, statement.updated_at,
                )
            )

    def get_statement(self, user_id: str, statement_id: str) -> Optional[Statement]:
        """Fetch one statement, or None."""
        with self._session("get_statement") as conn:
            row = conn.execute(
                "SELECT * FROM statements WHERE user_id = ? AND statement_id = ?",
                (user_id, statement_id)
            ).fetchone()
        return _row_to_statement(row) if row else None

    def update_statement_status(
        self,
        user_id: str,
        statement_id: str,
        status: StatementStatus,
        line_item_count: int,
        error: Optional[str] = None,
    ) -> Statement:
        """Write a statement's status; raises NotFoundError if it does not exist."""
        with self._session("update_statement_status") as conn:
            cursor = conn.execute(
                """
                UPDATE statements
                SET status = ?, line_item_count = ?, error = ?, updated_at = ?
                WHERE user_id = ? AND statement_id = ?
                """,
                (status.value, line_item_count, error, now_iso(), user_id, statement_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Statement {statement_id} not found",
                    details={"user_id": user_id, "statement_id": statement_id}
                )
            row = conn.execute(
                "SELECT * FROM statements WHERE user_id = ? AND statement_id = ?",
                (user_id, statement_id)
            ).fetchone()
        return _row_to_statement(row)

    # ---- Transactions -------------------------------------------------------

    def put_transaction(self, txn: Transaction) -> None:
        """
        Insert or overwrite one transaction and log the change.

        A row with manually_updated set keeps its category, confidence, flag and
        updated_at; only the extracted fields are refreshed.
        """
        with self._session("put_transaction") as conn:
            existed = conn.execute(
                "SELECT 1 FROM transactions WHERE user_id = ? AND sk = ?",
                (txn.user_id, txn.sk)
            ).fetchone() is not None
            conn.execute(
                """
                INSERT INTO transactions (user_id, sk, statement_id, issuer, card_last4,
                                          merchant_raw, merchant_norm, amount, memo, category,
                                          confidence, manually_updated, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, sk) DO UPDATE SET
                    statement_id = excluded.statement_id,
                    issuer = excluded.issuer,
                    card_last4 = excluded.card_last4,
                    merchant_raw = excluded.merchant_raw,
                    merchant_norm = excluded.merchant_norm,
                    amount = excluded.amount,
                    memo = excluded.memo,
                    category = CASE WHEN transactions.manually_updated = 1
                        THEN transactions.category ELSE excluded.category END,
                    confidence = CASE WHEN transactions.manually_updated = 1
                        THEN transactions.confidence ELSE excluded.confidence END,
                    updated_at = CASE WHEN transactions.manually_updated = 1
                        THEN transactions.updated_at ELSE excluded.updated_at END,
                    manually_updated = CASE WHEN transactions.manually_updated = 1
                        THEN 1 ELSE excluded.manually_updated END,
                    created_at = excluded.created_at
                """,
                (
                    txn.user_id, txn.sk, txn.statement_id, txn.issuer, txn.card_last4,
                    txn.merchant_raw, txn.merchant_norm, str(txn.amount), txn.memo, txn.category,
                    txn.confidence, int(txn.manually_updated), txn.created_at, txn.updated_at,
                )
            )
            stored = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? AND sk = ?",
                (txn.user_id, txn.sk)
            ).fetchone()
            self._log_change(conn, "MODIFY" if existed else "INSERT", _row_to_transaction(stored))

    def get_transaction(self, user_id: str, sk: str) -> Optional[Transaction]:
        """Fetch one transaction by key, or None."""
        with self._session("get_transaction") as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? AND sk = ?",
                (user_id, sk)
            ).fetchone()
        return _row_to_transaction(row) if row else None

    def list_transactions(self, user_id: str, statement_id: Optional[str] = None) -> List[Transaction]:
        """List a user's transactions in key order, optionally for one statement."""
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: List[Any] = [user_id]
        if statement_id:
            query += " AND statement_id = ?"
            params.append(statement_id)
        query += " ORDER BY sk"
        with self._session("list_transactions") as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def query_unassigned_transactions(self, user_id: str, statement_id: str) -> List[Transaction]:
        """
        Transactions of a statement still waiting for automatic classification.

        Manually updated rows are excluded even if a user set them back to
        UNASSIGNED.
        """
        with self._session("query_unassigned_transactions") as conn:
            rows = conn.execute(
                """
                SELECT * FROM transactions
                WHERE user_id = ? AND statement_id = ? AND category = ? AND manually_updated = 0
                ORDER BY sk
                """,
                (user_id, statement_id, UNASSIGNED)
            ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def update_transaction_category(
        self,
        user_id: str,
        sk: str,
        category: str,
        confidence: float,
        manually_updated: Optional[bool] = None,
    ) -> Transaction:
        """
        Set a transaction's category and confidence.

        Args:
            user_id: Owning user
            sk: Transaction key
            category: New category name
            confidence: Confidence score in [0, 1]
            manually_updated: New override flag, or None to leave it unchanged

        Returns:
            The updated transaction

        Raises:
            NotFoundError: If the key does not exist
        """
        assignments = "category = ?, confidence = ?, updated_at = ?"
        params: List[Any] = [category, confidence, now_iso()]
        if manually_updated is not None:
            assignments += ", manually_updated = ?"
            params.append(int(manually_updated))

        with self._session("update_transaction_category") as conn:
            cursor = conn.execute(
                f"UPDATE transactions SET {assignments} WHERE user_id = ? AND sk = ?",
                (*params, user_id, sk)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    "Transaction not found",
                    details={"user_id": user_id, "sk": sk}
                )
            row = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? AND sk = ?",
                (user_id, sk)
            ).fetchone()
            txn = _row_to_transaction(row)
            self._log_change(conn, "MODIFY", txn)
        return txn

    def delete_statement_transactions(self, user_id: str, statement_id: str) -> int:
        """Delete every transaction of a statement; returns the number removed."""
        with self._session("delete_statement_transactions") as conn:
            cursor = conn.execute(
                "DELETE FROM transactions WHERE user_id = ? AND statement_id = ?",
                (user_id, statement_id)
            )
            deleted = cursor.rowcount
        logger.info(f"Deleted {deleted} transactions of statement {statement_id}")
        return deleted

    # ---- Categories ---------------------------------------------------------

    def put_category(self, category: Category) -> None:
        """Insert or overwrite a category."""
        with self._session("put_category") as conn:
            conn.execute(
                """
                INSERT INTO categories (user_id, name, active, hints, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, name) DO UPDATE SET
                    active = excluded.active,
                    hints = excluded.hints,
                    updated_at = excluded.updated_at
                """,
                (
                    category.user_id, category.name, int(category.active),
                    json.dumps(category.hints), category.created_at, category.updated_at,
                )
            )

    def get_category(self, user_id: str, name: str) -> Optional[Category]:
        """Fetch one category, or None."""
        with self._session("get_category") as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE user_id = ? AND name = ?",
                (user_id, name)
            ).fetchone()
        return _row_to_category(row) if row else None

    def list_categories(self, user_id: str, active_only: bool = False) -> List[Category]:
        """List a user's categories ordered by name."""
        query = "SELECT * FROM categories WHERE user_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY name"
        with self._session("list_categories") as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [_row_to_category(row) for row in rows]

    def update_category(
        self,
        user_id: str,
        name: str,
        active: Optional[bool] = None,
        hints: Optional[List[str]] = None,
    ) -> Category:
        """Update a category's active flag and/or hints; raises NotFoundError if missing."""
        assignments = ["updated_at = ?"]
        params: List[Any] = [now_iso()]
        if active is not None:
            assignments.append("active = ?")
            params.append(int(active))
        if hints is not None:
            assignments.append("hints = ?")
            params.append(json.dumps(hints))

        with self._session("update_category") as conn:
            cursor = conn.execute(
                f"UPDATE categories SET {', '.join(assignments)} WHERE user_id = ? AND name = ?",
                (*params, user_id, name)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Category {name} not found",
                    details={"user_id": user_id, "name": name}
                )
            row = conn.execute(
                "SELECT * FROM categories WHERE user_id = ? AND name = ?",
                (user_id, name)
            ).fetchone()
        return _row_to_category(row)

    # ---- Change log ---------------------------------------------------------

    def _log_change(self, conn: sqlite3.Connection, event_name: str, txn: Transaction) -> None:
        conn.execute(
            """
            INSERT INTO transaction_changes (event_name, user_id, sk, image, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (event_name, txn.user_id, txn.sk, json.dumps(txn.model_dump(mode="json")), now_iso())
        )

    def pending_changes(self, limit: int = 500) -> List[Dict[str, Any]]:
        """Oldest pending change records first."""
        with self._session("pending_changes") as conn:
            rows = conn.execute(
                """
                SELECT seq, event_name, user_id, sk, image, created_at
                FROM transaction_changes
                ORDER BY seq
                LIMIT ?
                """,
                (limit,)
            ).fetchall()
        return [
            {
                "seq": row["seq"],
                "event_name": row["event_name"],
                "user_id": row["user_id"],
                "sk": row["sk"],
                "image": json.loads(row["image"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def mark_changes_delivered(self, seqs: Sequence[int]) -> None:
        """Drop change records once they have been mirrored."""
        if not seqs:
            return
        placeholders = ", ".join("?" for _ in seqs)
        with self._session("mark_changes_delivered") as conn:
            conn.execute(
                f"DELETE FROM transaction_changes WHERE seq IN ({placeholders})",
                tuple(seqs)
            )


def _row_to_statement(row: sqlite3.Row) -> Statement:
    return Statement(
        user_id=row["user_id"],
        statement_id=row["statement_id"],
        document_key=row["document_key"],
        issuer=row["issuer"],
        card_last4=row["card_last4"],
        status=StatementStatus(row["status"]),
        line_item_count=row["line_item_count"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        user_id=row["user_id"],
        sk=row["sk"],
        statement_id=row["statement_id"],
        issuer=row["issuer"],
        card_last4=row["card_last4"],
        merchant_raw=row["merchant_raw"],
        merchant_norm=row["merchant_norm"],
        amount=Decimal(row["amount"]),
        memo=row["memo"],
        category=row["category"],
        confidence=row["confidence"],
        manually_updated=bool(row["manually_updated"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        user_id=row["user_id"],
        name=row["name"],
        active=bool(row["active"]),
        hints=json.loads(row["hints"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# Global DB instance
_db: Optional[Database] = None


def get_db() -> Database:
    global _db
    if _db is None:
        _db = Database()
        _db.init_db()
    return _db


def reset_db() -> None:
    """Drop the cached database handle (useful for testing)."""
    global _db
    _db = None
