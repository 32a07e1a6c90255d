"""
Credit Storage Module.

SQLite-backed credit balances with atomic stored operations. Every mutation
runs in a single write transaction (BEGIN IMMEDIATE) that checks, updates and
records an audit row together, so concurrent deductions for the same user can
never read a stale balance or drive it below zero.

Schema:
  credit_balances      one row per user, balance guarded by CHECK (balance >= 0)
  credit_transactions  append-only audit log, amount signed
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from config import logger
from storage.models import CreditBalance, CreditTransaction, StoreResult


_SCHEMA = """
CREATE TABLE IF NOT EXISTS credit_balances (
    user_id             TEXT PRIMARY KEY,
    balance             INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
    lifetime_purchased  INTEGER NOT NULL DEFAULT 0,
    lifetime_used       INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS credit_transactions (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT NOT NULL,
    amount              INTEGER NOT NULL,
    balance_after       INTEGER NOT NULL,
    transaction_type    TEXT NOT NULL CHECK (transaction_type IN
                            ('welcome_bonus', 'purchase', 'usage', 'refund', 'admin_adjustment')),
    operation_type      TEXT,
    repository_id       TEXT,
    payment_session_id  TEXT,
    payment_intent_id   TEXT,
    description         TEXT,
    created_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_credit_transactions_user
    ON credit_transactions (user_id, created_at DESC);
"""

PURCHASE_TYPES = ("purchase", "welcome_bonus")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteCreditStore:
    """Stores credit balances and their audit log in a local SQLite database.

    One store instance may be shared by concurrent tasks and threads; writes
    are serialized by a lock and by SQLite's write transaction.
    """

    def __init__(self, db_path: str = "sumgit.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._lock = threading.Lock()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    @staticmethod
    def _record(
        conn: sqlite3.Connection,
        user_id: str,
        amount: int,
        balance_after: int,
        transaction_type: str,
        operation_type: Optional[str] = None,
        repository_id: Optional[str] = None,
        payment_session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO credit_transactions
              (user_id, amount, balance_after, transaction_type, operation_type,
               repository_id, payment_session_id, payment_intent_id, description, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                amount,
                balance_after,
                transaction_type,
                operation_type,
                repository_id,
                payment_session_id,
                payment_intent_id,
                description,
                _now(),
            ),
        )

    def deduct_credits(
        self,
        user_id: str,
        amount: int,
        operation_type: str,
        repository_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StoreResult:
        """
        Atomically check the balance and debit amount from it.

        Returns:
            StoreResult: success False with the unchanged balance if funds are short
        """
        if amount <= 0:
            return StoreResult(False, 0, "Amount must be a positive integer")

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT balance FROM credit_balances WHERE user_id=?", (user_id,)
            ).fetchone()
            if row is None:
                return StoreResult(False, 0, "No credit balance found for user")

            balance = row["balance"]
            if balance < amount:
                return StoreResult(False, balance, "Insufficient credits")

            new_balance = balance - amount
            conn.execute(
                """
                UPDATE credit_balances
                SET balance=?, lifetime_used=lifetime_used + ?, updated_at=?
                WHERE user_id=?
                """,
                (new_balance, amount, _now(), user_id),
            )
            self._record(
                conn,
                user_id,
                -amount,
                new_balance,
                "usage",
                operation_type=operation_type,
                repository_id=repository_id,
                description=description,
            )
            return StoreResult(True, new_balance)

    def refund_credits(
        self,
        user_id: str,
        amount: int,
        operation_type: str,
        description: Optional[str] = None,
    ) -> StoreResult:
        """Atomically credit back amount for a failed operation."""
        if amount <= 0:
            return StoreResult(False, 0, "Amount must be a positive integer")

        with self._transaction() as conn:
            row = conn.execute(
                """
                UPDATE credit_balances
                SET balance=balance + ?, lifetime_used=MAX(0, lifetime_used - ?), updated_at=?
                WHERE user_id=?
                RETURNING balance
                """,
                (amount, amount, _now(), user_id),
            ).fetchone()
            if row is None:
                return StoreResult(False, 0, "No credit balance found for user")

            self._record(
                conn,
                user_id,
                amount,
                row["balance"],
                "refund",
                operation_type=operation_type,
                description=description or f"Refund for failed {operation_type}",
            )
            return StoreResult(True, row["balance"])

    def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: str,
        payment_session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StoreResult:
        """Atomically add credits, creating the balance row on first grant."""
        if amount <= 0:
            return StoreResult(False, 0, "Amount must be a positive integer")

        purchased = amount if transaction_type in PURCHASE_TYPES else 0
        now = _now()
        with self._transaction() as conn:
            row = conn.execute(
                """
                INSERT INTO credit_balances
                  (user_id, balance, lifetime_purchased, lifetime_used, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                ON CONFLICT (user_id) DO UPDATE
                SET balance=balance + excluded.balance,
                    lifetime_purchased=lifetime_purchased + excluded.lifetime_purchased,
                    updated_at=excluded.updated_at
                RETURNING balance
                """,
                (user_id, amount, purchased, now, now),
            ).fetchone()
            self._record(
                conn,
                user_id,
                amount,
                row["balance"],
                transaction_type,
                payment_session_id=payment_session_id,
                payment_intent_id=payment_intent_id,
                description=description or f"Added {amount} credits",
            )
            return StoreResult(True, row["balance"])

    def get_balance(self, user_id: str) -> Optional[CreditBalance]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM credit_balances WHERE user_id=?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return CreditBalance(
            user_id=row["user_id"],
            balance=row["balance"],
            lifetime_purchased=row["lifetime_purchased"],
            lifetime_used=row["lifetime_used"],
            updated_at=row["updated_at"],
        )

    def list_transactions(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        """Return a user's transactions, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM credit_transactions WHERE user_id=?
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            ).fetchall()
        return [CreditTransaction(**dict(row)) for row in rows]

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.warning({"message": "Failed to close credit store", "error": str(e)})
