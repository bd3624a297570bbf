"""
Durable stores backed by SQLite.

Each operation opens its own connection, so the stores are safe to share
across worker threads and processes. Status transitions are a single
conditional UPDATE inside BEGIN IMMEDIATE: the row count decides which
caller won.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from .errors import Conflict, InvalidState, NotFoundError
from .models import AgentAccount, PaymentRecord, PaymentStatus, WalletRecord
from .storage import ensure_private_file


_ACCOUNT_COLUMNS = {"address", "is_active", "updated_at"}
_PAYMENT_COLUMNS = {
    "settlement_id",
    "started_at",
    "completed_at",
    "failure_reason",
    "submitted_tx",
}


class _SqliteBase:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()
        ensure_private_file(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agents (
                    agent_id TEXT PRIMARY KEY,
                    address TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wallets (
                    agent_id TEXT PRIMARY KEY REFERENCES agents (agent_id),
                    address TEXT NOT NULL,
                    encrypted_key TEXT NOT NULL,
                    balance TEXT NOT NULL DEFAULT '0',
                    last_synced_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payments (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    payment_id TEXT NOT NULL UNIQUE,
                    from_agent_id TEXT NOT NULL,
                    to_agent_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL,
                    memo TEXT,
                    privacy_token TEXT,
                    settlement_id TEXT,
                    created_at REAL NOT NULL,
                    started_at REAL,
                    completed_at REAL,
                    failure_reason TEXT,
                    submitted_tx TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_from ON payments (from_agent_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_to ON payments (to_agent_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_status ON payments (status)"
            )


class SqliteAccountStore(_SqliteBase):
    """Agent and wallet tables. Amounts are stored as TEXT to keep uint256 precision."""

    def _row_to_account(self, row: sqlite3.Row) -> AgentAccount:
        return AgentAccount(
            agent_id=row["agent_id"],
            address=row["address"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_active=bool(row["is_active"]),
        )

    def _row_to_wallet(self, row: sqlite3.Row) -> WalletRecord:
        return WalletRecord(
            agent_id=row["agent_id"],
            address=row["address"],
            encrypted_key=row["encrypted_key"],
            balance=int(row["balance"]),
            last_synced_at=row["last_synced_at"],
        )

    def add(self, account: AgentAccount, wallet: WalletRecord) -> None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute(
                "SELECT 1 FROM agents WHERE agent_id = ?", (account.agent_id,)
            ).fetchone()
            if existing is not None:
                conn.execute("ROLLBACK")
                raise Conflict(f"Agent {account.agent_id} already exists")
            conn.execute(
                """
                INSERT INTO agents (agent_id, address, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    account.agent_id,
                    account.address,
                    int(account.is_active),
                    account.created_at,
                    account.updated_at,
                ),
            )
            conn.execute(
                """
                INSERT INTO wallets (agent_id, address, encrypted_key, balance, last_synced_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    wallet.agent_id,
                    wallet.address,
                    wallet.encrypted_key,
                    str(wallet.balance),
                    wallet.last_synced_at,
                ),
            )
            conn.execute("COMMIT")

    def get_account(self, agent_id: str) -> Optional[AgentAccount]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE agent_id = ?", (agent_id,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def get_wallet(self, agent_id: str) -> Optional[WalletRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM wallets WHERE agent_id = ?", (agent_id,)
            ).fetchone()
        return self._row_to_wallet(row) if row else None

    def list_accounts(self) -> list[AgentAccount]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agents ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def update_account(self, agent_id: str, **changes) -> AgentAccount:
        unknown = set(changes) - _ACCOUNT_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update account fields: {sorted(unknown)}")
        if "is_active" in changes:
            changes["is_active"] = int(changes["is_active"])
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                f"UPDATE agents SET {assignments} WHERE agent_id = ?",
                (*changes.values(), agent_id),
            )
            if cur.rowcount == 0:
                conn.execute("ROLLBACK")
                raise NotFoundError(f"Agent {agent_id} not found")
            row = conn.execute(
                "SELECT * FROM agents WHERE agent_id = ?", (agent_id,)
            ).fetchone()
            conn.execute("COMMIT")
        return self._row_to_account(row)

    def update_wallet_balance(self, agent_id: str, balance: int, synced_at: float) -> WalletRecord:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                "UPDATE wallets SET balance = ?, last_synced_at = ? WHERE agent_id = ?",
                (str(balance), synced_at, agent_id),
            )
            if cur.rowcount == 0:
                conn.execute("ROLLBACK")
                raise NotFoundError(f"Wallet not found for agent {agent_id}")
            row = conn.execute(
                "SELECT * FROM wallets WHERE agent_id = ?", (agent_id,)
            ).fetchone()
            conn.execute("COMMIT")
        return self._row_to_wallet(row)


class SqlitePaymentStore(_SqliteBase):
    """Payment table; insertion order is the autoincrement ``seq``."""

    def _row_to_payment(self, row: sqlite3.Row) -> PaymentRecord:
        return PaymentRecord(
            payment_id=row["payment_id"],
            from_agent_id=row["from_agent_id"],
            to_agent_id=row["to_agent_id"],
            amount=int(row["amount"]),
            created_at=row["created_at"],
            status=PaymentStatus(row["status"]),
            memo=row["memo"],
            privacy_token=row["privacy_token"],
            settlement_id=row["settlement_id"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            failure_reason=row["failure_reason"],
            submitted_tx=row["submitted_tx"],
        )

    def insert(self, record: PaymentRecord) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO payments (
                        payment_id, from_agent_id, to_agent_id, amount, status, memo,
                        privacy_token, settlement_id, created_at, started_at,
                        completed_at, failure_reason, submitted_tx
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.payment_id,
                        record.from_agent_id,
                        record.to_agent_id,
                        str(record.amount),
                        record.status.value,
                        record.memo,
                        record.privacy_token,
                        record.settlement_id,
                        record.created_at,
                        record.started_at,
                        record.completed_at,
                        record.failure_reason,
                        record.submitted_tx,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise Conflict(f"Payment {record.payment_id} already exists") from e

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM payments WHERE payment_id = ?", (payment_id,)
            ).fetchone()
        return self._row_to_payment(row) if row else None

    def transition(
        self,
        payment_id: str,
        expected: PaymentStatus,
        new: PaymentStatus,
        **changes,
    ) -> PaymentRecord:
        unknown = set(changes) - _PAYMENT_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update payment fields: {sorted(unknown)}")
        assignments = ", ".join(["status = ?", *(f"{column} = ?" for column in changes)])
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                f"UPDATE payments SET {assignments} WHERE payment_id = ? AND status = ?",
                (new.value, *changes.values(), payment_id, expected.value),
            )
            row = conn.execute(
                "SELECT * FROM payments WHERE payment_id = ?", (payment_id,)
            ).fetchone()
            if cur.rowcount == 0:
                conn.execute("ROLLBACK")
                if row is None:
                    raise NotFoundError(f"Payment {payment_id} not found")
                raise InvalidState(
                    f"Payment {payment_id} is {row['status']}, expected {expected.value}"
                )
            conn.execute("COMMIT")
        return self._row_to_payment(row)

    def record_submission(self, payment_id: str, tx_id: str) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE payments SET submitted_tx = ? WHERE payment_id = ?",
                (tx_id, payment_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Payment {payment_id} not found")

    def list_for_agent(self, agent_id: str) -> list[PaymentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM payments
                WHERE from_agent_id = ? OR to_agent_id = ?
                ORDER BY seq ASC
                """,
                (agent_id, agent_id),
            ).fetchall()
        return [self._row_to_payment(r) for r in rows]

    def list_by_status(self, status: PaymentStatus) -> list[PaymentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM payments WHERE status = ? ORDER BY seq ASC",
                (status.value,),
            ).fetchall()
        return [self._row_to_payment(r) for r in rows]
