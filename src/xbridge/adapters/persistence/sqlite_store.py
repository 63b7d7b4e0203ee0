# src/xbridge/adapters/persistence/sqlite_store.py
"""
SQLite Intent Store - Durable Intents, Nonces and Price History

This module persists intents, consumed nonces and the oracle's price log in
a single SQLite database (WAL journal). Uniqueness of nonces and deposit
references is enforced by the schema, not by check-then-insert, so two
concurrent submissions of the same envelope cannot both be accepted.

Every write runs in its own transaction; a failed write leaves no partial
intent behind.

Files that USE this module:
- xbridge.app (constructs the store from settings.database_path)
- tests.test_sqlite_store (unit tests)
- tests.conftest (in-memory store fixture)

Files that this module USES:
- xbridge.domain.models (Intent, PriceRecord and enums)
- xbridge.domain.errors (ReplayError, DuplicateDepositError, StoreUnavailableError)
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from xbridge.domain.errors import DuplicateDepositError, ReplayError, StoreUnavailableError
from xbridge.domain.models import (
    Intent,
    IntentStatus,
    PriceReason,
    PriceRecord,
    SwapDirection,
    SwapIntentPayload,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS intents (
    intent_id TEXT PRIMARY KEY,
    direction TEXT NOT NULL,
    source_address TEXT NOT NULL,
    source_tx_hash TEXT NOT NULL UNIQUE,
    amount_in REAL NOT NULL,
    target_address TEXT NOT NULL,
    target_tx_hash TEXT,
    amount_out REAL,
    min_amount_out REAL NOT NULL,
    quoted_amount_out REAL NOT NULL,
    status TEXT NOT NULL,
    expiry INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    fulfilled_at INTEGER,
    error TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    payout_tx_hash TEXT,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_intents_source_address ON intents(source_address);
CREATE INDEX IF NOT EXISTS idx_intents_target_address ON intents(target_address);
CREATE INDEX IF NOT EXISTS idx_intents_status ON intents(status);
CREATE INDEX IF NOT EXISTS idx_intents_created_at ON intents(created_at);

CREATE TABLE IF NOT EXISTS nonces (
    nonce TEXT PRIMARY KEY,
    intent_id TEXT
);

CREATE TABLE IF NOT EXISTS oracle_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    rate REAL NOT NULL,
    timestamp INTEGER NOT NULL,
    reason TEXT NOT NULL,
    volume REAL,
    direction TEXT
);

CREATE INDEX IF NOT EXISTS idx_oracle_history_timestamp ON oracle_history(timestamp);
"""

# Columns update() may touch; everything else is fixed at creation
UPDATABLE = frozenset({
    "status",
    "target_tx_hash",
    "amount_out",
    "fulfilled_at",
    "error",
    "attempts",
    "payout_tx_hash",
})


class SqliteIntentStore:
    """
    IntentStore backed by SQLite.

    Args:
        path: Database file, or ":memory:" for a private in-memory database
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            if self.path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            logger.error("Failed to open intent store at %s: %s", self.path, e)
            raise StoreUnavailableError(f"Failed to open intent store: {e}") from e
        logger.info("SQLite intent store initialized at: %s", self.path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                logger.error("Intent store write failed: %s", e)
                raise StoreUnavailableError(f"Intent store write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error("Intent store read failed: %s", e)
                raise StoreUnavailableError(f"Intent store read failed: {e}") from e

    def ping(self) -> None:
        self._query("SELECT 1")

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def create(self, intent: Intent) -> None:
        """
        Insert the intent's nonce and the intent in one transaction.

        Raises:
            ReplayError: Nonce already consumed
            DuplicateDepositError: source_tx_hash already bound to an intent
            StoreUnavailableError: Any other database failure
        """
        try:
            with self._transaction() as conn:
                try:
                    conn.execute(
                        "INSERT INTO nonces (nonce, intent_id) VALUES (?, ?)",
                        (intent.payload.nonce, intent.intent_id),
                    )
                except sqlite3.IntegrityError as e:
                    raise ReplayError(f"Nonce already used: {intent.payload.nonce}") from e
                try:
                    conn.execute(
                        """
                        INSERT INTO intents (
                            intent_id, direction, source_address, source_tx_hash, amount_in,
                            target_address, target_tx_hash, amount_out, min_amount_out,
                            quoted_amount_out, status, expiry, created_at, fulfilled_at,
                            error, attempts, payout_tx_hash, payload
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        _intent_params(intent),
                    )
                except sqlite3.IntegrityError as e:
                    raise DuplicateDepositError(intent.source_tx_hash) from e
        except (ReplayError, DuplicateDepositError) as e:
            logger.info("Intent %s not stored: %s", intent.intent_id, e)
            raise

    def get_by_id(self, intent_id: str) -> Optional[Intent]:
        rows = self._query("SELECT * FROM intents WHERE intent_id = ?", (intent_id,))
        return _row_to_intent(rows[0]) if rows else None

    def get_by_source_tx(self, source_tx_hash: str) -> Optional[Intent]:
        rows = self._query("SELECT * FROM intents WHERE source_tx_hash = ?", (source_tx_hash,))
        return _row_to_intent(rows[0]) if rows else None

    def update(
        self,
        intent_id: str,
        changes: Mapping[str, Any],
        expected_status: Optional[IntentStatus] = None,
    ) -> bool:
        """
        Apply changes to one intent, optionally only if it is still in expected_status.

        Returns:
            True if a row was updated
        """
        unknown = set(changes) - UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update intent fields: {', '.join(sorted(unknown))}")
        if not changes:
            return False

        columns = sorted(changes)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params: list[Any] = [_to_db(changes[c]) for c in columns]
        sql = f"UPDATE intents SET {assignments} WHERE intent_id = ?"
        params.append(intent_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)

        with self._transaction() as conn:
            cursor = conn.execute(sql, tuple(params))
            return cursor.rowcount == 1

    def list_open(self) -> list[Intent]:
        return self._list_status(IntentStatus.OPEN)

    def list_pending(self) -> list[Intent]:
        return self._list_status(IntentStatus.PENDING)

    def _list_status(self, status: IntentStatus) -> list[Intent]:
        rows = self._query(
            "SELECT * FROM intents WHERE status = ? ORDER BY created_at ASC",
            (status.value,),
        )
        return [_row_to_intent(r) for r in rows]

    def list_by_address(self, address: str, limit: int = 50) -> list[Intent]:
        """Intents sent from or paid to address (case-insensitive), newest first."""
        rows = self._query(
            """
            SELECT * FROM intents
            WHERE lower(source_address) = lower(?) OR lower(target_address) = lower(?)
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (address, address, limit),
        )
        return [_row_to_intent(r) for r in rows]

    def list_recent(self, limit: int = 50) -> list[Intent]:
        rows = self._query("SELECT * FROM intents ORDER BY created_at DESC LIMIT ?", (limit,))
        return [_row_to_intent(r) for r in rows]

    # ------------------------------------------------------------------
    # Nonces
    # ------------------------------------------------------------------

    def nonce_exists(self, nonce: str) -> bool:
        return bool(self._query("SELECT 1 FROM nonces WHERE nonce = ?", (nonce,)))

    def insert_nonce(self, nonce: str, intent_id: Optional[str] = None) -> None:
        """
        Raises:
            ReplayError: Nonce already consumed
        """
        try:
            with self._transaction() as conn:
                conn.execute("INSERT INTO nonces (nonce, intent_id) VALUES (?, ?)", (nonce, intent_id))
        except sqlite3.IntegrityError as e:
            raise ReplayError(f"Nonce already used: {nonce}") from e

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    def append_rate(self, record: PriceRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO oracle_history (rate, timestamp, reason, volume, direction) VALUES (?, ?, ?, ?, ?)",
                (
                    record.rate,
                    record.timestamp,
                    record.reason.value,
                    record.volume,
                    record.direction.value if record.direction else None,
                ),
            )

    def rate_tail(self, limit: int = 100) -> list[PriceRecord]:
        """Most recent price records first."""
        rows = self._query("SELECT * FROM oracle_history ORDER BY id DESC LIMIT ?", (limit,))
        return [
            PriceRecord(
                rate=r["rate"],
                timestamp=r["timestamp"],
                reason=PriceReason(r["reason"]),
                volume=r["volume"],
                direction=SwapDirection(r["direction"]) if r["direction"] else None,
            )
            for r in rows
        ]

    def recent_volume(self, window_ms: int, now: Optional[int] = None) -> dict[str, float]:
        """
        Swap volume in the price log over the last window_ms, by direction.

        Volumes are in the direction's input asset.
        """
        if now is None:
            rows = self._query("SELECT MAX(timestamp) AS ts FROM oracle_history")
            now = rows[0]["ts"] or 0
        rows = self._query(
            """
            SELECT direction, SUM(volume) AS total FROM oracle_history
            WHERE reason = ? AND timestamp >= ? AND direction IS NOT NULL
            GROUP BY direction
            """,
            (PriceReason.SWAP.value, now - window_ms),
        )
        volumes = {d.value: 0.0 for d in SwapDirection}
        for r in rows:
            volumes[r["direction"]] = float(r["total"] or 0.0)
        return volumes


def _to_db(value: Any) -> Any:
    if isinstance(value, (IntentStatus, SwapDirection)):
        return value.value
    return value


def _intent_params(intent: Intent) -> tuple:
    return (
        intent.intent_id,
        intent.direction.value,
        intent.source_address,
        intent.source_tx_hash,
        intent.amount_in,
        intent.target_address,
        intent.target_tx_hash,
        intent.amount_out,
        intent.min_amount_out,
        intent.quoted_amount_out,
        intent.status.value,
        intent.expiry,
        intent.created_at,
        intent.fulfilled_at,
        intent.error,
        intent.attempts,
        intent.payout_tx_hash,
        json.dumps(intent.payload.to_json(), ensure_ascii=False),
    )


def _row_to_intent(row: sqlite3.Row) -> Intent:
    return Intent(
        intent_id=row["intent_id"],
        direction=SwapDirection(row["direction"]),
        source_address=row["source_address"],
        source_tx_hash=row["source_tx_hash"],
        amount_in=row["amount_in"],
        target_address=row["target_address"],
        min_amount_out=row["min_amount_out"],
        quoted_amount_out=row["quoted_amount_out"],
        status=IntentStatus(row["status"]),
        expiry=row["expiry"],
        created_at=row["created_at"],
        payload=SwapIntentPayload.from_json(json.loads(row["payload"])),
        target_tx_hash=row["target_tx_hash"],
        amount_out=row["amount_out"],
        fulfilled_at=row["fulfilled_at"],
        error=row["error"],
        attempts=row["attempts"],
        payout_tx_hash=row["payout_tx_hash"],
    )
