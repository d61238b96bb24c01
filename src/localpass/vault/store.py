# Vault - Persistent Store
#
# SQLite-backed durable storage for the vault:
#   - vault_meta:    flat string key -> string value (vaultInitialized,
#                    vaultTest, masterPasswordHash, preferences)
#   - vault_records: opaque encrypted records keyed by entry id
#
# The store never sees plaintext. One connection is held between open()
# and close(); all access is serialized through an RLock because the idle
# timer may call into the session from another thread.

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from .encryption import EncryptedRecord
from .exceptions import StorageFailure
from .timers import now_ms

logger = logging.getLogger(__name__)

ORDER_COLUMNS = ("created_at", "updated_at")


@dataclass(frozen=True)
class StoredRecord:
    """Store-level wrapper around one encrypted record."""

    id: str
    payload: str
    created_at: int
    updated_at: int

    def record(self) -> EncryptedRecord:
        """Parse the envelope. Raises RecordFormatError if it is malformed."""
        return EncryptedRecord.from_json(self.payload)


class VaultStore:
    """
    Durable key/value metadata plus encrypted record collection.

    Usage::

        store = VaultStore("data/vault.db")
        store.open()
        with store.transaction():
            store.put_record(entry_id, record)
            store.set_item("vaultTest", token.to_json())
        store.close()

    Args:
        db_path: Path to the SQLite file (parent directories are created).
        clock: Millisecond clock for record timestamps.
    """

    def __init__(self, db_path: Union[str, Path], clock: Callable[[], int] = now_ms):
        self.db_path = Path(db_path)
        self._clock = clock
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._tx_depth = 0

    # ── Lifecycle ────────────────────────────────────────────────────

    def open(self) -> "VaultStore":
        with self._lock:
            if self._conn is not None:
                return self
            conn = None
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                    isolation_level=None,  # explicit BEGIN/COMMIT below
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA busy_timeout=5000")
                conn.execute("PRAGMA synchronous=FULL")
                conn.row_factory = sqlite3.Row
                self._init_schema(conn)
            except (sqlite3.Error, OSError) as e:
                if conn is not None:
                    conn.close()
                raise StorageFailure(f"Failed to open vault store: {e}") from e
            self._conn = conn
            logger.debug("Vault store opened at %s", self.db_path)
            return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            finally:
                self._conn = None
                self._tx_depth = 0

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "VaultStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS vault_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS vault_records (
                id TEXT PRIMARY KEY,
                record TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_created ON vault_records(created_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_updated ON vault_records(updated_at)"
        )

    # ── Transactions ─────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["VaultStore"]:
        """
        Group writes into one atomic commit.

        Nested scopes join the outermost one. Any exception rolls back every
        write made inside the outermost scope and propagates.
        """
        with self._lock:
            conn = self._require_conn()
            outermost = self._tx_depth == 0
            if outermost:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise StorageFailure(f"Failed to begin transaction: {e}") from e
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if outermost:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error:
                        logger.exception("Rollback failed")
                raise
            self._tx_depth -= 1
            if outermost:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error:
                        logger.exception("Rollback after failed commit failed")
                    raise StorageFailure(f"Failed to commit transaction: {e}") from e

    # ── Metadata ─────────────────────────────────────────────────────

    def get_item(self, key: str) -> Optional[str]:
        row = self._fetchone("SELECT value FROM vault_meta WHERE key = ?", (key,))
        return None if row is None else row["value"]

    def set_item(self, key: str, value: str) -> None:
        self._execute(
            """INSERT INTO vault_meta (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
            (key, value),
        )

    def delete_item(self, key: str) -> None:
        self._execute("DELETE FROM vault_meta WHERE key = ?", (key,))

    # ── Records ──────────────────────────────────────────────────────

    def put_record(
        self,
        record_id: str,
        record: EncryptedRecord,
        created_at: Optional[int] = None,
    ) -> None:
        """
        Insert or replace an encrypted record.

        created_at: explicit value wins; otherwise an existing row keeps its
        original created_at and a new row gets "now". updated_at is always
        set to "now".
        """
        now = self._clock()
        self._execute(
            """INSERT INTO vault_records (id, record, created_at, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   record = excluded.record,
                   updated_at = excluded.updated_at,
                   created_at = CASE WHEN ? IS NULL
                                     THEN vault_records.created_at
                                     ELSE excluded.created_at END""",
            (
                record_id,
                record.to_json(),
                created_at if created_at is not None else now,
                now,
                created_at,
            ),
        )

    def get_record(self, record_id: str) -> Optional[StoredRecord]:
        row = self._fetchone(
            "SELECT id, record, created_at, updated_at FROM vault_records WHERE id = ?",
            (record_id,),
        )
        return None if row is None else self._row_to_record(row)

    def list_records(self, order_by: str = "created_at") -> List[StoredRecord]:
        """All records in ascending ``order_by`` order (ties broken by id)."""
        if order_by not in ORDER_COLUMNS:
            raise ValueError(f"order_by must be one of {ORDER_COLUMNS}")
        rows = self._fetchall(
            "SELECT id, record, created_at, updated_at FROM vault_records "
            f"ORDER BY {order_by}, id"
        )
        return [self._row_to_record(row) for row in rows]

    def delete_record(self, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        return self._execute("DELETE FROM vault_records WHERE id = ?", (record_id,)) > 0

    def clear_all(self) -> None:
        """Remove every encrypted record. Vault metadata is left intact."""
        self._execute("DELETE FROM vault_records")

    def count_records(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM vault_records")
        return row["n"]

    # ── Internals ────────────────────────────────────────────────────

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageFailure("Vault store is not open")
        return self._conn

    def _execute(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            conn = self._require_conn()
            try:
                return conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise StorageFailure(f"Vault store write failed: {e}") from e

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            conn = self._require_conn()
            try:
                return conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StorageFailure(f"Vault store read failed: {e}") from e

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            conn = self._require_conn()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageFailure(f"Vault store read failed: {e}") from e

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> StoredRecord:
        return StoredRecord(
            id=row["id"],
            payload=row["record"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
