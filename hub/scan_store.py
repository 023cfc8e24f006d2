"""
Scan Storage Module

Append-only SQLite store for accepted scans.
Records are inserted once, never updated and never deleted.
"""

import logging
import os
import sqlite3
import threading
import time
from typing import List, Optional

from common.models import ScanRecord
from common.store import (
    ScanStoreError, StoreUnavailable, WriteFailed, normalize_payload
)

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "SELECT id, data, scanned_at, captured_at FROM scanned_data"


class SqliteScanStore:
    """
    SQLite implementation of the append-only store contract.

    A single connection is shared by the Flask worker threads and the
    push-stream pollers; every statement runs under one lock.
    """

    def __init__(self, db_path: str, clock=time.time):
        """
        Initialize scan storage.

        Args:
            db_path: SQLite database file (":memory:" for an in-process store)
            clock: Store clock used for persisted_at
        """
        self.db_path = db_path
        self.clock = clock
        self.lock = threading.Lock()
        self.db_conn: Optional[sqlite3.Connection] = None

        if db_path != ":memory:":
            directory = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(directory, exist_ok=True)

    def open(self):
        """Open the database and create tables if needed."""
        with self.lock:
            self._connect()
        logger.info(f"Scan storage opened (path: {self.db_path})")

    def close(self):
        """Close the database connection."""
        with self.lock:
            if self.db_conn:
                self.db_conn.close()
                self.db_conn = None
        logger.info("Scan storage closed")

    def _connect(self) -> sqlite3.Connection:
        """Return the open connection, opening it on first use. Caller holds the lock."""
        if self.db_conn is not None:
            return self.db_conn

        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables(conn)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open scan database {self.db_path}: {e}") from e

        self.db_conn = conn
        return conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection):
        # AUTOINCREMENT: ids are never reused
        conn.execute("""
            CREATE TABLE IF NOT EXISTS scanned_data (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                data TEXT NOT NULL CHECK (length(trim(data)) > 0),
                scanned_at REAL NOT NULL,
                captured_at REAL
            )
        """)
        conn.commit()

    @staticmethod
    def _row_to_record(row) -> ScanRecord:
        return ScanRecord(id=row[0], payload=row[1], persisted_at=row[2], captured_at=row[3])

    def insert(self, payload: str, captured_at: Optional[float] = None) -> ScanRecord:
        """
        Insert one scan.

        Raises:
            InvalidPayload: If payload is blank
            StoreUnavailable: If the database cannot be opened
            WriteFailed: On any other persistence error (nothing is left behind)
        """
        payload = normalize_payload(payload)

        with self.lock:
            conn = self._connect()
            persisted_at = self.clock()
            try:
                cursor = conn.execute(
                    "INSERT INTO scanned_data (data, scanned_at, captured_at) VALUES (?, ?, ?)",
                    (payload, persisted_at, captured_at)
                )
                record_id = cursor.lastrowid
                conn.commit()
            except (sqlite3.Error, UnicodeEncodeError) as e:
                conn.rollback()
                raise WriteFailed(f"Insert failed: {e}") from e

        logger.info(f"Scan stored: id={record_id}, payload=\"{payload[:30]}\"")
        return ScanRecord(id=record_id, payload=payload,
                          persisted_at=persisted_at, captured_at=captured_at)

    def _query(self, sql: str, params=()) -> list:
        with self.lock:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise ScanStoreError(f"Query failed: {e}") from e

    def latest(self) -> Optional[ScanRecord]:
        rows = self._query(f"{_SELECT_COLUMNS} ORDER BY id DESC LIMIT 1")
        return self._row_to_record(rows[0]) if rows else None

    def since(self, last_id: int) -> Optional[ScanRecord]:
        """Highest-id record newer than last_id, or None if caught up."""
        rows = self._query(
            f"{_SELECT_COLUMNS} WHERE id > ? ORDER BY id DESC LIMIT 1", (last_id,)
        )
        return self._row_to_record(rows[0]) if rows else None

    def after(self, last_id: int, limit: int = 100) -> List[ScanRecord]:
        """Every record newer than last_id, oldest first."""
        rows = self._query(
            f"{_SELECT_COLUMNS} WHERE id > ? ORDER BY id ASC LIMIT ?", (last_id, limit)
        )
        return [self._row_to_record(row) for row in rows]

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM scanned_data")[0][0]
