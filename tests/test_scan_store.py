"""
Tests for the SQLite scan store.
"""

import unittest
from unittest.mock import MagicMock
import os
import shutil
import sqlite3
import sys
import tempfile

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.store import InvalidPayload, StoreUnavailable, WriteFailed
from hub.scan_store import SqliteScanStore


class TestSqliteScanStore(unittest.TestCase):
    """Append-only store behavior"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.clock_value = 5000.0
        self.store = SqliteScanStore(os.path.join(self.tmpdir, 'scans.db'),
                                     clock=lambda: self.clock_value)
        self.store.open()

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_empty_store(self):
        """An empty store has no latest and nothing since 0"""
        self.assertIsNone(self.store.latest())
        self.assertIsNone(self.store.since(0))
        self.assertEqual(self.store.after(0), [])
        self.assertEqual(self.store.count(), 0)

    def test_insert_assigns_increasing_ids(self):
        """Ids strictly increase"""
        ids = [self.store.insert(f"code-{i}").id for i in range(5)]
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(self.store.count(), 5)

    def test_insert_record_fields(self):
        """Payload is trimmed; persisted_at comes from the store clock"""
        record = self.store.insert("  42  ", captured_at=4998.5)
        self.assertEqual(record.payload, "42")
        self.assertEqual(record.persisted_at, 5000.0)
        self.assertEqual(record.captured_at, 4998.5)
        self.assertEqual(self.store.latest(), record)

    def test_blank_payload_rejected(self):
        """Empty and whitespace payloads raise InvalidPayload and store nothing"""
        for payload in ("", "   ", None, 42):
            with self.assertRaises(InvalidPayload):
                self.store.insert(payload)
        self.assertEqual(self.store.count(), 0)

    def test_unencodable_payload_rejected(self):
        """A lone surrogate cannot be stored as UTF-8 and is rejected"""
        with self.assertRaises(InvalidPayload):
            self.store.insert("\ud800abc")
        self.assertEqual(self.store.count(), 0)
        self.assertEqual(self.store.insert("abc").id, 1)

    def test_since_returns_highest_newer(self):
        """since(id) returns the newest record above id, never one at or below it"""
        for i in range(1, 8):
            self.store.insert(f"code-{i}")

        self.assertEqual(self.store.since(5).id, 7)
        self.assertEqual(self.store.since(6).id, 7)
        self.assertIsNone(self.store.since(7))
        self.assertIsNone(self.store.since(100))

    def test_after_ascending_with_limit(self):
        """after(id) lists newer records oldest first, up to limit"""
        for i in range(1, 6):
            self.store.insert(f"code-{i}")

        self.assertEqual([r.id for r in self.store.after(2)], [3, 4, 5])
        self.assertEqual([r.id for r in self.store.after(0, limit=2)], [1, 2])

    def test_ids_not_reused_after_reopen(self):
        """Ids keep increasing across close/open"""
        first = self.store.insert("a")
        self.store.close()
        self.store.open()
        second = self.store.insert("b")
        self.assertGreater(second.id, first.id)

    def test_memory_store(self):
        """':memory:' works for in-process use"""
        store = SqliteScanStore(":memory:")
        store.open()
        try:
            self.assertEqual(store.insert("x").id, 1)
        finally:
            store.close()

    def test_unavailable(self):
        """A database path that cannot be opened raises StoreUnavailable"""
        store = SqliteScanStore(self.tmpdir)
        with self.assertRaises(StoreUnavailable):
            store.insert("x")

    def test_write_failure_rolls_back(self):
        """A failing insert raises WriteFailed and rolls back"""
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")
        self.store.db_conn = conn

        with self.assertRaises(WriteFailed):
            self.store.insert("x")
        conn.rollback.assert_called_once()


if __name__ == '__main__':
    unittest.main()
