"""
Tests for the same-host signal file.
"""

import unittest
import json
import os
import shutil
import sys
import tempfile

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.models import ScanRecord
from common.tab_signal import TabSignal

from fakes import ManualLoop


class TestTabSignal(unittest.TestCase):
    """Signal file read/write and watching"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, 'sub', 'signal.json')
        self.signal = TabSignal(self.path)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_missing_file_reads_empty(self):
        self.assertEqual(self.signal.read(), {})
        self.assertIsNone(self.signal.fingerprint())

    def test_corrupt_file_reads_empty(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, 'w') as f:
            f.write("{half")
        self.assertEqual(self.signal.read(), {})

    def test_write_merges_keys(self):
        """write() keeps other keys and stamps updatedAt"""
        self.signal.write('a', 1)
        self.signal.write('b', 2)
        data = self.signal.read()
        self.assertEqual(data['a'], 1)
        self.assertEqual(data['b'], 2)
        self.assertIn('updatedAt', data)
        self.assertEqual([n for n in os.listdir(os.path.dirname(self.path))], ['signal.json'])

    def test_record_scan(self):
        self.signal.record_scan(ScanRecord(id=9, payload="x", persisted_at=1.0))
        with open(self.path) as f:
            self.assertEqual(json.load(f)['lastScanId'], 9)

    def test_record_scan_write_failure_logged(self):
        """A write failure is logged and does not raise"""
        blocker = os.path.join(self.tmpdir, 'file')
        with open(blocker, 'w') as f:
            f.write("x")
        signal = TabSignal(os.path.join(blocker, 'signal.json'))
        with self.assertLogs('common.tab_signal', level='ERROR'):
            signal.record_scan(ScanRecord(id=1, payload="x", persisted_at=1.0))

    def test_watcher_fires_on_change(self):
        """The watcher calls back once per change"""
        loop = ManualLoop()
        seen = []
        watcher = self.signal.watch(loop, seen.append, interval=0.5)

        loop.advance(1.0)
        self.assertEqual(seen, [])

        self.signal.write('lastScanId', 3)
        loop.advance(0.5)
        self.assertEqual([d['lastScanId'] for d in seen], [3])

        loop.advance(2.0)
        self.assertEqual(len(seen), 1)

        self.signal.write('lastScanId', 4)
        loop.advance(0.5)
        self.assertEqual([d['lastScanId'] for d in seen], [3, 4])

        watcher.stop()
        self.assertEqual(loop.pending_timers(), [])


if __name__ == '__main__':
    unittest.main()
