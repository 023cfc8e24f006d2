"""
Tests for the scanner entry point's outcome handling.
"""

import unittest
import os
import sys

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import REASON_DEVICE_NOT_FOUND, REASON_PERMISSION_DENIED
from common.store import StoreUnavailable
from scanner.camera import CameraError
from scanner.decode_loop import DecodeLoop
from scanner.scanner_app import ScannerApp

from fakes import FakeCamera, FakeClock, FakeDecoder, FakeStore, ManualLoop

T = 1_700_000_000.0
RESTART = 2.0


class ScannerAppTestCase(unittest.TestCase):

    def setUp(self):
        self.loop = ManualLoop()
        self.store = FakeStore()

    def make_app(self, camera, decoder, continuous, clock=None):
        decode_loop = DecodeLoop(camera, decoder, self.store, self.loop,
                                 threshold_s=5.0, frame_interval_s=0.05,
                                 clock=clock or FakeClock(T))
        return ScannerApp(self.loop, decode_loop, continuous=continuous, restart_delay_s=RESTART)


class TestSingleShot(ScannerAppTestCase):
    """One scan, then exit"""

    def test_decoded_exits_cleanly(self):
        """A saved scan ends the loop with exit code 0"""
        app = self.make_app(FakeCamera(), FakeDecoder("42"), continuous=False)
        app.start()
        self.loop.run_ready()

        self.assertEqual([r.payload for r in self.store.records], ["42"])
        self.assertEqual(app.scans_accepted, 1)
        self.assertEqual(app.exit_code, 0)
        self.assertTrue(self.loop.stopped)

    def test_stale_scan_exits_with_error(self):
        """A stale read is not saved and the exit code is 1"""
        app = self.make_app(FakeCamera(), FakeDecoder("42"), continuous=False,
                            clock=FakeClock(T, T + 10.0))
        app.start()
        self.loop.run_ready()

        self.assertEqual(self.store.records, [])
        self.assertEqual(app.exit_code, 1)
        self.assertTrue(self.loop.stopped)


class TestContinuous(ScannerAppTestCase):
    """Continuous scanning"""

    def test_restarts_after_each_scan(self):
        """A new session starts after the restart delay"""
        camera = FakeCamera()
        app = self.make_app(camera, FakeDecoder("42", "43"), continuous=True)
        app.start()
        self.loop.run_ready()

        self.assertEqual(len(self.store.records), 1)
        self.assertFalse(self.loop.stopped)

        self.loop.advance(RESTART - 0.1)
        self.assertEqual(camera.acquisitions, 1)
        self.loop.advance(0.2)

        self.assertEqual(camera.acquisitions, 2)
        self.assertEqual([r.payload for r in self.store.records], ["42", "43"])
        self.assertEqual(camera.max_held, 1)

    def test_restarts_after_persist_failure(self):
        """A failed save is retried by the next session"""
        self.store.fail_with = StoreUnavailable("hub down")
        camera = FakeCamera()
        app = self.make_app(camera, FakeDecoder("42", "42"), continuous=True)
        app.start()
        self.loop.run_ready()
        self.assertEqual(self.store.records, [])

        self.store.fail_with = None
        self.loop.advance(RESTART + 0.1)
        self.assertEqual([r.payload for r in self.store.records], ["42"])
        self.assertEqual(app.exit_code, 0)

    def test_camera_error_ends_process(self):
        """Camera errors stop the scanner even in continuous mode"""
        for reason in (REASON_PERMISSION_DENIED, REASON_DEVICE_NOT_FOUND):
            self.loop = ManualLoop()
            camera = FakeCamera(error=CameraError(reason, "no camera"))
            app = self.make_app(camera, FakeDecoder("42"), continuous=True)
            app.start()
            self.loop.run_ready()

            self.assertEqual(app.exit_code, 1, reason)
            self.assertTrue(self.loop.stopped)
            self.assertEqual(self.loop.pending_timers(), [])

    def test_shutdown_cancels_restart(self):
        """shutdown() cancels a pending restart and is idempotent"""
        camera = FakeCamera()
        app = self.make_app(camera, FakeDecoder("42", "43"), continuous=True)
        app.start()
        self.loop.run_ready()

        app.shutdown()
        app.shutdown()
        self.loop.advance(RESTART * 2)

        self.assertEqual(camera.acquisitions, 1)
        self.assertTrue(self.loop.stopped)
        self.assertFalse(app.decode_loop.active)


if __name__ == '__main__':
    unittest.main()
