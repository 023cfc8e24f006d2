#!/usr/bin/env python3
"""
Scanner - Main Entry Point

Runs the decode loop against a local camera and persists accepted
scans through the hub's HTTP scan API.

In continuous mode a new session starts RESTART_DELAY_S after every
decoded, stale or persist-failed outcome. Camera errors always end
the process; they need an operator.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import (
    REASON_DEVICE_BUSY, REASON_DEVICE_NOT_FOUND, REASON_PERMISSION_DENIED, REASON_UNSUPPORTED
)
from common.logging_config import setup_logging
from common.scan_api import ScanApiClient
from common.tab_signal import TabSignal
from scanner import config
from scanner.camera import CameraSource
from scanner.decode_loop import OUTCOME_DECODED, OUTCOME_STOPPED, DecodeLoop, ScanOutcome
from scanner.decoder import QrDecoder

logger = logging.getLogger(__name__)

CAMERA_REASONS = (REASON_PERMISSION_DENIED, REASON_DEVICE_NOT_FOUND,
                  REASON_DEVICE_BUSY, REASON_UNSUPPORTED)


class ScannerApp:
    """Owns the decode loop and decides what happens after each outcome."""

    def __init__(self, loop, decode_loop: DecodeLoop, continuous: bool = config.CONTINUOUS,
                 restart_delay_s: float = config.RESTART_DELAY_S):
        self.loop = loop
        self.decode_loop = decode_loop
        self.continuous = continuous
        self.restart_delay_s = restart_delay_s
        self.decode_loop.on_outcome = self.handle_outcome

        self.exit_code = 0
        self.scans_accepted = 0
        self._restart_timer = None
        self._stopping = False

    def start(self):
        logger.info("Scanning... hold a code in front of the camera")
        self.decode_loop.start()

    def handle_outcome(self, outcome: ScanOutcome):
        if outcome.kind == OUTCOME_DECODED:
            self.scans_accepted += 1
            logger.info(f"Scan saved: id={outcome.record.id}, payload=\"{outcome.record.payload[:30]}\"")
        elif outcome.kind == OUTCOME_STOPPED:
            return
        else:
            logger.warning(f"Scan failed: {outcome.reason} ({outcome.message})")

        if self._stopping:
            return

        if outcome.reason in CAMERA_REASONS:
            self.exit_code = 1
            self.shutdown()
            return

        if self.continuous:
            self._restart_timer = self.loop.call_later(self.restart_delay_s, self._restart)
        else:
            if outcome.kind != OUTCOME_DECODED:
                self.exit_code = 1
            self.shutdown()

    def _restart(self):
        self._restart_timer = None
        if not self._stopping and not self.decode_loop.active:
            self.decode_loop.start()

    def shutdown(self):
        """Stop scanning and end the event loop (idempotent)."""
        if self._stopping:
            return
        self._stopping = True
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None
        self.decode_loop.stop()
        self.loop.stop()


# Global app instance
app: Optional[ScannerApp] = None


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Shutdown signal received")
    if app:
        app.loop.call_soon_threadsafe(app.shutdown)


def build_app(loop, device, hub_url: str, continuous: bool) -> ScannerApp:
    store = ScanApiClient(hub_url, timeout=config.REQUEST_TIMEOUT_S)
    camera = CameraSource(device, config.CAMERA_WIDTH, config.CAMERA_HEIGHT, config.CAMERA_FPS)
    tab_signal = TabSignal(config.SIGNAL_PATH)

    decode_loop = DecodeLoop(
        camera, QrDecoder(), store, loop,
        threshold_s=config.FRESHNESS_THRESHOLD,
        frame_interval_s=config.FRAME_INTERVAL_S,
        on_persisted=[tab_signal.record_scan],
    )
    return ScannerApp(loop, decode_loop, continuous=continuous)


def main():
    """Main entry point"""
    global app

    parser = argparse.ArgumentParser(description='Scan codes from a camera into the scan hub')
    parser.add_argument('--device', default=config.CAMERA_DEVICE, help='Camera device (index or path)')
    parser.add_argument('--hub-url', default=config.HUB_URL, help='Scan hub base URL')
    parser.add_argument('--continuous', action='store_true', default=config.CONTINUOUS,
                        help='Keep scanning after each outcome')
    args = parser.parse_args()

    setup_logging('scanner', config.LOG_LEVEL, config.LOG_FILE)

    logger.info("=" * 60)
    logger.info("SCANNER STARTING")
    logger.info(f"Camera: {args.device}, hub: {args.hub_url}, continuous: {args.continuous}")
    logger.info("=" * 60)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = build_app(loop, args.device, args.hub_url, args.continuous)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.call_soon(app.start)
        loop.run_forever()
    finally:
        app.decode_loop.stop()
        loop.close()

    logger.info(f"Scanner stopped ({app.scans_accepted} scan(s) saved)")
    sys.exit(app.exit_code)


if __name__ == '__main__':
    main()
