#!/usr/bin/env python3
"""
Display - Main Entry Point

Shows a fresh UUID code until the first scan arrives, then keeps the
shown code in step with the latest scan through the configured sync
strategy.

Window keys:
    r   manual reconnect (after the receiver gave up)
    s   switch to the next sync strategy
    q   quit
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import uuid
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.connection_manager import ExponentialBackoff, ReconnectPolicy
from common.logging_config import setup_logging
from common.scan_api import ScanApiClient
from common.tab_signal import TabSignal
from display import config
from display.channels import STRATEGIES, create_channel
from display.code_display import OUTPUT_WINDOW, CodeDisplay
from display.sync_receiver import SyncReceiver

logger = logging.getLogger(__name__)

KEY_POLL_INTERVAL_S = 0.05


class DisplayApp:
    """Wires the receiver, the tab-signal watcher and the code display."""

    def __init__(self, loop, receiver: SyncReceiver, code_display: CodeDisplay,
                 tab_signal: Optional[TabSignal] = None):
        self.loop = loop
        self.receiver = receiver
        self.code_display = code_display
        self.tab_signal = tab_signal
        self.watcher = None
        self._key_timer = None
        self._stopping = False

        self.receiver.on_render = self.code_display.show_record

    def start(self):
        self.code_display.show(str(uuid.uuid4()), 'initial-uuid')
        self.receiver.start()
        if self.tab_signal is not None:
            self.watcher = self.tab_signal.watch(self.loop, self.on_signal)
        if self.code_display.mode == OUTPUT_WINDOW:
            self._key_timer = self.loop.call_later(KEY_POLL_INTERVAL_S, self._poll_keys)

    def on_signal(self, data: dict):
        last_scan_id = data.get('lastScanId')
        if isinstance(last_scan_id, int) and last_scan_id <= self.receiver.last_rendered_id:
            return
        self.receiver.wake()

    def next_strategy(self):
        index = STRATEGIES.index(self.receiver.strategy)
        self.receiver.switch_strategy(STRATEGIES[(index + 1) % len(STRATEGIES)])

    def _poll_keys(self):
        self._key_timer = None
        key = self.code_display.poll_key()
        if key == ord('q'):
            self.shutdown()
            return
        if key == ord('r'):
            self.receiver.reconnect()
        elif key == ord('s'):
            self.next_strategy()
        if not self._stopping:
            self._key_timer = self.loop.call_later(KEY_POLL_INTERVAL_S, self._poll_keys)

    def shutdown(self):
        if self._stopping:
            return
        self._stopping = True
        if self._key_timer is not None:
            self._key_timer.cancel()
            self._key_timer = None
        if self.watcher is not None:
            self.watcher.stop()
        self.receiver.close()
        self.code_display.close()
        self.loop.stop()


# Global app instance
app: Optional[DisplayApp] = None


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Shutdown signal received")
    if app:
        app.loop.call_soon_threadsafe(app.shutdown)


def build_app(loop, hub_url: str, strategy: str, output_mode: str, output_path: str) -> DisplayApp:
    store = ScanApiClient(hub_url, timeout=config.REQUEST_TIMEOUT_S)
    policy = ReconnectPolicy(
        backoff=ExponentialBackoff(initial=config.RECONNECT_INITIAL_S, max_delay=config.RECONNECT_MAX_S)
    )
    receiver = SyncReceiver(
        loop,
        channel_factory=lambda kind: create_channel(kind, loop, hub_url, store),
        strategy=strategy,
        policy=policy,
    )
    code_display = CodeDisplay(output_mode, output_path, config.CODE_SIZE, config.CODE_ECL)
    return DisplayApp(loop, receiver, code_display, TabSignal(config.SIGNAL_PATH))


def main():
    """Main entry point"""
    global app

    parser = argparse.ArgumentParser(description='Display the latest scanned code')
    parser.add_argument('--hub-url', default=config.HUB_URL, help='Scan hub base URL')
    parser.add_argument('--strategy', default=config.SYNC_STRATEGY, choices=STRATEGIES,
                        help='Sync strategy')
    parser.add_argument('--output', default=config.OUTPUT_MODE, choices=('window', 'file'),
                        help='Show in a window or write a PNG file')
    parser.add_argument('--output-path', default=config.OUTPUT_PATH, help='PNG path in file mode')
    args = parser.parse_args()

    setup_logging('display', config.LOG_LEVEL, config.LOG_FILE)

    logger.info("=" * 60)
    logger.info("SCAN DISPLAY STARTING")
    logger.info(f"Hub: {args.hub_url}, strategy: {args.strategy}, output: {args.output}")
    logger.info("=" * 60)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = build_app(loop, args.hub_url, args.strategy, args.output, args.output_path)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.call_soon(app.start)
        loop.run_forever()
    finally:
        app.receiver.close()
        loop.close()

    logger.info(f"Display stopped ({app.receiver.records_rendered} code(s) shown)")


if __name__ == '__main__':
    main()
