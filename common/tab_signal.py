"""
Tab Signal - same-host wake-up file

The scanner writes the id of every scan it persists; displays on the
same host watch the file and check for updates as soon as it changes.
Writes are atomic (temp file + os.replace), so a reader never sees a
partial document.
"""

import json
import logging
import os
import tempfile
import time
from typing import Callable, Optional

from common.constants import SIGNAL_WATCH_INTERVAL_S

logger = logging.getLogger(__name__)


class TabSignal:
    """Key/value JSON document shared between processes on one host."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> dict:
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable signal file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def write(self, key: str, value):
        data = self.read()
        data[key] = value
        data['updatedAt'] = int(time.time() * 1000)

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.signal-')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def record_scan(self, record):
        """Persisted-scan listener for the decode loop."""
        try:
            self.write('lastScanId', record.id)
        except OSError as e:
            logger.error(f"Failed to write signal file {self.path}: {e}")

    def fingerprint(self) -> Optional[tuple]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def watch(self, loop, callback: Callable[[dict], None],
              interval: float = SIGNAL_WATCH_INTERVAL_S) -> 'SignalWatcher':
        watcher = SignalWatcher(self, loop, callback, interval)
        watcher.start()
        return watcher


class SignalWatcher:
    """Polls a TabSignal on the event loop and calls back on change."""

    def __init__(self, signal: TabSignal, loop, callback: Callable[[dict], None],
                 interval: float = SIGNAL_WATCH_INTERVAL_S):
        self.signal = signal
        self.loop = loop
        self.callback = callback
        self.interval = interval
        self._timer = None
        self._last = None
        self.running = False

    def start(self):
        if self.running:
            return
        self.running = True
        self._last = self.signal.fingerprint()
        self._timer = self.loop.call_later(self.interval, self._check)

    def stop(self):
        self.running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _check(self):
        if not self.running:
            return
        current = self.signal.fingerprint()
        if current is not None and current != self._last:
            self._last = current
            data = self.signal.read()
            logger.debug(f"Signal changed: {data}")
            self.callback(data)
        else:
            self._last = current
        if self.running:
            self._timer = self.loop.call_later(self.interval, self._check)
