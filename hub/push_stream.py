"""
Push Stream Module

Server-Sent Events variant of the broadcast hub. Each open stream polls
the store on its own interval and emits a new-scan only when a strictly
newer record than the one it last delivered exists.
"""

import logging
import threading
import time
from typing import Callable, Iterator, Optional

from common.constants import (
    MSG_CONNECTED, MSG_ERROR, MSG_HEARTBEAT,
    STREAM_HEARTBEAT_INTERVAL_S, STREAM_POLL_INTERVAL_S
)
from common.envelope import make_envelope, new_scan_envelope, to_sse
from common.store import ScanStoreError

logger = logging.getLogger(__name__)


class PushStream:
    """
    One push-stream subscriber.

    The stream's timers are a single Event.wait() loop, so close()
    stops them immediately from any thread.
    """

    def __init__(self, store, poll_interval: float = STREAM_POLL_INTERVAL_S,
                 heartbeat_interval: float = STREAM_HEARTBEAT_INTERVAL_S,
                 on_close: Optional[Callable[[str], None]] = None,
                 clock=time.monotonic):
        self.store = store
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.on_close = on_close
        self.clock = clock
        self.connection = None
        self._closed = threading.Event()

    def attach(self, connection):
        """Bind the hub's SubscriberConnection for this stream."""
        self.connection = connection

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def last_delivered_id(self) -> int:
        return self.connection.last_delivered_id if self.connection else 0

    def close(self):
        self._closed.set()

    def poll(self) -> Optional[dict]:
        """
        Check the store once.

        Returns:
            new-scan envelope if a newer record exists, error envelope if the
            store failed, otherwise None
        """
        last_id = self.last_delivered_id
        try:
            record = self.store.since(last_id)
        except ScanStoreError as e:
            logger.error(f"Push-stream poll failed: {e}")
            return make_envelope(MSG_ERROR, {'message': 'Scan store unavailable'})

        if record is None or record.id <= last_id:
            return None

        self.connection.last_delivered_id = record.id
        return new_scan_envelope(record)

    def messages(self) -> Iterator[dict]:
        """
        Yield envelopes until the stream is closed.

        The first poll happens one poll interval after connecting.
        """
        conn_id = self.connection.conn_id if self.connection else None
        try:
            yield make_envelope(MSG_CONNECTED, {
                'message': 'Connected to scan updates',
                'lastKnownId': self.last_delivered_id,
            })

            now = self.clock()
            next_poll = now + self.poll_interval
            next_heartbeat = now + self.heartbeat_interval

            while not self.closed:
                timeout = max(0.0, min(next_poll, next_heartbeat) - self.clock())
                if self._closed.wait(timeout):
                    break

                now = self.clock()
                if now >= next_poll:
                    envelope = self.poll()
                    next_poll = now + self.poll_interval
                    if envelope is not None:
                        yield envelope

                if now >= next_heartbeat:
                    next_heartbeat = now + self.heartbeat_interval
                    yield make_envelope(MSG_HEARTBEAT)
        finally:
            self.close()
            if self.on_close and conn_id:
                self.on_close(conn_id)

    def sse(self) -> Iterator[str]:
        """Envelopes formatted as SSE frames."""
        for envelope in self.messages():
            yield to_sse(envelope)
