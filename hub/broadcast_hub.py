"""
Broadcast Hub Module

Fans newly persisted scans out to every subscribed display.

Two transport variants share one registry:
- persistent-channel: pushed by publish() the moment a scan is stored,
  plus a hub-wide heartbeat
- push-stream: each stream polls the store on its own timer (see push_stream.py)
"""

import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from common.constants import (
    HEARTBEAT_INTERVAL_S, MSG_CONNECTED, MSG_ERROR, MSG_HEARTBEAT,
    STREAM_HEARTBEAT_INTERVAL_S, STREAM_POLL_INTERVAL_S,
    TRANSPORT_PERSISTENT_CHANNEL, TRANSPORT_PUSH_STREAM
)
from common.envelope import make_envelope, new_scan_envelope
from common.models import ScanRecord
from common.store import ScanStoreError
from hub.push_stream import PushStream

logger = logging.getLogger(__name__)

CATCH_UP_PAGE_SIZE = 100


class HubClosed(Exception):
    """Subscribe attempted on a hub that is not running"""
    pass


class ConnectionStatus(Enum):
    """Subscriber connection states."""
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class SubscriberConnection:
    """
    A display's live registration with the hub.

    last_delivered_id only grows; deliveries at or below it are skipped.
    """
    conn_id: str
    transport_kind: str
    last_delivered_id: int = 0
    send: Optional[Callable[[dict], None]] = None
    close_transport: Optional[Callable[[], None]] = None
    status: ConnectionStatus = ConnectionStatus.OPEN
    ready: bool = False
    created_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_open(self) -> bool:
        return self.status is ConnectionStatus.OPEN

    def close(self):
        """Close the underlying transport (idempotent)."""
        if self.status is not ConnectionStatus.OPEN:
            return
        self.status = ConnectionStatus.CLOSING
        try:
            if self.close_transport:
                self.close_transport()
        except Exception as e:
            logger.warning(f"Error closing subscriber {self.conn_id}: {e}")
        finally:
            self.status = ConnectionStatus.CLOSED

    def mark_closed(self):
        """Record that the transport already went away."""
        self.status = ConnectionStatus.CLOSED


class BroadcastHub:
    """
    Process-wide subscriber registry.

    Constructed once by the hub entry point and passed to the web layer.
    Registry mutations happen under self.lock; delivery iterates a snapshot.
    """

    def __init__(self, store, heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
                 stream_poll_interval: float = STREAM_POLL_INTERVAL_S,
                 stream_heartbeat_interval: float = STREAM_HEARTBEAT_INTERVAL_S):
        """
        Initialize broadcast hub.

        Args:
            store: Append-only scan store (catch-up and push-stream polling)
            heartbeat_interval: Persistent-channel heartbeat period in seconds
            stream_poll_interval: Push-stream store poll period in seconds
            stream_heartbeat_interval: Push-stream heartbeat period in seconds
        """
        self.store = store
        self.heartbeat_interval = heartbeat_interval
        self.stream_poll_interval = stream_poll_interval
        self.stream_heartbeat_interval = stream_heartbeat_interval

        self.lock = threading.Lock()
        self.connections: Dict[str, SubscriberConnection] = {}
        self.running = False

        self._stop_event = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None
        self._stream_ids = itertools.count(1)

        # Statistics
        self.scans_published = 0
        self.messages_delivered = 0
        self.subscribers_dropped = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self):
        """Start the hub and its heartbeat thread."""
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self._heartbeat_thread = threading.Thread(target=self._heartbeat_loop, daemon=True)
        self._heartbeat_thread.start()
        logger.info(f"BroadcastHub started (heartbeat={self.heartbeat_interval}s)")

    def shutdown(self):
        """
        Close every subscriber and stop every timer.

        Safe to call from a signal handler, and more than once.
        """
        self.running = False
        self._stop_event.set()

        with self.lock:
            connections = list(self.connections.values())
            self.connections.clear()

        for conn in connections:
            conn.close()

        if self._heartbeat_thread and self._heartbeat_thread is not threading.current_thread():
            self._heartbeat_thread.join(timeout=2.0)
        self._heartbeat_thread = None

        logger.info(f"BroadcastHub stopped (closed {len(connections)} subscribers, "
                    f"published={self.scans_published}, delivered={self.messages_delivered})")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def subscribe(self, conn_id: str, transport_kind: str, last_known_id: int = 0,
                  send: Optional[Callable[[dict], None]] = None,
                  close_transport: Optional[Callable[[], None]] = None) -> SubscriberConnection:
        """
        Register a subscriber.

        Raises:
            HubClosed: If the hub is not running
        """
        if not self.running:
            raise HubClosed("Broadcast hub is not running")

        conn = SubscriberConnection(
            conn_id=conn_id,
            transport_kind=transport_kind,
            last_delivered_id=max(0, last_known_id),
            send=send,
            close_transport=close_transport,
        )
        with self.lock:
            previous = self.connections.get(conn_id)
            self.connections[conn_id] = conn

        if previous is not None:
            previous.close()

        logger.info(f"Subscriber connected: {conn_id} ({transport_kind}, lastKnownId={conn.last_delivered_id})")
        return conn

    def unsubscribe(self, conn_id: str) -> Optional[SubscriberConnection]:
        """Remove a subscriber whose transport already closed."""
        with self.lock:
            conn = self.connections.pop(conn_id, None)
        if conn is not None:
            conn.mark_closed()
            logger.info(f"Subscriber disconnected: {conn_id}")
        return conn

    def _drop(self, conn: SubscriberConnection, reason: str):
        with self.lock:
            if self.connections.get(conn.conn_id) is conn:
                del self.connections[conn.conn_id]
        conn.close()
        self.subscribers_dropped += 1
        logger.warning(f"Subscriber dropped: {conn.conn_id} ({reason})")

    def snapshot(self, transport_kind: Optional[str] = None) -> List[SubscriberConnection]:
        with self.lock:
            conns = list(self.connections.values())
        if transport_kind:
            conns = [c for c in conns if c.transport_kind == transport_kind]
        return conns

    def get_stats(self) -> dict:
        conns = self.snapshot()
        return {
            'running': self.running,
            'subscribers': len(conns),
            'persistent_channel': sum(1 for c in conns if c.transport_kind == TRANSPORT_PERSISTENT_CHANNEL),
            'push_stream': sum(1 for c in conns if c.transport_kind == TRANSPORT_PUSH_STREAM),
            'scans_published': self.scans_published,
            'messages_delivered': self.messages_delivered,
            'subscribers_dropped': self.subscribers_dropped,
        }

    # ------------------------------------------------------------------
    # Delivery (persistent channel)
    # ------------------------------------------------------------------

    def _send(self, conn: SubscriberConnection, envelope: dict) -> bool:
        if not conn.is_open or conn.send is None:
            return False
        try:
            conn.send(envelope)
        except Exception as e:
            self._drop(conn, f"send failed: {e}")
            return False
        self.messages_delivered += 1
        return True

    def _deliver_locked(self, conn: SubscriberConnection, record: ScanRecord) -> bool:
        # Caller holds conn.lock
        if record.id <= conn.last_delivered_id:
            return False
        if not self._send(conn, new_scan_envelope(record)):
            return False
        conn.last_delivered_id = record.id
        return True

    def deliver(self, conn: SubscriberConnection, record: ScanRecord) -> bool:
        """Push one record to one subscriber if it is newer than what it has."""
        with conn.lock:
            return self._deliver_locked(conn, record)

    def connect(self, conn: SubscriberConnection):
        """
        Acknowledge a persistent-channel subscriber and send its catch-up.

        Sends connected, then catch-up: a fresh subscriber (lastKnownId 0)
        gets only the latest record; a returning one gets every stored
        record newer than its lastKnownId in ascending order. publish()
        skips the connection until this finishes, so live pushes never
        overtake catch-up.
        """
        with conn.lock:
            self._send(conn, make_envelope(MSG_CONNECTED, {
                'message': 'Connected to scan updates',
                'lastKnownId': conn.last_delivered_id,
            }))
            try:
                if conn.last_delivered_id == 0:
                    latest = self.store.latest()
                    if latest is not None:
                        self._deliver_locked(conn, latest)
                else:
                    self._replay_locked(conn)
            except ScanStoreError as e:
                logger.error(f"Catch-up for {conn.conn_id} failed: {e}")
                self._send(conn, make_envelope(MSG_ERROR, {'message': 'Scan store unavailable'}))
            conn.ready = True

    def _replay_locked(self, conn: SubscriberConnection):
        while True:
            batch = self.store.after(conn.last_delivered_id, CATCH_UP_PAGE_SIZE)
            for record in batch:
                self._deliver_locked(conn, record)
            if len(batch) < CATCH_UP_PAGE_SIZE or not conn.is_open:
                break

    def publish(self, record: ScanRecord) -> int:
        """
        Push a newly persisted record to every persistent-channel subscriber.

        Returns:
            Number of subscribers the record was delivered to
        """
        if not self.running:
            logger.warning(f"Publish of scan {record.id} skipped (hub not running)")
            return 0

        self.scans_published += 1
        delivered = 0
        for conn in self.snapshot(TRANSPORT_PERSISTENT_CHANNEL):
            with conn.lock:
                if conn.ready and self._deliver_locked(conn, record):
                    delivered += 1

        logger.info(f"Scan {record.id} published to {delivered} subscriber(s)")
        return delivered

    def send_heartbeats(self) -> int:
        sent = 0
        envelope = make_envelope(MSG_HEARTBEAT)
        for conn in self.snapshot(TRANSPORT_PERSISTENT_CHANNEL):
            with conn.lock:
                if self._send(conn, envelope):
                    sent += 1
        logger.debug(f"Heartbeat sent to {sent} subscriber(s)")
        return sent

    def _heartbeat_loop(self):
        while not self._stop_event.wait(self.heartbeat_interval):
            try:
                self.send_heartbeats()
                status = {"event": "status"}
                status.update(self.get_stats())
                logger.info(json.dumps(status))
            except Exception as e:
                logger.error(f"Heartbeat loop error: {e}")

    # ------------------------------------------------------------------
    # Push stream
    # ------------------------------------------------------------------

    def open_push_stream(self, last_known_id: int = 0) -> PushStream:
        """
        Register a push-stream subscriber and return its stream.

        Raises:
            HubClosed: If the hub is not running
        """
        stream = PushStream(
            self.store,
            poll_interval=self.stream_poll_interval,
            heartbeat_interval=self.stream_heartbeat_interval,
            on_close=self.unsubscribe,
        )
        conn = self.subscribe(
            f"stream-{next(self._stream_ids)}",
            TRANSPORT_PUSH_STREAM,
            last_known_id=last_known_id,
            close_transport=stream.close,
        )
        stream.attach(conn)
        return stream
