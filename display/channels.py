"""
Change Channels - transport strategies behind one change-notification port

Every channel delivers raw envelopes (JSON strings or dicts) to the
on_message callback and transport failures to on_error. Callbacks are
always invoked on the receiver's event loop; channels that block do so
in their own daemon thread and hand results back with
call_soon_threadsafe.

Channels never reconnect by themselves. Retry pacing belongs to the
SyncReceiver.
"""

import logging
import threading
from typing import Callable, Optional

import requests
import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from common.constants import (
    FALLBACK_POLL_INTERVAL_S, HEARTBEAT_TIMEOUT_S, MSG_CONNECTED, SCAN_EVENT, SCAN_NAMESPACE,
    TRANSPORT_PERSISTENT_CHANNEL, TRANSPORT_POLLING, TRANSPORT_PUSH_STREAM
)
from common.envelope import make_envelope, new_scan_envelope
from common.store import ScanStoreError

logger = logging.getLogger(__name__)

STRATEGIES = (TRANSPORT_PERSISTENT_CHANNEL, TRANSPORT_PUSH_STREAM, TRANSPORT_POLLING)


class ChannelError(Exception):
    """Transport failure; drives the receiver's backoff"""
    pass


class ChangeChannel:
    """
    Base change-notification channel.

    Subclasses implement _start() and _stop(). wake() does a one-shot
    store check so a same-host signal can short-circuit the wait for the
    next push.
    """

    kind: str = ""
    streaming = True

    def __init__(self, loop, store=None):
        self.loop = loop
        self.store = store
        self.last_known_id = 0
        self.closed = False
        self._on_message: Optional[Callable] = None
        self._on_error: Optional[Callable] = None

    def open(self, last_known_id: int, on_message: Callable, on_error: Callable):
        self.last_known_id = last_known_id
        self._on_message = on_message
        self._on_error = on_error
        self.closed = False
        logger.info(f"Opening {self.kind} channel (lastKnownId={last_known_id})")
        self._start()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._stop()
        logger.info(f"{self.kind} channel closed")

    def _start(self):
        raise NotImplementedError

    def _stop(self):
        raise NotImplementedError

    # Thread -> loop marshalling

    def _emit_message(self, raw):
        if not self.closed:
            self.loop.call_soon_threadsafe(self._on_message, raw)

    def _emit_error(self, error: Exception):
        if not self.closed:
            self.loop.call_soon_threadsafe(self._on_error, error)

    def wake(self, last_known_id: Optional[int] = None):
        """Check the store once for anything newer than last_known_id."""
        if self.store is None or self.closed:
            return
        if last_known_id is None:
            last_known_id = self.last_known_id

        future = self.loop.run_in_executor(None, self.store.since, last_known_id)
        future.add_done_callback(self._on_wake_result)

    def _on_wake_result(self, future):
        try:
            record = future.result()
        except ScanStoreError as e:
            logger.warning(f"Wake-up check failed: {e}")
            return
        if record is not None and not self.closed:
            self._on_message(new_scan_envelope(record))


class SocketIOChannel(ChangeChannel):
    """Persistent channel over the hub's Socket.IO namespace."""

    kind = TRANSPORT_PERSISTENT_CHANNEL

    def __init__(self, loop, hub_url: str, store=None, connect_timeout: float = 5.0):
        super().__init__(loop, store)
        self.hub_url = hub_url.rstrip('/')
        self.connect_timeout = connect_timeout
        self.sio: Optional[socketio.Client] = None

    def _setup_handlers(self, sio: socketio.Client):

        @sio.on(SCAN_EVENT, namespace=SCAN_NAMESPACE)
        def on_message(data):
            self._emit_message(data)

        @sio.on('disconnect', namespace=SCAN_NAMESPACE)
        def on_disconnect(*args):
            self._emit_error(ChannelError("Persistent channel disconnected"))

        @sio.on('connect_error', namespace=SCAN_NAMESPACE)
        def on_connect_error(data):
            self._emit_error(ChannelError(f"Persistent channel rejected: {data}"))

    def _start(self):
        # Library reconnection is off; the receiver owns retries
        self.sio = socketio.Client(reconnection=False)
        self._setup_handlers(self.sio)
        threading.Thread(target=self._connect, args=(self.sio,), daemon=True).start()

    def _connect(self, sio: socketio.Client):
        url = f"{self.hub_url}?lastKnownId={self.last_known_id}"
        try:
            sio.connect(
                url,
                auth={'lastKnownId': self.last_known_id},
                namespaces=[SCAN_NAMESPACE],
                wait_timeout=self.connect_timeout,
            )
        except SocketIOConnectionError as e:
            self._emit_error(ChannelError(f"Cannot connect to {self.hub_url}: {e}"))
            return

        if self.closed:
            sio.disconnect()

    def _stop(self):
        sio, self.sio = self.sio, None
        if sio is not None and sio.connected:
            threading.Thread(target=sio.disconnect, daemon=True).start()


class PushStreamChannel(ChangeChannel):
    """Server-Sent Events stream read with requests in a worker thread."""

    kind = TRANSPORT_PUSH_STREAM

    def __init__(self, loop, hub_url: str, store=None, connect_timeout: float = 5.0,
                 read_timeout: float = HEARTBEAT_TIMEOUT_S, session: Optional[requests.Session] = None):
        super().__init__(loop, store)
        self.hub_url = hub_url.rstrip('/')
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        # A session passed in belongs to the caller and stays open
        self._owns_session = session is None
        self.session = session or requests.Session()
        self._response = None

    def _start(self):
        threading.Thread(target=self._read_stream, daemon=True).start()

    def _read_stream(self):
        response = None
        try:
            response = self.session.get(
                f"{self.hub_url}/events",
                params={'lastKnownId': self.last_known_id},
                headers={'Accept': 'text/event-stream'},
                stream=True,
                timeout=(self.connect_timeout, self.read_timeout),
            )
            self._response = response
            if response.status_code != 200:
                raise ChannelError(f"Push stream returned HTTP {response.status_code}")

            for line in response.iter_lines(decode_unicode=True):
                if self.closed:
                    return
                if line and line.startswith('data:'):
                    self._emit_message(line[5:].strip())

            raise ChannelError("Push stream ended")
        except ChannelError as e:
            self._emit_error(e)
        except requests.RequestException as e:
            self._emit_error(ChannelError(f"Push stream failed: {e}"))
        except Exception as e:
            # close() from the loop thread can surface as any urllib3 error
            self._emit_error(ChannelError(f"Push stream error: {e}"))
        finally:
            if response is not None:
                response.close()

    def _stop(self):
        response, self._response = self._response, None
        if response is not None:
            response.close()
        if self._owns_session:
            self.session.close()


class PollingChannel(ChangeChannel):
    """
    Plain polling through the store contract.

    Re-reads latest() every poll interval and synthesizes connected and
    new-scan envelopes. Runs entirely on the event loop; the store call
    goes to the executor.
    """

    kind = TRANSPORT_POLLING
    streaming = False

    def __init__(self, loop, store, poll_interval: float = FALLBACK_POLL_INTERVAL_S):
        super().__init__(loop, store)
        self.poll_interval = poll_interval
        self._timer = None
        self._in_flight = False
        self._acknowledged = False

    def _start(self):
        self._acknowledged = False
        self._poll()

    def _stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def wake(self, last_known_id: Optional[int] = None):
        if self.closed:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._poll()

    def _poll(self):
        self._timer = None
        if self.closed or self._in_flight:
            return
        self._in_flight = True
        future = self.loop.run_in_executor(None, self.store.latest)
        future.add_done_callback(self._on_poll_result)

    def _on_poll_result(self, future):
        self._in_flight = False
        if self.closed:
            return

        try:
            record = future.result()
        except ScanStoreError as e:
            self._on_error(ChannelError(f"Poll failed: {e}"))
            return

        if not self._acknowledged:
            self._acknowledged = True
            self._on_message(make_envelope(MSG_CONNECTED, {'lastKnownId': self.last_known_id}))

        if record is not None and record.id > self.last_known_id:
            self.last_known_id = record.id
            self._on_message(new_scan_envelope(record))

        if not self.closed:
            self._timer = self.loop.call_later(self.poll_interval, self._poll)


def create_channel(kind: str, loop, hub_url: str, store=None) -> ChangeChannel:
    """
    Build the channel for a strategy name.

    Raises:
        ValueError: If kind is not a known strategy
    """
    if kind == TRANSPORT_PERSISTENT_CHANNEL:
        return SocketIOChannel(loop, hub_url, store)
    if kind == TRANSPORT_PUSH_STREAM:
        return PushStreamChannel(loop, hub_url, store)
    if kind == TRANSPORT_POLLING:
        if store is None:
            raise ValueError("Polling strategy needs a store")
        return PollingChannel(loop, store)
    raise ValueError(f"Unknown sync strategy: {kind!r} (expected one of {', '.join(STRATEGIES)})")
