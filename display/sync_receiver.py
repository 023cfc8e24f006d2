"""
Sync Receiver - keeps a display's code in step with the latest scan

State machine:
    Disconnected -> Connecting -> Connected
    Connecting/Connected --failure--> Error --backoff--> Connecting
    after MAX_RECONNECT_ATTEMPTS failures: Disconnected(manual-retry-required)

Exactly one channel is active. Every channel is opened under a
generation number; callbacks carrying an older generation are ignored,
so a torn-down channel can never touch receiver state.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from common.connection_manager import ReconnectPolicy
from common.constants import (
    HEARTBEAT_TIMEOUT_S, MSG_CONNECTED, MSG_ERROR, MSG_NEW_SCAN,
    REASON_CLOSED, REASON_MANUAL_RETRY_REQUIRED
)
from common.envelope import EnvelopeError, parse_envelope, record_from_envelope
from common.models import ScanRecord
from display.channels import STRATEGIES, ChangeChannel, ChannelError

logger = logging.getLogger(__name__)


class ReceiverState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SyncReceiver:
    """
    Display-side subscriber.

    Runs entirely on one asyncio event loop; channels marshal their
    callbacks onto it.
    """

    def __init__(self, loop, channel_factory: Callable[[str], ChangeChannel], strategy: str,
                 on_render: Optional[Callable[[ScanRecord], None]] = None,
                 on_state_change: Optional[Callable[[ReceiverState], None]] = None,
                 policy: Optional[ReconnectPolicy] = None,
                 heartbeat_timeout: float = HEARTBEAT_TIMEOUT_S,
                 last_rendered_id: int = 0):
        """
        Initialize sync receiver.

        Args:
            loop: asyncio event loop
            channel_factory: Builds a ChangeChannel for a strategy name
            strategy: Initial strategy (persistent-channel, push-stream, polling)
            on_render: Called with each record newer than the last rendered one
            on_state_change: Called on every state transition
            policy: Reconnect policy (attempt cap + backoff)
            heartbeat_timeout: Silence after which a streaming channel is dead
            last_rendered_id: Id already on screen, sent as lastKnownId
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown sync strategy: {strategy!r}")

        self.loop = loop
        self.channel_factory = channel_factory
        self.strategy = strategy
        self.on_render = on_render
        self.on_state_change = on_state_change
        self.policy = policy or ReconnectPolicy()
        self.heartbeat_timeout = heartbeat_timeout

        self.state = ReceiverState.DISCONNECTED
        self.disconnect_reason: Optional[str] = None
        self.last_rendered_id = last_rendered_id
        self.current_record: Optional[ScanRecord] = None

        self.channel: Optional[ChangeChannel] = None
        self.generation = 0
        self._retry_timer = None
        self._liveness_timer = None
        self._last_activity = 0.0

        # Statistics
        self.records_rendered = 0
        self.messages_received = 0
        self.messages_dropped = 0
        self.render_failures = 0

    @property
    def attempts(self) -> int:
        return self.policy.attempts

    def _set_state(self, state: ReceiverState, reason: Optional[str] = None):
        self.disconnect_reason = reason
        if state is self.state:
            return
        logger.info(f"Receiver: {self.state.value} -> {state.value}" + (f" ({reason})" if reason else ""))
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    # ------------------------------------------------------------------
    # Connection control
    # ------------------------------------------------------------------

    def start(self):
        if self.channel is None and self._retry_timer is None:
            self._connect()

    def reconnect(self):
        """Manual retry: reset the attempt counter and connect again."""
        logger.info("Manual reconnect requested")
        self.policy.reset()
        self._teardown()
        self._connect()

    def switch_strategy(self, strategy: str):
        """
        Replace the active channel with another strategy.

        Raises:
            ValueError: If strategy is unknown
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown sync strategy: {strategy!r}")

        logger.info(f"Switching sync strategy: {self.strategy} -> {strategy}")
        self._teardown()
        self.strategy = strategy
        self.policy.reset()
        self._connect()

    def close(self):
        self._teardown()
        self._set_state(ReceiverState.DISCONNECTED, REASON_CLOSED)

    def wake(self):
        """Same-host signal: ask the active channel to check now."""
        if self.channel is not None:
            self.channel.wake(self.last_rendered_id)

    def _connect(self):
        self.generation += 1
        generation = self.generation
        self._set_state(ReceiverState.CONNECTING)

        try:
            self.channel = self.channel_factory(self.strategy)
            self.channel.open(
                self.last_rendered_id,
                on_message=lambda raw: self._on_message(generation, raw),
                on_error=lambda error: self._on_error(generation, error),
            )
        except ChannelError as e:
            self._fail(e)
            return

        self._last_activity = self.loop.time()
        if self.channel.streaming:
            self._liveness_timer = self.loop.call_later(
                self.heartbeat_timeout, self._check_liveness, generation
            )

    def _teardown(self):
        # Bumping the generation invalidates callbacks already queued
        self.generation += 1
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        if self._liveness_timer is not None:
            self._liveness_timer.cancel()
            self._liveness_timer = None
        channel, self.channel = self.channel, None
        if channel is not None:
            channel.close()

    def _fail(self, error: Exception):
        self._teardown()
        self._set_state(ReceiverState.ERROR, str(error))

        delay = self.policy.record_failure()
        if delay is None:
            logger.error(f"Giving up after {self.policy.attempts} failed attempts; manual reconnect required")
            self._set_state(ReceiverState.DISCONNECTED, REASON_MANUAL_RETRY_REQUIRED)
            return

        logger.warning(f"Channel failed ({error}); retry {self.policy.attempts}/"
                       f"{self.policy.max_attempts} in {delay:.1f}s")
        self._retry_timer = self.loop.call_later(delay, self._retry)

    def _retry(self):
        self._retry_timer = None
        self._connect()

    # ------------------------------------------------------------------
    # Channel callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _on_error(self, generation: int, error: Exception):
        if generation != self.generation:
            return
        self._fail(error)

    def _on_message(self, generation: int, raw):
        if generation != self.generation:
            return
        self._last_activity = self.loop.time()
        self.messages_received += 1

        try:
            envelope = parse_envelope(raw)
        except EnvelopeError as e:
            self.messages_dropped += 1
            logger.warning(f"Dropped malformed message: {e}")
            return

        msg_type = envelope['type']
        if msg_type == MSG_CONNECTED:
            self.policy.reset()
            self._set_state(ReceiverState.CONNECTED)
        elif msg_type == MSG_NEW_SCAN:
            self.handle_record(record_from_envelope(envelope))
        elif msg_type == MSG_ERROR:
            logger.warning(f"Hub reported an error: {envelope.get('data')}")

    def _check_liveness(self, generation: int):
        if generation != self.generation:
            return
        idle = self.loop.time() - self._last_activity
        if idle >= self.heartbeat_timeout:
            self._fail(ChannelError(f"No messages for {idle:.0f}s"))
            return
        self._liveness_timer = self.loop.call_later(
            self.heartbeat_timeout - idle, self._check_liveness, generation
        )

    # ------------------------------------------------------------------
    # Redisplay
    # ------------------------------------------------------------------

    def handle_record(self, record: ScanRecord) -> bool:
        """
        Render record if it is newer than what is on screen.

        A failed render leaves last_rendered_id where it was, so the
        record is not counted as shown.

        Returns:
            True if the record was rendered
        """
        if record.id <= self.last_rendered_id:
            return False

        logger.info(f"New scan {record.id}: \"{record.payload[:30]}\"")
        if self.on_render:
            try:
                self.on_render(record)
            except Exception as e:
                self.render_failures += 1
                logger.error(f"Rendering scan {record.id} failed: {e}")
                return False

        self.last_rendered_id = record.id
        self.current_record = record
        self.records_rendered += 1
        return True
