"""
Decode Loop - camera-to-store scanning session

State machine:
    Idle -> Acquiring -> Streaming -> (Decoded | Stopped | Error) -> Idle

Every iteration runs on the event loop and checks the session token
before doing any work, so stop() takes effect on the next callback no
matter which thread or timer is in flight. Blocking work (camera open,
store insert) runs in the loop's default executor.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from common.constants import (
    FRESHNESS_THRESHOLD_S, MAX_CONSECUTIVE_READ_FAILURES,
    REASON_DEVICE_BUSY, REASON_PERSIST_FAILED, REASON_STALE_SCAN, REASON_UNSUPPORTED
)
from common.models import ScanRecord
from common.store import ScanStoreError
from scanner.camera import CameraError
from scanner.freshness import validate

logger = logging.getLogger(__name__)

OUTCOME_DECODED = "decoded"
OUTCOME_STOPPED = "stopped"
OUTCOME_ERROR = "error"


class ScanState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    STREAMING = "streaming"
    DECODED = "decoded"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class ScanOutcome:
    """Result of one finished scan session."""
    kind: str
    record: Optional[ScanRecord] = None
    reason: Optional[str] = None
    age_s: Optional[float] = None
    message: str = ""

    @classmethod
    def decoded(cls, record: ScanRecord) -> 'ScanOutcome':
        return cls(OUTCOME_DECODED, record=record)

    @classmethod
    def stopped(cls) -> 'ScanOutcome':
        return cls(OUTCOME_STOPPED)

    @classmethod
    def error(cls, reason: str, message: str = "", age_s: Optional[float] = None) -> 'ScanOutcome':
        return cls(OUTCOME_ERROR, reason=reason, age_s=age_s, message=message)


class DecodeLoop:
    """
    One scanner's decode session controller.

    Only one session is active at a time; every finished session
    produces exactly one ScanOutcome.
    """

    def __init__(self, camera, decoder, store, loop,
                 threshold_s: float = FRESHNESS_THRESHOLD_S,
                 frame_interval_s: float = 1.0 / 30,
                 clock: Callable[[], float] = time.time,
                 on_outcome: Optional[Callable[[ScanOutcome], None]] = None,
                 on_persisted: Optional[List[Callable[[ScanRecord], None]]] = None,
                 on_state_change: Optional[Callable[[ScanState], None]] = None):
        """
        Initialize decode loop.

        Args:
            camera: CameraSource (acquire() -> CameraHandle)
            decoder: QrDecoder (decode(frame) -> str | None)
            store: Any ScanStore (SqliteScanStore, ScanApiClient)
            loop: asyncio event loop the session runs on
            threshold_s: Freshness threshold in seconds
            frame_interval_s: Delay between frame iterations
            clock: Wall clock used for capture and validation times
            on_outcome: Called once per finished session
            on_persisted: Listeners called with each newly stored record
            on_state_change: Called on every state transition
        """
        self.camera = camera
        self.decoder = decoder
        self.store = store
        self.loop = loop
        self.threshold_s = threshold_s
        self.frame_interval_s = frame_interval_s
        self.clock = clock
        self.on_outcome = on_outcome
        self.on_persisted: List[Callable[[ScanRecord], None]] = list(on_persisted or [])
        self.on_state_change = on_state_change

        self.state = ScanState.IDLE
        self.last_outcome: Optional[ScanOutcome] = None

        self._token = 0
        self._active = False
        self._handle = None
        self._timer = None
        self._read_failures = 0

        # Statistics
        self.sessions_started = 0
        self.frames_read = 0

    @property
    def active(self) -> bool:
        return self._active

    def add_persisted_listener(self, listener: Callable[[ScanRecord], None]):
        self.on_persisted.append(listener)

    def _set_state(self, state: ScanState):
        if state is self.state:
            return
        logger.debug(f"Decode loop: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start(self):
        """
        Begin a scan session.

        Raises:
            RuntimeError: If a session is already active
        """
        if self._active:
            raise RuntimeError("Scan session already active")

        self._token += 1
        token = self._token
        self._active = True
        self._read_failures = 0
        self.sessions_started += 1
        self._set_state(ScanState.ACQUIRING)

        future = self.loop.run_in_executor(None, self.camera.acquire)
        future.add_done_callback(lambda f: self._on_acquired(token, f))

    def stop(self):
        """End the active session, if any. Safe to call from any state."""
        if not self._active:
            return
        logger.info("Scan session stopped")
        self._finish(ScanOutcome.stopped())

    def _release_camera(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.release()

    def _finish(self, outcome: ScanOutcome):
        # Invalidates every pending callback of this session
        self._token += 1
        self._active = False
        self._release_camera()

        terminal = {
            OUTCOME_DECODED: ScanState.DECODED,
            OUTCOME_STOPPED: ScanState.STOPPED,
        }.get(outcome.kind, ScanState.ERROR)
        self._set_state(terminal)
        self._set_state(ScanState.IDLE)

        self.last_outcome = outcome
        if self.on_outcome:
            self.on_outcome(outcome)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _on_acquired(self, token: int, future):
        try:
            handle = future.result()
        except CameraError as e:
            if token == self._token:
                logger.error(f"Camera acquisition failed ({e.reason}): {e}")
                self._finish(ScanOutcome.error(e.reason, str(e)))
            return
        except Exception as e:
            if token == self._token:
                logger.error(f"Camera acquisition failed: {e}")
                self._finish(ScanOutcome.error(REASON_UNSUPPORTED, str(e)))
            return

        if token != self._token:
            # Stopped while acquiring
            handle.release()
            return

        self._handle = handle
        self._set_state(ScanState.STREAMING)
        self._timer = self.loop.call_soon(self._tick, token)

    # ------------------------------------------------------------------
    # Per-frame cycle
    # ------------------------------------------------------------------

    def _schedule_next(self, token: int):
        self._timer = self.loop.call_later(self.frame_interval_s, self._tick, token)

    def _tick(self, token: int):
        if token != self._token or self._handle is None:
            return
        self._timer = None

        frame = self._handle.read()
        if frame is None:
            self._read_failures += 1
            if self._read_failures >= MAX_CONSECUTIVE_READ_FAILURES:
                logger.error(f"Camera stopped delivering frames ({self._read_failures} failed reads)")
                self._finish(ScanOutcome.error(REASON_DEVICE_BUSY, "Camera stopped delivering frames"))
                return
            self._schedule_next(token)
            return

        self._read_failures = 0
        self.frames_read += 1

        text = self.decoder.decode(frame)
        if text is None:
            self._schedule_next(token)
            return

        captured_at = self.clock()
        self._release_camera()

        verdict = validate(captured_at, self.clock(), self.threshold_s)
        if not verdict.accepted:
            logger.warning(f"Stale scan rejected (age {verdict.age_s:.1f}s > {self.threshold_s}s)")
            self._finish(ScanOutcome.error(
                REASON_STALE_SCAN, f"Scan is {verdict.age_s:.1f}s old", age_s=verdict.age_s
            ))
            return

        logger.info(f"Code decoded: \"{text[:30]}\" (age {verdict.age_s:.2f}s)")
        future = self.loop.run_in_executor(None, self.store.insert, text, captured_at)
        future.add_done_callback(lambda f: self._on_inserted(token, f))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _on_inserted(self, token: int, future):
        try:
            record = future.result()
        except ScanStoreError as e:
            if token == self._token:
                logger.error(f"Scan could not be persisted: {e}")
                self._finish(ScanOutcome.error(REASON_PERSIST_FAILED, str(e)))
            return
        except Exception as e:
            if token == self._token:
                logger.error(f"Unexpected store error: {e}")
                self._finish(ScanOutcome.error(REASON_PERSIST_FAILED, str(e)))
            return

        self._notify_persisted(record)

        if token != self._token:
            logger.info(f"Scan {record.id} persisted after the session was stopped")
            return
        self._finish(ScanOutcome.decoded(record))

    def _notify_persisted(self, record: ScanRecord):
        for listener in self.on_persisted:
            try:
                listener(record)
            except Exception as e:
                logger.error(f"Persisted listener failed for scan {record.id}: {e}")
