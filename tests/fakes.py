"""
Test doubles shared by the test modules.

ManualLoop implements the slice of the asyncio event loop API the
client-side components use (call_soon, call_later, call_soon_threadsafe,
run_in_executor, time) with a virtual clock, so timer-driven code runs
deterministically.
"""

import os
import sys
from collections import deque

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.models import ScanRecord
from common.store import normalize_payload
from display.channels import ChannelError


class ManualHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualFuture:
    """Executor future completed by ManualLoop.run_executor_jobs()."""

    def __init__(self, loop):
        self._loop = loop
        self._done = False
        self._result = None
        self._exception = None
        self._callbacks = []

    def done(self):
        return self._done

    def result(self):
        if not self._done:
            raise RuntimeError("Future is not done")
        if self._exception is not None:
            raise self._exception
        return self._result

    def exception(self):
        return self._exception

    def add_done_callback(self, fn):
        if self._done:
            self._loop.call_soon(fn, self)
        else:
            self._callbacks.append(fn)

    def _complete(self, result=None, exception=None):
        self._done = True
        self._result = result
        self._exception = exception
        for fn in self._callbacks:
            self._loop.call_soon(fn, self)
        self._callbacks = []


class ManualLoop:
    """Deterministic stand-in for an asyncio event loop."""

    def __init__(self, start_time: float = 0.0):
        self.now = start_time
        self._ready = deque()
        self._timers = []
        self.executor_jobs = deque()
        self.auto_run_executor = True
        self.stopped = False

    def time(self):
        return self.now

    def call_soon(self, callback, *args):
        handle = ManualHandle(self.now, callback, args)
        self._ready.append(handle)
        return handle

    def call_soon_threadsafe(self, callback, *args):
        return self.call_soon(callback, *args)

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.now + delay, callback, args)
        self._timers.append(handle)
        return handle

    def run_in_executor(self, executor, fn, *args):
        future = ManualFuture(self)
        self.executor_jobs.append((future, fn, args))
        return future

    def stop(self):
        self.stopped = True

    def run_executor_jobs(self):
        """Run queued executor jobs; returns how many ran."""
        ran = 0
        while self.executor_jobs:
            future, fn, args = self.executor_jobs.popleft()
            try:
                result = fn(*args)
            except Exception as e:
                future._complete(exception=e)
            else:
                future._complete(result=result)
            ran += 1
        return ran

    def run_ready(self):
        """Run ready callbacks (and executor jobs if auto) until idle."""
        while True:
            if self.auto_run_executor and self.executor_jobs:
                self.run_executor_jobs()
            if not self._ready:
                break
            handle = self._ready.popleft()
            if not handle.cancelled:
                handle.callback(*handle.args)

    def advance(self, seconds: float):
        """Move the virtual clock forward, firing due timers in order."""
        target = self.now + seconds
        self.run_ready()
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            handle = min(due, key=lambda t: t.when)
            self._timers.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
            self.run_ready()
        self.now = target
        self._timers = [t for t in self._timers if not t.cancelled]

    def pending_timers(self):
        return [t for t in self._timers if not t.cancelled]


class FakeClock:
    """Returns the queued values in order, then repeats the last one."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


class FakeCameraHandle:
    def __init__(self, camera):
        self.camera = camera
        self.released = False

    def read(self):
        self.camera.reads += 1
        if self.camera.frames is None:
            return "frame"
        if not self.camera.frames:
            return None
        return self.camera.frames.pop(0)

    def release(self):
        if self.released:
            return
        self.released = True
        self.camera.held -= 1
        self.camera.releases += 1


class FakeCamera:
    """
    Camera whose frames come from a list (None entries are read failures).

    frames=None yields an endless supply of frames.
    """

    def __init__(self, frames=None, error=None):
        self.frames = frames
        self.error = error
        self.acquisitions = 0
        self.releases = 0
        self.reads = 0
        self.held = 0
        self.max_held = 0
        self.handles = []

    def acquire(self):
        if self.error is not None:
            raise self.error
        self.acquisitions += 1
        self.held += 1
        self.max_held = max(self.max_held, self.held)
        handle = FakeCameraHandle(self)
        self.handles.append(handle)
        return handle


class FakeDecoder:
    """Returns queued results per decode call, then None."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def decode(self, frame):
        self.calls += 1
        if frame is None or not self.results:
            return None
        return self.results.pop(0)


class FakeStore:
    """In-memory append-only store; set fail_with to make every call raise."""

    def __init__(self, clock=lambda: 1000.0):
        self.records = []
        self.clock = clock
        self.fail_with = None
        self.insert_calls = []

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def add(self, *payloads):
        for payload in payloads:
            self.insert(payload)
        self.insert_calls = []

    def insert(self, payload, captured_at=None):
        self.insert_calls.append((payload, captured_at))
        self._check()
        payload = normalize_payload(payload)
        record = ScanRecord(id=len(self.records) + 1, payload=payload,
                            persisted_at=self.clock(), captured_at=captured_at)
        self.records.append(record)
        return record

    def latest(self):
        self._check()
        return self.records[-1] if self.records else None

    def since(self, last_id):
        self._check()
        newer = [r for r in self.records if r.id > last_id]
        return newer[-1] if newer else None

    def after(self, last_id, limit=100):
        self._check()
        return [r for r in self.records if r.id > last_id][:limit]

    def count(self):
        self._check()
        return len(self.records)


class FakeChannel:
    """ChangeChannel double driven by the test."""

    def __init__(self, kind, streaming=True):
        self.kind = kind
        self.streaming = streaming
        self.last_known_id = None
        self.opened = False
        self.closed = False
        self.wakes = []
        self._on_message = None
        self._on_error = None

    def open(self, last_known_id, on_message, on_error):
        self.opened = True
        self.last_known_id = last_known_id
        self._on_message = on_message
        self._on_error = on_error

    def close(self):
        self.closed = True

    def wake(self, last_known_id=None):
        self.wakes.append(last_known_id)

    def deliver(self, raw):
        self._on_message(raw)

    def fail(self, message="connection lost"):
        self._on_error(ChannelError(message))


class FakeChannelFactory:
    def __init__(self, streaming=True):
        self.streaming = streaming
        self.channels = []

    def __call__(self, kind):
        channel = FakeChannel(kind, self.streaming)
        self.channels.append(channel)
        return channel

    @property
    def current(self):
        return self.channels[-1]


class InlineThread:
    """threading.Thread replacement that runs its target on start()."""

    def __init__(self, target=None, args=(), kwargs=None, daemon=None):
        self.target = target
        self.args = args
        self.kwargs = kwargs or {}

    def start(self):
        self.target(*self.args, **self.kwargs)
