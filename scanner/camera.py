"""
Camera Source - exclusive, scoped access to a capture device

acquire() returns a CameraHandle; the handle's release() is idempotent
and may be called from any thread. A process-wide registry of held
devices makes acquisition exclusive.
"""

import logging
import os
import platform
import threading
from contextlib import contextmanager
from typing import Optional, Set, Union

import cv2
import numpy as np

from common.constants import (
    REASON_DEVICE_BUSY, REASON_DEVICE_NOT_FOUND, REASON_PERMISSION_DENIED, REASON_UNSUPPORTED
)

logger = logging.getLogger(__name__)

# Platform detection
IS_LINUX = platform.system() == 'Linux'

_held_devices: Set[Union[int, str]] = set()
_held_lock = threading.Lock()


class CameraError(Exception):
    """Camera could not be acquired; reason is one of the camera error reasons"""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


def held_devices() -> Set[Union[int, str]]:
    with _held_lock:
        return set(_held_devices)


def parse_device(device) -> Union[int, str]:
    """
    Resolve a device argument to what cv2.VideoCapture expects.

    '/dev/video2' -> 2, '1' -> 1, 1 -> 1. Any other path is returned as-is
    (video file or stream URL).

    Raises:
        CameraError(unsupported): If the argument is empty or not a usable type
    """
    if isinstance(device, bool) or not isinstance(device, (int, str)):
        raise CameraError(REASON_UNSUPPORTED, f"Unsupported camera device: {device!r}")
    if isinstance(device, int):
        if device < 0:
            raise CameraError(REASON_UNSUPPORTED, f"Unsupported camera index: {device}")
        return device

    device = device.strip()
    if not device:
        raise CameraError(REASON_UNSUPPORTED, "Empty camera device")
    if device.isdigit():
        return int(device)

    # V4L2 backend requires integer indices, not device path strings
    if device.startswith('/dev/video'):
        try:
            return int(device[len('/dev/video'):])
        except ValueError:
            raise CameraError(REASON_UNSUPPORTED, f"Unsupported camera device: {device}")
    return device


class CameraHandle:
    """An acquired device. Frames are read until release()."""

    def __init__(self, key: Union[int, str], cap):
        self.key = key
        self._cap = cap
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read(self) -> Optional[np.ndarray]:
        """Current frame, or None if the read failed or the handle is released."""
        with self._lock:
            if self._released:
                return None
            try:
                ok, frame = self._cap.read()
            except cv2.error as e:
                logger.warning(f"Camera {self.key} read error: {e}")
                return None
        return frame if ok else None

    def release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
            try:
                self._cap.release()
            except cv2.error as e:
                logger.warning(f"Camera {self.key} release error: {e}")
            finally:
                with _held_lock:
                    _held_devices.discard(self.key)
        logger.info(f"Camera {self.key} released")


class CameraSource:
    """Opens a capture device with platform-appropriate backend."""

    def __init__(self, device: Union[int, str] = 0, width: int = 640, height: int = 480,
                 fps: int = 30):
        self.device = device
        self.width = width
        self.height = height
        self.fps = fps

    def _device_path(self, key: Union[int, str]) -> Optional[str]:
        if isinstance(key, int):
            return f'/dev/video{key}' if IS_LINUX else None
        if '://' in key:
            return None
        return key

    def _check_access(self, key: Union[int, str]):
        path = self._device_path(key)
        if path is None:
            return
        if not os.path.exists(path):
            raise CameraError(REASON_DEVICE_NOT_FOUND, f"Camera device not found: {path}")
        if not os.access(path, os.R_OK):
            raise CameraError(REASON_PERMISSION_DENIED,
                              f"No read permission on {path} (add user to the 'video' group)")

    def _open(self, key: Union[int, str]):
        if IS_LINUX and isinstance(key, int):
            cap = cv2.VideoCapture(key, cv2.CAP_V4L2)
        else:
            cap = cv2.VideoCapture(key)

        if not cap.isOpened():
            cap.release()
            if self._device_path(key) is None:
                raise CameraError(REASON_DEVICE_NOT_FOUND, f"Failed to open camera {key}")
            raise CameraError(REASON_DEVICE_BUSY, f"Camera {key} exists but could not be opened")

        if isinstance(key, int):
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        return cap

    def acquire(self) -> CameraHandle:
        """
        Open the device exclusively.

        Blocking; the decode loop runs it in an executor.

        Raises:
            CameraError: reason is permission-denied, device-not-found,
                device-busy or unsupported
        """
        key = parse_device(self.device)
        self._check_access(key)

        with _held_lock:
            if key in _held_devices:
                raise CameraError(REASON_DEVICE_BUSY, f"Camera {key} is already in use")
            _held_devices.add(key)

        try:
            cap = self._open(key)
        except CameraError:
            with _held_lock:
                _held_devices.discard(key)
            raise
        except cv2.error as e:
            with _held_lock:
                _held_devices.discard(key)
            raise CameraError(REASON_UNSUPPORTED, f"Camera {key} not supported: {e}") from e

        logger.info(f"Camera {key} acquired ({self.width}x{self.height}@{self.fps}fps)")
        return CameraHandle(key, cap)


@contextmanager
def camera_session(source: CameraSource):
    """Acquire a camera for the duration of a with-block."""
    handle = source.acquire()
    try:
        yield handle
    finally:
        handle.release()
