"""
QR Decoder - single-frame decode with OpenCV
"""

import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class QrDecoder:
    """Wraps cv2.QRCodeDetector; a miss is None, never an exception."""

    def __init__(self):
        self.detector = cv2.QRCodeDetector()

    def decode(self, frame: Optional[np.ndarray]) -> Optional[str]:
        if frame is None:
            return None

        try:
            if frame.ndim == 3:
                frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            text, _points, _ = self.detector.detectAndDecode(frame)
        except cv2.error as e:
            logger.debug(f"Decode error on frame: {e}")
            return None

        if not text or not text.strip():
            return None
        return text
