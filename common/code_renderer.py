"""
QR Code Renderer

Pure text -> image functions used by the hub's code endpoints and the
display process.
"""

import base64
import io
import logging

import cv2
import numpy as np
import qrcode
from PIL import Image
from qrcode.constants import (
    ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
)
from qrcode.exceptions import DataOverflowError

from common.constants import DEFAULT_CODE_ECL, DEFAULT_CODE_SIZE

logger = logging.getLogger(__name__)

ERROR_CORRECTION = {
    'L': ERROR_CORRECT_L,
    'M': ERROR_CORRECT_M,
    'Q': ERROR_CORRECT_Q,
    'H': ERROR_CORRECT_H,
}

# Strongest first; long payloads step down until they fit
FALLBACK_ORDER = ('H', 'Q', 'M', 'L')

DARK_COLOR = "#0F172A"
LIGHT_COLOR = "#FFFFFF"
MARGIN_MODULES = 2
MIN_SIZE = 64
MAX_SIZE = 2048


class CodeTooLarge(ValueError):
    """Text does not fit in a QR code at any error correction level"""
    pass


def _validate(text: str, size: int, error_correction: str):
    if not isinstance(text, str) or not text:
        raise ValueError("Cannot render an empty code")
    if error_correction not in ERROR_CORRECTION:
        raise ValueError(f"Unknown error correction level: {error_correction!r}")
    if not MIN_SIZE <= size <= MAX_SIZE:
        raise ValueError(f"Code size must be {MIN_SIZE}-{MAX_SIZE}px, got {size}")


def _fit(text: str, error_correction: str) -> qrcode.QRCode:
    for level in FALLBACK_ORDER[FALLBACK_ORDER.index(error_correction):]:
        qr = qrcode.QRCode(
            error_correction=ERROR_CORRECTION[level],
            box_size=10,
            border=MARGIN_MODULES,
        )
        qr.add_data(text)
        try:
            qr.make(fit=True)
        except (DataOverflowError, ValueError):
            continue
        if level != error_correction:
            logger.warning(f"Code too long for level {error_correction}, rendered at level {level}")
        return qr
    raise CodeTooLarge(f"Text of {len(text.encode('utf-8', 'replace'))} bytes does not fit in a QR code")


def render(text: str, size: int = DEFAULT_CODE_SIZE,
           error_correction: str = DEFAULT_CODE_ECL) -> Image.Image:
    """
    Render text as a square RGB QR code image.

    Args:
        text: Content to encode
        size: Output width/height in pixels
        error_correction: One of L, M, Q, H

    If the text is too long for the requested level, lower levels are
    tried in turn down to L.

    Raises:
        CodeTooLarge: If the text does not fit even at level L
        ValueError: On empty text, unknown level or out-of-range size
    """
    _validate(text, size, error_correction)
    qr = _fit(text, error_correction)

    img = qr.make_image(fill_color=DARK_COLOR, back_color=LIGHT_COLOR).convert("RGB")
    return img.resize((size, size), Image.NEAREST)


def render_png(text: str, size: int = DEFAULT_CODE_SIZE,
               error_correction: str = DEFAULT_CODE_ECL) -> bytes:
    buf = io.BytesIO()
    render(text, size, error_correction).save(buf, format="PNG")
    return buf.getvalue()


def render_data_url(text: str, size: int = DEFAULT_CODE_SIZE,
                    error_correction: str = DEFAULT_CODE_ECL) -> str:
    png = render_png(text, size, error_correction)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def render_bgr(text: str, size: int = DEFAULT_CODE_SIZE,
               error_correction: str = DEFAULT_CODE_ECL) -> np.ndarray:
    """Render as a BGR numpy array for OpenCV display."""
    rgb = np.array(render(text, size, error_correction))
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
