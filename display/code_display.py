"""
Code Display - shows the current code in an OpenCV window or a PNG file
"""

import logging
import os
import tempfile
from typing import Optional

import cv2

from common import code_renderer
from common.constants import DEFAULT_CODE_ECL, DEFAULT_CODE_SIZE

logger = logging.getLogger(__name__)

OUTPUT_WINDOW = 'window'
OUTPUT_FILE = 'file'

WINDOW_NAME = "Scan Display"


class CodeDisplay:
    """
    Renders text as a code and presents it.

    In file mode the PNG is replaced atomically so viewers never read a
    partial image.
    """

    def __init__(self, mode: str = OUTPUT_WINDOW, output_path: str = 'current_code.png',
                 size: int = DEFAULT_CODE_SIZE, error_correction: str = DEFAULT_CODE_ECL,
                 window_name: str = WINDOW_NAME):
        if mode not in (OUTPUT_WINDOW, OUTPUT_FILE):
            raise ValueError(f"Unknown output mode: {mode!r}")
        self.mode = mode
        self.output_path = output_path
        self.size = size
        self.error_correction = error_correction
        self.window_name = window_name

        self.current_text: Optional[str] = None
        self.source: Optional[str] = None
        self.renders = 0

    def show(self, text: str, source: str = 'latest-scan'):
        """
        Render text and present it.

        Raises:
            CodeTooLarge: If text does not fit in a code; what is on
                screen stays unchanged
        """
        if self.mode == OUTPUT_FILE:
            self._write_file(text)
        else:
            image = code_renderer.render_bgr(text, self.size, self.error_correction)
            cv2.imshow(self.window_name, image)
            cv2.waitKey(1)

        self.current_text = text
        self.source = source
        self.renders += 1
        logger.info(f"Displaying code ({source}): \"{text[:30]}\"")

    def show_record(self, record):
        self.show(record.payload, 'latest-scan')

    def _write_file(self, text: str):
        png = code_renderer.render_png(text, self.size, self.error_correction)
        directory = os.path.dirname(os.path.abspath(self.output_path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.png')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(png)
            os.replace(tmp_path, self.output_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def poll_key(self) -> int:
        """Pump the window's event queue; returns the pressed key or -1."""
        if self.mode != OUTPUT_WINDOW or self.current_text is None:
            return -1
        key = cv2.waitKey(1)
        return -1 if key < 0 else key & 0xFF

    def close(self):
        if self.mode == OUTPUT_WINDOW and self.current_text is not None:
            cv2.destroyWindow(self.window_name)
