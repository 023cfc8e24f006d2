"""
Configuration for the Scanner

Freshness may be tightened by operators; the default comes from
common/constants.py.
"""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import DEFAULT_HUB_PORT, FRESHNESS_THRESHOLD_S

# Camera Configuration
CAMERA_DEVICE = os.getenv('CAMERA_DEVICE', '/dev/video0')
CAMERA_WIDTH = int(os.getenv('CAMERA_WIDTH', '640'))
CAMERA_HEIGHT = int(os.getenv('CAMERA_HEIGHT', '480'))
CAMERA_FPS = int(os.getenv('CAMERA_FPS', '30'))
FRAME_INTERVAL_S = float(os.getenv('FRAME_INTERVAL_S', str(1.0 / 30)))

# Hub Connection
HUB_URL = os.getenv('HUB_URL', f'http://localhost:{DEFAULT_HUB_PORT}')
REQUEST_TIMEOUT_S = float(os.getenv('REQUEST_TIMEOUT_S', '5.0'))

# Freshness (may only be tightened)
FRESHNESS_THRESHOLD = min(
    float(os.getenv('FRESHNESS_THRESHOLD', str(FRESHNESS_THRESHOLD_S))),
    FRESHNESS_THRESHOLD_S
)

# Scanning mode
SIGNAL_PATH = os.getenv('SIGNAL_PATH', os.path.join(os.path.expanduser('~'), '.scan_hub', 'signal.json'))
CONTINUOUS = os.getenv('CONTINUOUS', 'false').lower() == 'true'
RESTART_DELAY_S = float(os.getenv('RESTART_DELAY_S', '2.0'))

# Logging Configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('LOG_FILE') or None
