"""
Configuration for the Display
"""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import (
    DEFAULT_CODE_ECL, DEFAULT_CODE_SIZE, DEFAULT_HUB_PORT,
    RECONNECT_INITIAL_DELAY_S, RECONNECT_MAX_DELAY_S, TRANSPORT_PERSISTENT_CHANNEL
)

# Hub Connection
HUB_URL = os.getenv('HUB_URL', f'http://localhost:{DEFAULT_HUB_PORT}')
REQUEST_TIMEOUT_S = float(os.getenv('REQUEST_TIMEOUT_S', '5.0'))

# Sync strategy: persistent-channel | push-stream | polling
SYNC_STRATEGY = os.getenv('SYNC_STRATEGY', TRANSPORT_PERSISTENT_CHANNEL)

# Cross-tab signal (same file the scanner writes)
SIGNAL_PATH = os.getenv('SIGNAL_PATH', os.path.join(os.path.expanduser('~'), '.scan_hub', 'signal.json'))

# Output: window (OpenCV) | file (PNG)
OUTPUT_MODE = os.getenv('OUTPUT_MODE', 'window')
OUTPUT_PATH = os.getenv('OUTPUT_PATH', 'current_code.png')

# Code rendering
CODE_SIZE = int(os.getenv('CODE_SIZE', str(DEFAULT_CODE_SIZE)))
CODE_ECL = os.getenv('CODE_ECL', DEFAULT_CODE_ECL).upper()

# Reconnection backoff
RECONNECT_INITIAL_S = float(os.getenv('RECONNECT_INITIAL_S', str(RECONNECT_INITIAL_DELAY_S)))
RECONNECT_MAX_S = float(os.getenv('RECONNECT_MAX_S', str(RECONNECT_MAX_DELAY_S)))

# Logging Configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('LOG_FILE') or None
