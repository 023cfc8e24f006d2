"""
Configuration for the Scan Hub

Protocol timing (heartbeat, poll intervals) comes from common/constants.py
and cannot be overridden via environment variables.
"""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import (
    DEFAULT_CODE_ECL, DEFAULT_CODE_SIZE, DEFAULT_HUB_PORT,
    HEARTBEAT_INTERVAL_S, STREAM_HEARTBEAT_INTERVAL_S, STREAM_POLL_INTERVAL_S
)

# Network
HUB_HOST = os.getenv('HUB_HOST', '0.0.0.0')
HUB_PORT = int(os.getenv('HUB_PORT', str(DEFAULT_HUB_PORT)))
CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')
SECRET_KEY = os.getenv('SECRET_KEY', 'scan-hub-secret-key')

# Storage
DB_PATH = os.getenv('DB_PATH', os.path.join(os.path.expanduser('~'), '.scan_hub', 'scans.db'))

# Broadcast timing - IMMUTABLE (from common/constants.py)
HEARTBEAT_INTERVAL = HEARTBEAT_INTERVAL_S
STREAM_POLL_INTERVAL = STREAM_POLL_INTERVAL_S
STREAM_HEARTBEAT_INTERVAL = STREAM_HEARTBEAT_INTERVAL_S

# Code rendering
CODE_DEFAULT_SIZE = int(os.getenv('CODE_DEFAULT_SIZE', str(DEFAULT_CODE_SIZE)))
CODE_DEFAULT_ECL = os.getenv('CODE_DEFAULT_ECL', DEFAULT_CODE_ECL).upper()

# Logging Configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('LOG_FILE') or None
