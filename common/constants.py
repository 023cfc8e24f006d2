"""
Protocol constants for the fresh-scan relay.
These values are shared by the hub, scanner and display processes and
are not overridable from the environment.
"""

# Freshness policy
FRESHNESS_THRESHOLD_S = 5.0     # Max age of a decoded read before it is rejected

# Timing constants
HEARTBEAT_INTERVAL_S = 30.0             # Persistent-channel heartbeat
HEARTBEAT_TIMEOUT_S = 2 * HEARTBEAT_INTERVAL_S  # Silence longer than this = dead channel
STREAM_POLL_INTERVAL_S = 2.0            # Push-stream store poll
STREAM_HEARTBEAT_INTERVAL_S = 30.0      # Push-stream heartbeat
FALLBACK_POLL_INTERVAL_S = 3.0          # Plain polling fallback
MAX_RECONNECT_ATTEMPTS = 5              # Sync receiver gives up after this many failures
RECONNECT_INITIAL_DELAY_S = 1.0
RECONNECT_MAX_DELAY_S = 16.0
MAX_CONSECUTIVE_READ_FAILURES = 5       # Camera read failures before the session errors out
SIGNAL_WATCH_INTERVAL_S = 0.5           # Cross-tab signal file check

# Wire envelope message types
MSG_CONNECTED = "connected"
MSG_NEW_SCAN = "new-scan"
MSG_HEARTBEAT = "heartbeat"
MSG_ERROR = "error"
MESSAGE_TYPES = (MSG_CONNECTED, MSG_NEW_SCAN, MSG_HEARTBEAT, MSG_ERROR)

# Transport kinds
TRANSPORT_PERSISTENT_CHANNEL = "persistent-channel"
TRANSPORT_PUSH_STREAM = "push-stream"
TRANSPORT_POLLING = "polling"

# Scan session error reasons
REASON_PERMISSION_DENIED = "permission-denied"
REASON_DEVICE_NOT_FOUND = "device-not-found"
REASON_DEVICE_BUSY = "device-busy"
REASON_UNSUPPORTED = "unsupported"
REASON_PERSIST_FAILED = "persist-failed"
REASON_STALE_SCAN = "stale-scan"

# Receiver disconnect reasons
REASON_MANUAL_RETRY_REQUIRED = "manual-retry-required"
REASON_CLOSED = "closed"

# Socket.IO namespace and event for the persistent channel
SCAN_NAMESPACE = "/ws/scans"
SCAN_EVENT = "message"

# QR rendering defaults
CODE_ERROR_CORRECTION_LEVELS = ("L", "M", "Q", "H")
DEFAULT_CODE_SIZE = 256
DEFAULT_CODE_ECL = "H"

# Ports (default)
DEFAULT_HUB_PORT = 5010
