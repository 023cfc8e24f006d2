"""
Wire Envelope

JSON envelope carried by every hub transport:

    {"type": ..., "data": ..., "timestamp": <epoch ms>}

type is one of connected, new-scan, heartbeat, error.
"""

import json
import time
from typing import Any, Dict, Optional, Union

from common.constants import MESSAGE_TYPES, MSG_NEW_SCAN
from common.models import ScanRecord


class EnvelopeError(Exception):
    """Malformed wire message"""
    pass


def make_envelope(msg_type: str, data: Optional[Any] = None) -> Dict[str, Any]:
    """
    Build an envelope dict.

    Raises:
        EnvelopeError: If msg_type is not a known message type
    """
    if msg_type not in MESSAGE_TYPES:
        raise EnvelopeError(f"Unknown message type: {msg_type}")

    envelope = {'type': msg_type, 'timestamp': int(time.time() * 1000)}
    if data is not None:
        envelope['data'] = data
    return envelope


def new_scan_envelope(record: ScanRecord) -> Dict[str, Any]:
    return make_envelope(MSG_NEW_SCAN, record.to_wire())


def parse_envelope(raw: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse and validate an envelope from JSON text or an already-decoded dict.

    Raises:
        EnvelopeError: On invalid JSON, unknown type, or a new-scan without a record
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise EnvelopeError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise EnvelopeError(f"Envelope must be an object, got {type(raw).__name__}")

    msg_type = raw.get('type')
    if msg_type not in MESSAGE_TYPES:
        raise EnvelopeError(f"Unknown message type: {msg_type!r}")

    if msg_type == MSG_NEW_SCAN:
        try:
            ScanRecord.from_dict(raw.get('data') or {})
        except ValueError as e:
            raise EnvelopeError(str(e)) from e

    return raw


def record_from_envelope(envelope: Dict[str, Any]) -> ScanRecord:
    """Extract the ScanRecord carried by a validated new-scan envelope."""
    return ScanRecord.from_dict(envelope['data'])


def to_sse(envelope: Dict[str, Any]) -> str:
    """Format an envelope as one Server-Sent Events frame."""
    return f"data: {json.dumps(envelope)}\n\n"
