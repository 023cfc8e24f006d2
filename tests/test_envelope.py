"""
Tests for the wire envelope, the scan record model and store helpers.
"""

import unittest
import json
import os
import sys

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import MSG_CONNECTED, MSG_HEARTBEAT, MSG_NEW_SCAN
from common.envelope import (
    EnvelopeError, make_envelope, new_scan_envelope, parse_envelope, record_from_envelope, to_sse
)
from common.models import ScanRecord
from common.store import InvalidPayload, normalize_payload, parse_last_known_id


class TestEnvelope(unittest.TestCase):
    """Envelope construction and parsing"""

    def test_make_envelope(self):
        """Envelopes carry type, timestamp and optional data"""
        env = make_envelope(MSG_HEARTBEAT)
        self.assertEqual(env['type'], MSG_HEARTBEAT)
        self.assertIsInstance(env['timestamp'], int)
        self.assertNotIn('data', env)

        env = make_envelope(MSG_CONNECTED, {'lastKnownId': 3})
        self.assertEqual(env['data'], {'lastKnownId': 3})

    def test_unknown_type_rejected(self):
        with self.assertRaises(EnvelopeError):
            make_envelope("shout")

    def test_new_scan_round_trip(self):
        """A new-scan envelope survives JSON text and yields its record"""
        record = ScanRecord(id=12, payload="42", persisted_at=1700000000.5)
        parsed = parse_envelope(json.dumps(new_scan_envelope(record)))

        self.assertEqual(parsed['type'], MSG_NEW_SCAN)
        self.assertEqual(record_from_envelope(parsed), record)

    def test_parse_rejects_bad_input(self):
        """Invalid JSON, non-objects, unknown types and empty records are errors"""
        for raw in ("{nope", "[1, 2]", {'type': 'other'}, {'type': MSG_NEW_SCAN},
                    {'type': MSG_NEW_SCAN, 'data': {'id': 1, 'payload': ' ', 'persistedAt': 1}}):
            with self.assertRaises(EnvelopeError, msg=repr(raw)):
                parse_envelope(raw)

    def test_parse_bytes(self):
        env = parse_envelope(b'{"type": "heartbeat", "timestamp": 1}')
        self.assertEqual(env['type'], MSG_HEARTBEAT)

    def test_sse_frame(self):
        frame = to_sse(make_envelope(MSG_HEARTBEAT))
        self.assertTrue(frame.startswith("data: {"))
        self.assertTrue(frame.endswith("}\n\n"))


class TestScanRecord(unittest.TestCase):
    """Record model"""

    def test_wire_form_omits_captured_at(self):
        record = ScanRecord(id=1, payload="x", persisted_at=5.0, captured_at=4.0)
        self.assertEqual(record.to_wire(), {'id': 1, 'payload': "x", 'persistedAt': 5.0})
        self.assertEqual(record.to_dict()['capturedAt'], 4.0)

    def test_from_dict(self):
        record = ScanRecord.from_dict({'id': "3", 'payload': "abc", 'persistedAt': 2,
                                       'capturedAt': 1})
        self.assertEqual(record.id, 3)
        self.assertEqual(record.captured_at, 1.0)

    def test_from_dict_malformed(self):
        for data in ({}, {'id': 'x', 'payload': 'a', 'persistedAt': 1},
                     {'id': 1, 'payload': 7, 'persistedAt': 1}):
            with self.assertRaises(ValueError):
                ScanRecord.from_dict(data)

    def test_immutable(self):
        record = ScanRecord(id=1, payload="x", persisted_at=1.0)
        with self.assertRaises(Exception):
            record.payload = "y"


class TestStoreHelpers(unittest.TestCase):
    """Payload and lastKnownId normalization"""

    def test_normalize_payload(self):
        self.assertEqual(normalize_payload("  42 \n"), "42")
        for bad in ("", "   ", None, 42):
            with self.assertRaises(InvalidPayload):
                normalize_payload(bad)

    def test_unencodable_payload(self):
        """Lone surrogates are not storable text"""
        with self.assertRaises(InvalidPayload):
            normalize_payload("\ud800abc")

    def test_invalid_payload_is_value_error(self):
        with self.assertRaises(ValueError):
            normalize_payload("")

    def test_parse_last_known_id(self):
        self.assertEqual(parse_last_known_id("7"), 7)
        self.assertEqual(parse_last_known_id(None), 0)
        self.assertEqual(parse_last_known_id("abc"), 0)
        self.assertEqual(parse_last_known_id(-3), 0)


if __name__ == '__main__':
    unittest.main()
