"""
Append-Only Store Contract

Narrow interface every persistence backend implements, plus the
exceptions callers branch on. No business logic lives here.
"""

from typing import List, Optional, Protocol

from common.models import ScanRecord


class ScanStoreError(Exception):
    """Base exception for store errors"""
    pass


class StoreUnavailable(ScanStoreError):
    """The underlying connection could not be obtained"""
    pass


class WriteFailed(ScanStoreError):
    """Any other persistence error during insert"""
    pass


class InvalidPayload(ScanStoreError, ValueError):
    """Payload is empty or whitespace-only"""
    pass


class ScanStore(Protocol):
    """Append-only record store."""

    def insert(self, payload: str, captured_at: Optional[float] = None) -> ScanRecord:
        ...

    def latest(self) -> Optional[ScanRecord]:
        ...

    def since(self, last_id: int) -> Optional[ScanRecord]:
        ...

    def after(self, last_id: int, limit: int = 100) -> List[ScanRecord]:
        ...


def normalize_payload(payload) -> str:
    """
    Validate and trim a payload before insert.

    Raises:
        InvalidPayload: If payload is not a string, is blank, or is not
            encodable as UTF-8 (lone surrogates from JSON escapes)
    """
    if not isinstance(payload, str) or not payload.strip():
        raise InvalidPayload("Scanned payload is empty or invalid")
    try:
        payload.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidPayload(f"Scanned payload is not valid text: {e.reason}") from e
    return payload.strip()


def parse_last_known_id(value) -> int:
    """Parse a lastKnownId parameter; anything unusable counts as 0."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return 0
    return parsed if parsed > 0 else 0
