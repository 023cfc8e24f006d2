"""
Scan Record Model

The unit of truth shared by the store, the hub and the displays.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ScanRecord:
    """
    One accepted scan, as assigned by the store.

    Immutable once created. Ids are strictly increasing and never reused.
    """
    id: int
    payload: str
    persisted_at: float
    captured_at: Optional[float] = None

    def to_wire(self) -> Dict[str, Any]:
        """Body of a new-scan envelope."""
        return {
            'id': self.id,
            'payload': self.payload,
            'persistedAt': self.persisted_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full record for the HTTP scan API."""
        data = self.to_wire()
        data['capturedAt'] = self.captured_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanRecord':
        """
        Build a record from its wire or API form.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        try:
            record_id = int(data['id'])
            payload = data['payload']
            persisted_at = float(data['persistedAt'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed scan record: {data!r}") from e

        if not isinstance(payload, str) or not payload.strip():
            raise ValueError(f"Scan record {record_id} has an empty payload")

        captured_at = data.get('capturedAt')
        return cls(
            id=record_id,
            payload=payload,
            persisted_at=persisted_at,
            captured_at=float(captured_at) if captured_at is not None else None,
        )
