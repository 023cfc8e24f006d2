"""
Scan API Client

HTTP implementation of the append-only store contract, talking to the
hub's /api/scans routes. Used by the scanner to persist reads and by the
display's polling fallback to re-read the latest record.
"""

import logging
from typing import List, Optional

import requests

from common.models import ScanRecord
from common.store import (
    InvalidPayload, ScanStoreError, StoreUnavailable, WriteFailed, normalize_payload
)

logger = logging.getLogger(__name__)


class ScanApiClient:
    """
    Store contract over HTTP.

    Connection failures and timeouts raise StoreUnavailable; any other
    non-success response raises WriteFailed.
    """

    def __init__(self, base_url: str, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        """
        Initialize API client.

        Args:
            base_url: Hub base URL (e.g., http://localhost:5010)
            timeout: Per-request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

        logger.info(f"ScanApiClient initialized (url={self.base_url})")

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise StoreUnavailable(f"Hub unreachable at {url}: {e}") from e
        except requests.RequestException as e:
            raise WriteFailed(f"Request to {url} failed: {e}") from e

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.reason
        return data.get('error', response.reason) if isinstance(data, dict) else response.reason

    def insert(self, payload: str, captured_at: Optional[float] = None) -> ScanRecord:
        payload = normalize_payload(payload)
        body = {'payload': payload}
        if captured_at is not None:
            body['capturedAt'] = captured_at

        response = self._request('POST', '/api/scans', json=body)

        if response.status_code == 400:
            raise InvalidPayload(self._error_text(response))
        if response.status_code == 503:
            raise StoreUnavailable(self._error_text(response))
        if response.status_code != 201:
            raise WriteFailed(f"Insert rejected ({response.status_code}): {self._error_text(response)}")

        try:
            return ScanRecord.from_dict(response.json())
        except ValueError as e:
            raise WriteFailed(f"Hub returned a malformed record: {e}") from e

    def _read_one(self, path: str, params=None) -> Optional[ScanRecord]:
        response = self._request('GET', path, params=params)
        if response.status_code == 204:
            return None
        if response.status_code == 503:
            raise StoreUnavailable(self._error_text(response))
        if response.status_code != 200:
            raise ScanStoreError(f"Read failed ({response.status_code}): {self._error_text(response)}")
        try:
            return ScanRecord.from_dict(response.json())
        except ValueError as e:
            raise ScanStoreError(f"Hub returned a malformed record: {e}") from e

    def latest(self) -> Optional[ScanRecord]:
        return self._read_one('/api/scans/latest')

    def since(self, last_id: int) -> Optional[ScanRecord]:
        return self._read_one('/api/scans/since', params={'lastKnownId': last_id})

    def after(self, last_id: int, limit: int = 100) -> List[ScanRecord]:
        response = self._request('GET', '/api/scans/after',
                                 params={'lastKnownId': last_id, 'limit': limit})
        if response.status_code == 503:
            raise StoreUnavailable(self._error_text(response))
        if response.status_code != 200:
            raise ScanStoreError(f"Read failed ({response.status_code}): {self._error_text(response)}")
        try:
            return [ScanRecord.from_dict(item) for item in response.json().get('records', [])]
        except (ValueError, AttributeError) as e:
            raise ScanStoreError(f"Hub returned malformed records: {e}") from e
