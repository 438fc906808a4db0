"""Sync API client for delivering payloads to the target system."""

import time
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from ..core.config import ApiSettings
from ..exceptions import SyncAuthenticationError, SyncRequestError, TransientTransportError
from ..models.records import SyncAction
from ..services.encryption import EncryptionService

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-SYNCABLE-API-KEY"
API_KEY_ENCRYPTED_HEADER = "X-SYNCABLE-API-KEY-ENCRYPTED"

ENDPOINTS = {
    "create": "/api/syncable/create",
    "update": "/api/syncable/update",
    "delete": "/api/syncable/delete",
    "batch": "/api/syncable/batch",
}
DEFAULT_ENDPOINT = "/api/syncable"


def endpoint_for_action(action: str) -> str:
    """Fixed endpoint path for an action; unknown actions use the generic endpoint."""
    action = action.value if isinstance(action, SyncAction) else str(action)
    return ENDPOINTS.get(action, DEFAULT_ENDPOINT)


class SyncApiClient:
    """Client for the receiving side of another Syncable system."""

    def __init__(self, settings: ApiSettings, encryption: Optional[EncryptionService] = None,
                 pool_size: int = 10):
        """Initialize the sync API client.

        Args:
            settings: Target URL, API key, timeout and retry budget
            encryption: Used to encrypt the API key header when enabled
            pool_size: Connection pool size, at least the number of sync workers
        """
        self.settings = settings
        self.base_url = settings.base_url.rstrip('/')
        self.encryption = encryption

        # Retries are driven by send() so 4xx and 5xx can be told apart
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': 'Syncable/0.1.0'
        })

    def _auth_headers(self) -> Dict[str, str]:
        """API key headers, encrypting the key when configured."""
        if self.settings.encrypt_key and self.encryption is not None:
            try:
                return {
                    API_KEY_HEADER: self.encryption.encrypt(self.settings.key),
                    API_KEY_ENCRYPTED_HEADER: 'true',
                }
            except Exception as e:
                logger.error(f"Failed to encrypt API key, sending it in plaintext: {e}")

        return {
            API_KEY_HEADER: self.settings.key,
            API_KEY_ENCRYPTED_HEADER: 'false',
        }

    def _make_request(self, endpoint: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Make a single POST to the target system.

        Returns:
            JSON response data, or None if the body is empty or not JSON

        Raises:
            SyncAuthenticationError: On 401
            SyncRequestError: On any other 4xx
            TransientTransportError: On connection failure, timeout or 5xx
        """
        url = f"{self.base_url}{endpoint}"

        try:
            logger.debug(f"Making POST request to {url}")
            response = self.session.request(
                'POST', url, json=body, headers=self._auth_headers(), timeout=self.settings.timeout
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientTransportError(f"Request failed: {e}")
        except requests.exceptions.RequestException as e:
            raise SyncRequestError(f"Request failed: {e}")

        status = response.status_code
        if status == 401:
            raise SyncAuthenticationError(f"API authentication failed: {response.text}")
        if status >= 500:
            raise TransientTransportError(
                f"API request failed with server error: {response.reason}", status, response.reason
            )
        if status >= 400:
            raise SyncRequestError(
                f"API request failed with client error: {response.reason}", status, response.reason
            )

        try:
            return response.json()
        except ValueError:
            logger.warning(f"Non-JSON response from {url} (HTTP {status})")
            return None

    def send(self, payload: Dict[str, Any], action: str) -> Optional[Dict[str, Any]]:
        """Send a payload for an action, retrying transient failures.

        Args:
            payload: Wire payload, possibly already encrypted
            action: create, update, delete or batch

        Returns:
            Decoded response body

        Raises:
            SyncAuthenticationError: On 401, never retried
            SyncRequestError: On other 4xx, never retried
            TransientTransportError: When every attempt failed transiently
        """
        endpoint = endpoint_for_action(action)
        attempts = max(1, self.settings.retry_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return self._make_request(endpoint, payload)
            except TransientTransportError as e:
                if attempt >= attempts:
                    logger.error(f"Sync API request to {endpoint} failed after {attempts} attempts: {e}")
                    raise
                logger.warning(f"Sync API request to {endpoint} failed (attempt {attempt}/{attempts}): {e}")
                time.sleep(self.settings.retry_delay)

    def send_batch(self, operations: List[Dict[str, Any]], origin_system_id: str) -> Optional[Dict[str, Any]]:
        """Send several operations in one request."""
        return self.send({"operations": operations, "origin_system_id": origin_system_id}, "batch")
