"""
Secret Manager lookup for the pre-shared API key and the encryption key.
"""

import logging
import os
from typing import Dict, Optional

from google.cloud import secretmanager

logger = logging.getLogger(__name__)

API_KEY_SECRET = "syncable-api-key"
ENCRYPTION_KEY_SECRET = "syncable-encryption-key"


class SecretManagerService:
    """Reads sync keys from Google Secret Manager, caching each version once read."""

    def __init__(self, project_id: Optional[str] = None, client=None):
        """
        Args:
            project_id: Google Cloud project holding the secrets. Defaults to GOOGLE_CLOUD_PROJECT.
            client: Pre-built SecretManagerServiceClient, mainly for tests

        Raises:
            ValueError: If no project can be determined
        """
        self.project_id = project_id or os.getenv("GOOGLE_CLOUD_PROJECT")
        if not self.project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT environment variable must be set")

        self.client = client or secretmanager.SecretManagerServiceClient()
        self._cache: Dict[str, str] = {}

    def secret_path(self, secret_name: str, version: str = "latest") -> str:
        return f"projects/{self.project_id}/secrets/{secret_name}/versions/{version}"

    def get_secret(self, secret_name: str, version: str = "latest") -> str:
        """
        Read one secret version.

        Raises:
            Exception: Whatever the Secret Manager client raised, after logging it
        """
        path = self.secret_path(secret_name, version)
        if path not in self._cache:
            try:
                response = self.client.access_secret_version(request={"name": path})
            except Exception as e:
                logger.error(f"Failed to retrieve secret {secret_name}: {e}")
                raise
            self._cache[path] = response.payload.data.decode("UTF-8")
            logger.info(f"Retrieved secret: {secret_name}")
        return self._cache[path]

    def get_secret_or_default(self, secret_name: str, default: str = "") -> str:
        """Read a secret, falling back to `default` when it is unavailable."""
        try:
            return self.get_secret(secret_name)
        except Exception as e:
            logger.warning(f"Using fallback for secret {secret_name}: {e}")
            return default

    def get_sync_keys(self, api_key: str = "", encryption_key: str = "") -> Dict[str, str]:
        """
        The API key and encryption key, each falling back to the given value.

        Returns:
            {"api_key", "encryption_key"}
        """
        return {
            "api_key": self.get_secret_or_default(API_KEY_SECRET, api_key),
            "encryption_key": self.get_secret_or_default(ENCRYPTION_KEY_SECRET, encryption_key),
        }
