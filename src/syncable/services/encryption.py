"""
Symmetric encryption of sync payloads and API keys.
"""

import base64
import binascii
import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import ConfigurationError, SyncDecryptionError

logger = logging.getLogger(__name__)


def _load_key(key: str) -> bytes:
    """
    Accept either a Fernet key or `base64:` + 32 raw bytes in standard base64.
    """
    if not key:
        raise ConfigurationError("Encryption key is not configured")

    if key.startswith("base64:"):
        try:
            raw = base64.b64decode(key[7:], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"Encryption key is not valid base64: {e}")
        if len(raw) != 32:
            raise ConfigurationError("Encryption key must decode to 32 bytes")
        return base64.urlsafe_b64encode(raw)

    return key.encode("utf-8")


class EncryptionService:
    """
    Wraps values in an authenticated envelope.

    The envelope records whether the value was serialized first, so composite
    values (dicts, lists) come back with their original shape.
    """

    def __init__(self, key: str, serialize_data: bool = True):
        try:
            self.fernet = Fernet(_load_key(key))
        except ValueError as e:
            raise ConfigurationError(f"Invalid encryption key: {e}")
        self.serialize_data = serialize_data

    @staticmethod
    def generate_key() -> str:
        return "base64:" + base64.b64encode(base64.urlsafe_b64decode(Fernet.generate_key())).decode("ascii")

    def encrypt(self, value: Any) -> str:
        """
        Encrypt a value.

        Args:
            value: Any JSON-representable value

        Returns:
            URL-safe ciphertext token
        """
        serialized = False
        if self.serialize_data and isinstance(value, (dict, list, tuple)):
            value = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
            serialized = True

        try:
            envelope = json.dumps({"data": value, "serialized": serialized}, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Encryption failed: {e}")
            raise

        return self.fernet.encrypt(envelope.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> Any:
        """
        Decrypt a token produced by `encrypt`.

        Raises:
            SyncDecryptionError: If the token is malformed, tampered with or
                encrypted under another key
        """
        if isinstance(token, str):
            token = token.encode("ascii", errors="replace")

        try:
            plaintext = self.fernet.decrypt(token)
        except (InvalidToken, TypeError) as e:
            logger.error("Decryption failed: invalid or corrupt token")
            raise SyncDecryptionError("Failed to decrypt data: invalid token") from e

        try:
            envelope = json.loads(plaintext)
            if isinstance(envelope, dict) and "data" in envelope and "serialized" in envelope:
                if envelope["serialized"]:
                    return json.loads(envelope["data"])
                return envelope["data"]
            # Bare value without an envelope
            return envelope
        except (ValueError, TypeError) as e:
            logger.error(f"Unexpected error during decryption: {e}")
            raise SyncDecryptionError(f"Unexpected error during decryption: {e}") from e
