"""
OAuth state encryption.

Encrypts the small state blobs the hub hands to third-party authorization
servers, using Fernet (AES-128-CBC with an HMAC-SHA256 tag). The blob comes
back through an untrusted redirect, so any tampering must fail decryption
instead of producing garbage plaintext.

Fernet tokens embed their creation time, which lets decrypt() enforce a
maximum age without any server-side state.
"""

import json
import logging
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from .config import HubConfig
from .errors import CryptoError

logger = logging.getLogger(__name__)


class ActionCrypto:
    """
    Encrypts/decrypts opaque state with a process-wide Fernet key.

    The same key must be used for encryption and decryption. Instances are
    stateless apart from the key and safe to share across requests.
    """

    def __init__(self, key: Union[str, bytes]):
        """
        Args:
            key: Base64-encoded 32-byte Fernet key

        Raises:
            CryptoError: If the key is missing or malformed
        """
        if not key:
            raise CryptoError("ACTION_HUB_SECRET_KEY is required for state encryption")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CryptoError(
                f"Invalid encryption key: {e}",
                safe_message="Encryption is not correctly configured",
            ) from e

    @classmethod
    def from_config(cls, config: HubConfig) -> Optional["ActionCrypto"]:
        """Build the codec from startup config, or None if no key is set."""
        if not config.secret_key:
            return None
        return cls(config.secret_key)

    def encrypt(self, plaintext: Union[str, bytes]) -> str:
        """
        Encrypt a blob.

        Returns:
            URL-safe base64 token, usable directly as a query parameter
        """
        data = plaintext.encode() if isinstance(plaintext, str) else plaintext
        try:
            return self._fernet.encrypt(data).decode()
        except TypeError as e:
            raise CryptoError(f"Encryption failed: {e}") from e

    def decrypt(self, ciphertext: Union[str, bytes], ttl: Optional[int] = None) -> bytes:
        """
        Decrypt a blob produced by encrypt().

        Args:
            ciphertext: The token
            ttl: Reject tokens older than this many seconds

        Raises:
            CryptoError: Tampered, truncated, expired or foreign-key token
        """
        if not ciphertext:
            raise CryptoError("Empty ciphertext", safe_message="Invalid state")
        token = ciphertext.encode() if isinstance(ciphertext, str) else ciphertext
        try:
            return self._fernet.decrypt(token, ttl=ttl)
        except InvalidToken as e:
            raise CryptoError("State failed integrity check or expired", safe_message="Invalid state") from e
        except (TypeError, ValueError) as e:
            raise CryptoError(f"Decryption failed: {e}", safe_message="Invalid state") from e

    def encrypt_json(self, payload: Any) -> str:
        return self.encrypt(json.dumps(payload, separators=(",", ":")))

    def decrypt_json(self, ciphertext: str, ttl: Optional[int] = None) -> Any:
        plaintext = self.decrypt(ciphertext, ttl=ttl)
        try:
            return json.loads(plaintext)
        except ValueError as e:
            raise CryptoError("Decrypted state is not valid JSON", safe_message="Invalid state") from e

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new key for ACTION_HUB_SECRET_KEY.

        Returns:
            Base64-encoded 32-byte key
        """
        return Fernet.generate_key().decode()
