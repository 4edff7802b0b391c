"""
Hub error kinds.

Every failure that can reach a caller is one of these. The dispatcher
catches them at its boundary and turns them into a failed ActionResponse,
so handlers are free to raise.
"""

from typing import Optional


class HubError(Exception):
    """Base class for classified hub errors."""

    kind: str = "delivery"
    status_code: int = 500

    def __init__(self, message: str, *, safe_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        # What the caller sees. Defaults to the internal message.
        self.safe_message = safe_message or message


class NotFoundError(HubError):
    """No action is registered under the requested name."""
    kind = "not_found"
    status_code = 404


class CapabilityError(HubError):
    """The action's variant does not support the requested capability."""
    kind = "capability"
    status_code = 400


class ConfigurationError(HubError):
    """Missing or invalid params, form values or payload."""
    kind = "configuration"
    status_code = 400


class AuthError(HubError):
    """Expired, tampered or rejected OAuth state or destination credentials."""
    kind = "auth"
    status_code = 401


class CryptoError(HubError):
    """Encryption or decryption failed."""
    kind = "crypto"
    status_code = 500


class DeliveryError(HubError):
    """Payload transfer failed or the destination rejected it."""
    kind = "delivery"
    status_code = 502


class RegistryFrozenError(RuntimeError):
    """Raised when an action is registered after startup has finished."""
