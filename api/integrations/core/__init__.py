"""Core hub infrastructure."""

from .config import HubConfig
from .crypto import ActionCrypto
from .errors import (
    HubError,
    NotFoundError,
    CapabilityError,
    ConfigurationError,
    AuthError,
    CryptoError,
    DeliveryError,
)
from .types import (
    ActionRequest,
    ActionResponse,
    ActionForm,
    ActionPayload,
)

__all__ = [
    "HubConfig",
    "ActionCrypto",
    "HubError",
    "NotFoundError",
    "CapabilityError",
    "ConfigurationError",
    "AuthError",
    "CryptoError",
    "DeliveryError",
    "ActionRequest",
    "ActionResponse",
    "ActionForm",
    "ActionPayload",
]
