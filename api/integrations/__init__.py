"""
Action Hub Integration System

Delivery layer that routes caller payloads to destination actions.

Modules:
- core/: crypto, OAuth flow, streaming pipeline, destination API clients, types
- actions/: action contract, registry, dispatcher, connectors (Dropbox, object storage)
"""

from .core.config import HubConfig
from .core.crypto import ActionCrypto
from .core.types import ActionRequest, ActionResponse

__all__ = [
    "HubConfig",
    "ActionCrypto",
    "ActionRequest",
    "ActionResponse",
]
