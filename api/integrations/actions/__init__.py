"""
Actions

Destination handlers and the machinery that routes calls to them.

Each action implements:
- describe() → ActionDescription
- form(request) → ActionForm
- execute(request) → ActionResponse
- OAuth variants add oauth_url / oauth_fetch_info / oauth_check

Usage:
    from integrations.actions import ActionDispatcher, get_action_registry

    registry = get_action_registry(config)
    dispatcher = ActionDispatcher(registry, config)
    response = await dispatcher.execute("amazon_s3", request)
"""

from .base import Action, OAuthAction, DelegateOAuthAction
from .registry import ActionRegistry, get_action_registry, reset_action_registry
from .dispatch import ActionDispatcher
from .dropbox import DropboxAction
from .object_storage import ObjectStorageAction, ObjectStorageBackend

__all__ = [
    "Action",
    "OAuthAction",
    "DelegateOAuthAction",
    "ActionRegistry",
    "get_action_registry",
    "reset_action_registry",
    "ActionDispatcher",
    "DropboxAction",
    "ObjectStorageAction",
    "ObjectStorageBackend",
]
