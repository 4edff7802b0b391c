"""
Action Registry

Central registry for all actions, keyed by action name. Filled once at
startup from each connector module's register_actions(), then frozen.
Lookups after that are read-only and need no locking.

Registering a name twice keeps the last registration (with a warning).
"""

import logging
from typing import Optional

from integrations.core.config import HubConfig
from integrations.core.errors import NotFoundError, RegistryFrozenError
from integrations.core.types import ActionDescription
from .base import Action

logger = logging.getLogger(__name__)


class ActionRegistry:
    """
    Registry of all available actions.

    Usage:
        registry = ActionRegistry()
        registry.register(DropboxAction(config, crypto))
        registry.freeze()

        action = registry.lookup("dropbox")
    """

    def __init__(self):
        self._actions: dict[str, Action] = {}
        self._frozen = False

    def register(self, action: Action) -> None:
        """
        Register an action.

        Raises:
            RegistryFrozenError: If called after startup finished
            ValueError: If the action has no name
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{action.name}': registry is frozen")
        if not action.name:
            raise ValueError(f"{type(action).__name__} has no name")

        if action.name in self._actions:
            logger.warning(f"[ACTIONS] Overwriting existing action '{action.name}'")
        self._actions[action.name] = action
        logger.debug(f"[ACTIONS] Registered action '{action.name}'")

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def lookup(self, name: str) -> Action:
        """
        Get an action by name, raising if not found.

        Raises:
            NotFoundError: If no action is registered under name
        """
        action = self.get(name)
        if action is None:
            raise NotFoundError(f"No action registered with name '{name}'")
        return action

    def names(self) -> list[str]:
        return list(self._actions.keys())

    def list(
        self,
        caller_version: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> list[ActionDescription]:
        """
        Describe every registered action the caller can use.

        Args:
            caller_version: When given, hide actions requiring a newer caller
            base_url: When given, descriptions include endpoint URLs
        """
        return [
            action.describe(base_url)
            for action in self._actions.values()
            if action.supports_version(caller_version)
        ]

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, name: str) -> bool:
        return name in self._actions


# Global registry instance
_registry: Optional[ActionRegistry] = None


def get_action_registry(config: Optional[HubConfig] = None) -> ActionRegistry:
    """
    Get the global action registry.

    Built and frozen on first access, using config (or the environment when
    no config is passed).
    """
    global _registry
    if _registry is None:
        registry = ActionRegistry()
        _initialize_default_actions(registry, config or HubConfig.from_env())
        registry.freeze()
        _registry = registry
    return _registry


def reset_action_registry() -> None:
    """Drop the global registry so the next access rebuilds it."""
    global _registry
    _registry = None


def _initialize_default_actions(registry: ActionRegistry, config: HubConfig) -> None:
    """
    Let each connector register itself.

    Connectors missing their configuration simply do not register; that is
    logged here and visible as absence from discovery.
    """
    # Import here to avoid circular imports
    from . import dropbox, object_storage

    for module in (dropbox, object_storage):
        module.register_actions(registry, config)

    logger.info(f"[ACTIONS] Initialized registry with: {registry.names()}")
