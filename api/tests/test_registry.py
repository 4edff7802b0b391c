"""
Action registry tests

Run: cd api && python tests/test_registry.py
"""

import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from integrations.actions.base import Action, parse_version
from integrations.actions.registry import (
    ActionRegistry,
    get_action_registry,
    reset_action_registry,
)
from integrations.core.config import HubConfig
from integrations.core.crypto import ActionCrypto
from integrations.core.errors import NotFoundError, RegistryFrozenError
from integrations.core.types import ActionResponse


class EchoAction(Action):
    name = "echo"
    label = "Echo"

    def __init__(self, label: str = "Echo", minimum_supported_version=None):
        self.label = label
        self.minimum_supported_version = minimum_supported_version

    async def execute(self, request):
        return ActionResponse(success=True)


def test_register_and_lookup():
    registry = ActionRegistry()
    action = EchoAction()
    registry.register(action)

    assert registry.lookup("echo") is action
    assert registry.get("missing") is None
    assert "echo" in registry
    assert len(registry) == 1

    try:
        registry.lookup("missing")
        assert False, "Should have raised NotFoundError"
    except NotFoundError as e:
        assert e.status_code == 404

    print("✅ register_and_lookup: PASSED")


def test_duplicate_name_last_write_wins():
    """Registering a name twice keeps the later action and logs a warning."""
    registry = ActionRegistry()
    first = EchoAction("First")
    second = EchoAction("Second")

    registry.register(first)
    with patch("integrations.actions.registry.logger") as mock_logger:
        registry.register(second)
        mock_logger.warning.assert_called_once()

    assert registry.lookup("echo") is second
    assert len(registry) == 1
    print("✅ duplicate_name_last_write_wins: PASSED")


def test_frozen_registry_rejects_register():
    registry = ActionRegistry()
    registry.register(EchoAction())
    registry.freeze()

    assert registry.frozen
    try:
        registry.register(EchoAction("Late"))
        assert False, "Should have raised RegistryFrozenError"
    except RegistryFrozenError:
        pass

    assert registry.lookup("echo").label == "Echo"
    print("✅ frozen_registry_rejects_register: PASSED")


def test_nameless_action_rejected():
    class Nameless(EchoAction):
        name = ""

    try:
        ActionRegistry().register(Nameless())
        assert False, "Should have raised ValueError"
    except ValueError:
        pass

    print("✅ nameless_action_rejected: PASSED")


def test_list_filters_by_caller_version():
    registry = ActionRegistry()
    registry.register(EchoAction())

    class NewAction(EchoAction):
        name = "new"

    registry.register(NewAction(minimum_supported_version="7.2.0"))

    assert [d.name for d in registry.list()] == ["echo", "new"]
    assert [d.name for d in registry.list("6.8.0")] == ["echo"]
    assert [d.name for d in registry.list("7.10.0")] == ["echo", "new"]

    described = registry.list(base_url="https://hub.example")[0]
    assert described.url == "https://hub.example/actions/echo/execute"
    assert described.form_url == "https://hub.example/actions/echo/form"
    assert described.uses_oauth is False

    print("✅ list_filters_by_caller_version: PASSED")


def test_parse_version():
    assert parse_version("7.10.2") == (7, 10, 2)
    assert parse_version("7.2.0") < parse_version("7.10.0")
    assert parse_version("6.8.0-beta") == (6, 8, 0)
    print("✅ parse_version: PASSED")


def test_default_registry_from_config():
    reset_action_registry()
    try:
        bare = get_action_registry(HubConfig())
        names = bare.names()
        assert "amazon_s3" in names
        assert "digitalocean_object_storage" in names
        assert "google_cloud_storage" in names
        assert "dropbox" not in names, "Dropbox needs app credentials and OAuth config"
        assert bare.frozen
        assert get_action_registry() is bare

        reset_action_registry()
        full = get_action_registry(HubConfig(
            base_url="https://hub.example",
            secret_key=ActionCrypto.generate_key(),
            dropbox_app_key="key",
            dropbox_app_secret="secret",
        ))
        assert "dropbox" in full
        assert full.lookup("dropbox").describe().uses_oauth
        for name in full.names():
            assert full.lookup(name).describe().name == name, f"{name} describes itself under another name"
    finally:
        reset_action_registry()

    print("✅ default_registry_from_config: PASSED")


if __name__ == "__main__":
    test_register_and_lookup()
    test_duplicate_name_last_write_wins()
    test_frozen_registry_rejects_register()
    test_nameless_action_rejected()
    test_list_filters_by_caller_version()
    test_parse_version()
    test_default_registry_from_config()
    print("\n✅ All registry tests passed")
