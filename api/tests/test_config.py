"""
Startup configuration tests

Run: cd api && python tests/test_config.py
"""

import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from integrations.core.config import DEFAULT_OAUTH_STATE_TTL, HubConfig


def test_from_env():
    env = {
        "ACTION_HUB_BASE_URL": "https://hub.example/",
        "ACTION_HUB_SECRET_KEY": "key",
        "ACTION_HUB_SECRET": "shared",
        "ACTION_HUB_OAUTH_STATE_TTL": "120",
        "DROPBOX_ACTION_APP_KEY": "app-key",
        "DROPBOX_ACTION_APP_SECRET": "app-secret",
    }
    with patch.dict("os.environ", env, clear=True):
        config = HubConfig.from_env()

    assert config.base_url == "https://hub.example"
    assert config.oauth_state_ttl == 120
    assert config.hub_secret == "shared"
    assert config.oauth_enabled
    assert config.dropbox_configured
    assert config.action_url("dropbox", "/oauth") == "https://hub.example/actions/dropbox/oauth"
    print("✅ from_env: PASSED")


def test_empty_env():
    with patch.dict("os.environ", {}, clear=True):
        config = HubConfig.from_env()

    assert config.base_url is None
    assert not config.oauth_enabled
    assert not config.dropbox_configured
    assert config.oauth_state_ttl == DEFAULT_OAUTH_STATE_TTL

    try:
        config.action_url("dropbox")
        assert False, "action_url needs a base URL"
    except ValueError:
        pass
    print("✅ empty_env: PASSED")


def test_invalid_ttl_falls_back():
    with patch.dict("os.environ", {"ACTION_HUB_OAUTH_STATE_TTL": "ten minutes"}, clear=True):
        config = HubConfig.from_env()

    assert config.oauth_state_ttl == DEFAULT_OAUTH_STATE_TTL
    print("✅ invalid_ttl_falls_back: PASSED")


if __name__ == "__main__":
    test_from_env()
    test_empty_env()
    test_invalid_ttl_falls_back()
    print("\n✅ All config tests passed")
