"""
Startup configuration.

Built once from the environment at process start and passed explicitly to
the registry and every connector's register_actions(). Connectors decide at
construction time whether they have what they need; nothing below reads
os.environ after startup.

Environment:
    ACTION_HUB_BASE_URL: Public base URL used to build OAuth redirect URIs
    ACTION_HUB_SECRET_KEY: Fernet key for the OAuth state codec
    ACTION_HUB_SECRET: Shared token callers must present (optional)
    ACTION_HUB_OAUTH_STATE_TTL: Max age of an OAuth state blob, seconds
    DROPBOX_ACTION_APP_KEY / DROPBOX_ACTION_APP_SECRET: Dropbox app creds
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_OAUTH_STATE_TTL = 600  # 10 min


@dataclass(frozen=True)
class HubConfig:
    """Process-wide, read-only hub configuration."""
    base_url: Optional[str] = None
    secret_key: Optional[str] = None
    hub_secret: Optional[str] = None
    oauth_state_ttl: int = DEFAULT_OAUTH_STATE_TTL
    dropbox_app_key: Optional[str] = None
    dropbox_app_secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> "HubConfig":
        ttl_raw = os.getenv("ACTION_HUB_OAUTH_STATE_TTL", "")
        try:
            ttl = int(ttl_raw) if ttl_raw else DEFAULT_OAUTH_STATE_TTL
        except ValueError:
            logger.warning(
                f"[CONFIG] Ignoring invalid ACTION_HUB_OAUTH_STATE_TTL={ttl_raw!r}, "
                f"using {DEFAULT_OAUTH_STATE_TTL}"
            )
            ttl = DEFAULT_OAUTH_STATE_TTL

        base_url = os.getenv("ACTION_HUB_BASE_URL", "").rstrip("/") or None

        return cls(
            base_url=base_url,
            secret_key=os.getenv("ACTION_HUB_SECRET_KEY") or None,
            hub_secret=os.getenv("ACTION_HUB_SECRET") or None,
            oauth_state_ttl=ttl,
            dropbox_app_key=os.getenv("DROPBOX_ACTION_APP_KEY") or None,
            dropbox_app_secret=os.getenv("DROPBOX_ACTION_APP_SECRET") or None,
        )

    @property
    def oauth_enabled(self) -> bool:
        """OAuth actions need both a public URL and state encryption."""
        return bool(self.base_url and self.secret_key)

    @property
    def dropbox_configured(self) -> bool:
        return bool(self.dropbox_app_key and self.dropbox_app_secret)

    def action_url(self, action_name: str, suffix: str = "") -> str:
        """Absolute URL for an action endpoint, e.g. /actions/dropbox/oauth."""
        if not self.base_url:
            raise ValueError("ACTION_HUB_BASE_URL is not configured")
        return f"{self.base_url}/actions/{action_name}{suffix}"
