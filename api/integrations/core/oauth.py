"""
OAuth negotiation for actions.

The hub keeps no session storage. Everything it needs to resume after a
round trip through a third-party authorization server travels in an
encrypted `state` query parameter, and everything the caller needs
afterwards (the access token) travels back in the caller-held state_json.

Stages:
    UNAUTHENTICATED   no usable state_json
    AUTH_LINK_ISSUED  form returned a single oauth_link field carrying
                      encrypt({"stateurl": <caller return URL>})
    CODE_EXCHANGE     the provider redirected to /actions/<name>/oauth/callback;
                      the hub decrypted the state and forwarded
                      {"code", "redirect"} to stateurl, so the caller's next
                      state_json carries them
    AUTHENTICATED     the action exchanged the code; state_json now carries
                      {"access_token"}

State blobs are rejected after HubConfig.oauth_state_ttl seconds. There is
no nonce tracking, so a blob can be replayed inside that window; the
provider's single-use authorization codes bound the damage.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from .config import HubConfig
from .crypto import ActionCrypto
from .errors import AuthError, ConfigurationError, CryptoError
from .types import ActionForm, ActionRequest, ActionState, FormField

logger = logging.getLogger(__name__)

_OAUTH_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

RESET_STATE = "reset"


class OAuthStage(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTH_LINK_ISSUED = "auth_link_issued"
    CODE_EXCHANGE = "code_exchange"
    AUTHENTICATED = "authenticated"


def resolve_stage(request: ActionRequest) -> OAuthStage:
    """Where a request sits in the flow, judged from its state_json."""
    state = request.parse_state_json()
    if not state:
        return OAuthStage.UNAUTHENTICATED
    if state.get("code") and state.get("redirect"):
        return OAuthStage.CODE_EXCHANGE
    if state.get("access_token"):
        return OAuthStage.AUTHENTICATED
    return OAuthStage.UNAUTHENTICATED


def callback_redirect_uri(action_name: str, config: HubConfig) -> str:
    """Where the provider sends the user back to."""
    return config.action_url(action_name, "/oauth/callback")


def build_oauth_link_form(
    action_name: str,
    request: ActionRequest,
    crypto: Optional[ActionCrypto],
    config: HubConfig,
    *,
    label: str = "Log in",
    description: Optional[str] = None,
) -> ActionForm:
    """
    Form with a single oauth_link field that starts the flow.

    The link is issued even when the caller sent no state_url; such a
    state carries no return URL and is rejected at the callback.

    Raises:
        ConfigurationError: Hub has no base URL / key
    """
    if crypto is None or not config.base_url:
        raise ConfigurationError("OAuth is not configured on this hub")
    if not request.state_url:
        logger.warning(
            f"[OAUTH] {action_name} request has no state_url; authorization cannot complete "
            f"(webhook {request.webhook_id})"
        )

    try:
        ciphertext = crypto.encrypt_json({"stateurl": request.state_url})
    except CryptoError:
        logger.error(f"[OAUTH] Encryption not correctly configured (webhook {request.webhook_id})")
        raise

    oauth_url = f"{config.action_url(action_name, '/oauth')}?{urlencode({'state': ciphertext})}"
    logger.info(f"[OAUTH] Issued {action_name} auth link (webhook {request.webhook_id})")

    return ActionForm(
        fields=[
            FormField(
                name="login",
                type="oauth_link",
                label=label,
                description=description,
                oauth_url=oauth_url,
            )
        ],
        state=ActionState(data=RESET_STATE),
    )


def decrypt_oauth_state(crypto: ActionCrypto, blob: Optional[str], ttl: Optional[int]) -> dict[str, Any]:
    """
    Recover the hub context from a state blob.

    Raises:
        AuthError: Missing, tampered, expired or malformed state
    """
    if not blob:
        raise AuthError("Missing OAuth state", safe_message="Missing authorization state")
    try:
        payload = crypto.decrypt_json(blob, ttl=ttl)
    except CryptoError as e:
        raise AuthError(
            f"OAuth state rejected: {e.message}",
            safe_message="Invalid or expired authorization state",
        ) from e
    if not isinstance(payload, dict) or not payload.get("stateurl"):
        raise AuthError("OAuth state has no return URL", safe_message="Invalid authorization state")
    return payload


async def forward_authorization_code(
    crypto: Optional[ActionCrypto],
    url_params: dict[str, str],
    redirect_uri: str,
    *,
    ttl: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Hand the provider's authorization code back to the original caller.

    Args:
        crypto: State codec
        url_params: Query params of the provider's callback (code, state)
        redirect_uri: The redirect URI used for this flow; needed for the
            token exchange that happens on the caller's next request
        ttl: Max state age in seconds
        transport: Optional httpx transport (tests inject a mock)

    Returns:
        The return URL the code was forwarded to

    Raises:
        AuthError: Bad state, provider error, or the caller rejected the code
    """
    if crypto is None:
        raise ConfigurationError("OAuth is not configured on this hub")

    if url_params.get("error"):
        raise AuthError(
            f"Provider returned error: {url_params['error']}",
            safe_message="Authorization was denied",
        )

    payload = decrypt_oauth_state(crypto, url_params.get("state"), ttl)
    code = url_params.get("code")
    if not code:
        raise AuthError("OAuth callback has no code", safe_message="Missing authorization code")

    stateurl = payload["stateurl"]
    body = {"code": code, "redirect": redirect_uri}

    try:
        async with httpx.AsyncClient(timeout=_OAUTH_TIMEOUT, transport=transport) as client:
            response = await client.post(stateurl, json=body)
    except httpx.HTTPError as e:
        logger.error(f"[OAUTH] Forwarding code failed: {e}")
        raise AuthError(
            f"Could not reach return URL: {e}",
            safe_message="Could not complete authorization",
        ) from e

    if response.status_code >= 400:
        logger.error(f"[OAUTH] Return URL rejected code: HTTP {response.status_code}")
        raise AuthError(
            f"Return URL responded {response.status_code}",
            safe_message="Could not complete authorization",
        )

    logger.info("[OAUTH] Forwarded authorization code to caller")
    return stateurl


def authenticated_state(access_token: str) -> ActionState:
    """State the caller stores and sends back as state_json."""
    return ActionState(data=json.dumps({"access_token": access_token}))


def reset_state() -> ActionState:
    """Tell the caller to forget its stored credentials."""
    return ActionState(data=RESET_STATE)
