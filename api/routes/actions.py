"""
Action Routes

HTTP surface of the hub. Every handler parses the call into an
ActionRequest and hands it to the ActionDispatcher, which never raises, so
these handlers only render envelopes.

Endpoints:
- GET  /actions - List registered actions (also POST, and / for both)
- GET  /actions/:name - Describe an action
- POST /actions/:name/form - Build the action's dynamic form
- POST /actions/:name/execute - Deliver a JSON-embedded payload
- POST /actions/:name/execute/stream - Deliver the raw request body as a stream
- POST /actions/:name/oauth_check - Probe held OAuth credentials
- GET  /actions/:name/oauth - Redirect the browser to the provider's login
- GET  /actions/:name/oauth/callback - OAuth callback (redirect from provider)
"""

import hmac
import json
import logging
import re
from html import escape
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from integrations.actions import ActionDispatcher, get_action_registry
from integrations.core.config import HubConfig
from integrations.core.errors import ConfigurationError, HubError
from integrations.core.oauth import callback_redirect_uri
from integrations.core.types import ActionRequest, ActionResponse

logger = logging.getLogger(__name__)

router = APIRouter()

# Error kinds that are the caller's addressing mistake rather than an
# action outcome; everything else is a 200 with success=false.
_HTTP_STATUS_KINDS = {"not_found", "capability"}

_TOKEN_HEADER = re.compile(r'^Token\s+token="?([^"]+)"?$')


# =============================================================================
# Dependencies
# =============================================================================

_dispatcher: Optional[ActionDispatcher] = None


def get_dispatcher() -> ActionDispatcher:
    """Get the global ActionDispatcher, building the registry on first use."""
    global _dispatcher
    if _dispatcher is None:
        config = HubConfig.from_env()
        _dispatcher = ActionDispatcher(get_action_registry(config), config)
    return _dispatcher


def verify_hub_token(
    authorization: Optional[str] = Header(None),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> None:
    """
    Require the shared hub secret when one is configured.

    Accepts `Token token="<secret>"` or `Bearer <secret>`.
    """
    secret = dispatcher.config.hub_secret
    if not secret:
        return

    token = None
    if authorization:
        match = _TOKEN_HEADER.match(authorization.strip())
        if match:
            token = match.group(1)
        elif authorization.startswith("Bearer "):
            token = authorization.replace("Bearer ", "", 1)

    if not token or not hmac.compare_digest(token.encode(), secret.encode()):
        raise HTTPException(status_code=401, detail="Missing or invalid hub token")


# =============================================================================
# Helpers
# =============================================================================

def _render(response: ActionResponse) -> JSONResponse:
    status_code = 200
    if response.error is not None and response.error.kind in _HTTP_STATUS_KINDS:
        status_code = response.error.status_code
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", exclude_none=True),
    )


def _parse_request(name: str, body: Optional[dict[str, Any]], stream=None) -> ActionRequest:
    return ActionRequest.from_payload(name, body or {}, stream=stream)


def _parse_failure(e: HubError, body: Optional[dict[str, Any]]) -> JSONResponse:
    webhook_id = body.get("webhook_id") if isinstance(body, dict) else None
    if webhook_id is not None:
        webhook_id = str(webhook_id)
    logger.warning(f"[ACTIONS] Rejected malformed request: {e.message} (webhook {webhook_id})")
    return _render(ActionResponse.failure(e, webhook_id=webhook_id))


# =============================================================================
# Discovery
# =============================================================================

@router.get("/")
@router.post("/")
@router.get("/actions")
@router.post("/actions")
async def list_actions(
    caller_version: Optional[str] = Query(None, description="Caller protocol version"),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> dict:
    """List every action the caller's version can use."""
    actions = dispatcher.registry.list(caller_version, base_url=dispatcher.config.base_url)
    return {
        "label": "Action Hub",
        "integrations": [a.model_dump(mode="json", exclude_none=True) for a in actions],
    }


@router.get("/actions/{name}")
async def describe_action(
    name: str,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> JSONResponse:
    return _render(await dispatcher.describe(name))


# =============================================================================
# Form / Execute
# =============================================================================

@router.post("/actions/{name}/form")
async def action_form(
    name: str,
    body: Optional[dict[str, Any]] = Body(None),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> JSONResponse:
    try:
        request = _parse_request(name, body)
    except HubError as e:
        return _parse_failure(e, body)
    return _render(await dispatcher.form(name, request))


@router.post("/actions/{name}/execute")
async def action_execute(
    name: str,
    body: Optional[dict[str, Any]] = Body(None),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> JSONResponse:
    try:
        request = _parse_request(name, body)
    except HubError as e:
        return _parse_failure(e, body)
    return _render(await dispatcher.execute(name, request))


@router.post("/actions/{name}/execute/stream")
async def action_execute_stream(
    name: str,
    http_request: Request,
    x_action_request: str = Header(..., description="Action request JSON (without attachment data)"),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> JSONResponse:
    """
    Execute with the payload as the raw request body.

    The body is consumed lazily by the delivery pipeline, so the hub never
    holds more than a few chunks of it at a time.
    """
    try:
        body = json.loads(x_action_request)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Action-Request is not valid JSON")

    try:
        request = _parse_request(name, body, stream=http_request.stream())
    except HubError as e:
        return _parse_failure(e, body)
    return _render(await dispatcher.execute(name, request))


@router.post("/actions/{name}/oauth_check")
async def action_oauth_check(
    name: str,
    body: Optional[dict[str, Any]] = Body(None),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
    _auth: None = Depends(verify_hub_token),
) -> JSONResponse:
    try:
        request = _parse_request(name, body)
    except HubError as e:
        return _parse_failure(e, body)
    return _render(await dispatcher.oauth_check(name, request))


# =============================================================================
# OAuth Flow - Initiate
# =============================================================================

@router.get("/actions/{name}/oauth")
async def action_oauth_redirect(
    name: str,
    state: str = Query(..., description="Encrypted hub state"),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    """
    Start OAuth for an action.

    Reached from the oauth_link form field in the user's browser; redirects
    to the provider with the state passed through unchanged.
    """
    if not dispatcher.config.base_url:
        return _render(ActionResponse.failure(ConfigurationError("ACTION_HUB_BASE_URL is not configured")))

    redirect_uri = callback_redirect_uri(name, dispatcher.config)
    response = await dispatcher.oauth_url(name, redirect_uri, state)
    if not response.success:
        return _render(response)

    logger.info(f"[ACTIONS] Redirecting to {name} OAuth")
    return RedirectResponse(url=response.redirect_url, status_code=302)


# =============================================================================
# OAuth Flow - Callback
# =============================================================================

@router.get("/actions/{name}/oauth/callback")
async def action_oauth_callback(
    name: str,
    http_request: Request,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> HTMLResponse:
    """
    OAuth callback endpoint.

    Called by the provider after the user authorizes. Forwards the code to
    the caller's return URL recorded in the encrypted state.
    """
    if not dispatcher.config.base_url:
        return HTMLResponse("<p>OAuth is not configured on this hub.</p>", status_code=503)

    url_params = dict(http_request.query_params)
    redirect_uri = callback_redirect_uri(name, dispatcher.config)
    response = await dispatcher.oauth_fetch_info(name, url_params, redirect_uri)

    if not response.success:
        status_code = response.error.status_code if response.error else 400
        return HTMLResponse(
            f"<p>Authorization failed: {escape(response.message or 'unknown error')}</p>",
            status_code=status_code,
        )
    return HTMLResponse("<p>Authorization complete. You may close this window.</p>")
