"""
Dropbox Action

Sends a payload to a folder in the user's Dropbox. Dropbox needs a user
OAuth grant, which this action negotiates through the hub's stateless flow
(see integrations/core/oauth.py):

- form() with no usable token returns a single "Log in" oauth_link field
- the callback forwards the code to the caller, whose next state_json
  carries {"code", "redirect"}; form()/execute() exchange it for a token
  and hand {"access_token"} back as new state
- later calls authenticate with the access token in state_json

Payloads are uploaded in one request, so the action declares
uses_streaming = False and receives materialized bytes.

Form fields:
    directory         folder under the Dropbox root, "__root" for Home
    filename          base name; the payload's extension is appended
    includeTimestamp  "yes" appends a millisecond timestamp to the name
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from integrations.core.config import HubConfig
from integrations.core.crypto import ActionCrypto
from integrations.core.dropbox_client import AUTHORIZE_URL, DropboxAPIClient
from integrations.core.errors import (
    AuthError,
    ConfigurationError,
    CryptoError,
    DeliveryError,
    HubError,
)
from integrations.core.filenames import Clock, append_timestamp, unix_millis
from integrations.core.oauth import (
    OAuthStage,
    authenticated_state,
    forward_authorization_code,
    reset_state,
    resolve_stage,
)
from integrations.core.streaming import materialize
from integrations.core.types import (
    ActionForm,
    ActionRequest,
    ActionResponse,
    ActionType,
    FormField,
    FormOption,
)
from .base import OAuthAction
from .registry import ActionRegistry

logger = logging.getLogger(__name__)

ROOT_DIRECTORY = "__root"


class DropboxAction(OAuthAction):
    """Delivers files to Dropbox using a per-user OAuth token."""

    name = "dropbox"
    label = "Dropbox"
    icon_name = "dropbox/dropbox.png"
    description = "Send data directly to a Dropbox folder."
    supported_action_types = [ActionType.QUERY, ActionType.DASHBOARD]
    uses_streaming = False
    minimum_supported_version = "6.8.0"
    params = []
    required_fields = []

    def __init__(
        self,
        config: HubConfig,
        crypto: Optional[ActionCrypto],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = unix_millis,
    ):
        super().__init__(config, crypto)
        self._transport = transport
        self._clock = clock

    def _client(self, access_token: str = "") -> DropboxAPIClient:
        return DropboxAPIClient(access_token, transport=self._transport)

    async def _resolve_token(self, request: ActionRequest) -> tuple[str, bool]:
        """
        Access token for this call and whether it was just exchanged.

        Raises:
            AuthError: The code in state_json could not be exchanged
        """
        state = request.parse_state_json() or {}
        if resolve_stage(request) == OAuthStage.CODE_EXCHANGE:
            token = await self._client().exchange_code(
                code=state["code"],
                redirect_uri=state["redirect"],
                client_id=self.config.dropbox_app_key,
                client_secret=self.config.dropbox_app_secret,
            )
            logger.info(f"[DROPBOX] Exchanged authorization code (webhook {request.webhook_id})")
            return token, True
        return state.get("access_token", ""), False

    def dropbox_filename(self, request: ActionRequest) -> Optional[str]:
        filename = request.form_params.get("filename")
        if filename and request.form_params.get("includeTimestamp") == "yes":
            return append_timestamp(filename, self._clock)
        return filename

    # -------------------------------------------------------------------------
    # Action contract
    # -------------------------------------------------------------------------

    async def form(self, request: ActionRequest) -> ActionForm:
        try:
            token, fresh = await self._resolve_token(request)
            folders = await self._client(token).list_folders("")
        except (HubError, httpx.HTTPError) as e:
            logger.info(f"[DROPBOX] Not authenticated, issuing login link: {type(e).__name__}")
            return self.oauth_link_form(
                request,
                description=(
                    "In order to send to a Dropbox file or folder now and in the future, "
                    "you will need to log in once to your Dropbox account."
                ),
            )

        options = [FormOption(name=ROOT_DIRECTORY, label="Home")]
        options.extend(FormOption(name=f, label=f) for f in folders)

        form = ActionForm(fields=[
            FormField(
                name="directory",
                label="Select folder to save file",
                description="Dropbox folder where your file will be saved",
                type="select",
                options=options,
                required=True,
                default=ROOT_DIRECTORY,
            ),
            FormField(
                name="filename",
                label="Enter a name",
                type="string",
                required=True,
            ),
            FormField(
                name="includeTimestamp",
                label="Append timestamp",
                description=(
                    "Append timestamp to end of file name. "
                    "Should be set to 'Yes' if the file will be sent repeatedly"
                ),
                type="select",
                required=True,
                default="no",
                options=[FormOption(name="yes", label="Yes"), FormOption(name="no", label="No")],
            ),
        ])
        if fresh:
            form.state = authenticated_state(token)
        return form

    async def execute(self, request: ActionRequest) -> ActionResponse:
        if request.payload is None:
            return self.fail(request, ConfigurationError("No data sent to be delivered to Dropbox."))

        filename = self.dropbox_filename(request)
        if not filename:
            return self.fail(request, ConfigurationError("Dropbox needs a filename."))

        directory = request.form_params.get("directory")
        if not directory:
            return self.fail(request, ConfigurationError("Dropbox needs a folder selected."))

        ext = request.payload.file_extension
        name = f"{filename}.{ext}" if ext else filename
        path = f"/{name}" if directory == ROOT_DIRECTORY else f"/{directory}/{name}"

        try:
            token, fresh = await self._resolve_token(request)
        except AuthError as e:
            return self.fail(request, e, state=reset_state())
        if not token:
            return self.fail(
                request,
                AuthError("No Dropbox access token in state", safe_message="Not logged in to Dropbox"),
                state=reset_state(),
            )

        payload = await materialize(request.payload)
        try:
            await self._client(token).upload(path, payload.data)
        except HubError as e:
            return self.fail(request, e, state=reset_state())
        except httpx.HTTPError as e:
            return self.fail(
                request,
                DeliveryError(f"Upload unsuccessful: {e}", safe_message="Upload to Dropbox was unsuccessful"),
                state=reset_state(),
            )

        logger.info(f"[DROPBOX] Uploaded {path} (webhook {request.webhook_id})")
        response = ActionResponse(success=True, filename=name)
        if fresh:
            response.state = authenticated_state(token)
        return response

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    async def oauth_url(self, redirect_uri: str, encrypted_state: str) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self.config.dropbox_app_key,
            "redirect_uri": redirect_uri,
            "force_reapprove": "true",
            "state": encrypted_state,
        })
        return f"{AUTHORIZE_URL}?{query}"

    async def oauth_fetch_info(self, url_params: dict[str, str], redirect_uri: str) -> None:
        await forward_authorization_code(
            self.crypto,
            url_params,
            redirect_uri,
            ttl=self.config.oauth_state_ttl,
            transport=self._transport,
        )

    async def oauth_check(self, request: ActionRequest) -> bool:
        state = request.parse_state_json() or {}
        try:
            await self._client(state.get("access_token", "")).list_folders("")
            return True
        except (HubError, httpx.HTTPError) as e:
            logger.warning(f"[DROPBOX] OAuth check failed: {type(e).__name__} (webhook {request.webhook_id})")
            return False


def register_actions(registry: ActionRegistry, config: HubConfig) -> None:
    """Register Dropbox when its app credentials and hub OAuth are configured."""
    if not config.dropbox_configured:
        logger.info("[DROPBOX] Not registering: DROPBOX_ACTION_APP_KEY/SECRET not set")
        return
    if not config.oauth_enabled:
        logger.info("[DROPBOX] Not registering: ACTION_HUB_BASE_URL/ACTION_HUB_SECRET_KEY not set")
        return

    try:
        crypto = ActionCrypto.from_config(config)
    except CryptoError as e:
        logger.error(f"[DROPBOX] Not registering: {e.message}")
        return

    registry.register(DropboxAction(config, crypto))
