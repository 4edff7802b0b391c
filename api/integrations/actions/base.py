"""
Base classes for actions.

Defines the capability contract every destination handler implements, and
the two OAuth variants. The variant is carried as an explicit `kind`; the
dispatcher checks `capabilities` rather than inspecting classes.

    Action               form + execute
    OAuthAction          + oauth_url, oauth_fetch_info, oauth_check
    DelegateOAuthAction  + oauth_check; auth is held outside the hub, so it
                         never issues its own authorization link
"""

from abc import ABC, abstractmethod
from typing import Optional

from integrations.core.config import HubConfig
from integrations.core.crypto import ActionCrypto
from integrations.core.errors import CapabilityError, ConfigurationError, HubError
from integrations.core.oauth import build_oauth_link_form, callback_redirect_uri
from integrations.core.types import (
    CAPABILITIES,
    ActionDescription,
    ActionForm,
    ActionKind,
    ActionParam,
    ActionRequest,
    ActionResponse,
    ActionType,
    Capability,
    RequiredField,
)


def parse_version(version: str) -> tuple[int, ...]:
    """"7.10.2" -> (7, 10, 2). Non-numeric segments count as 0."""
    parts = []
    for segment in version.split("."):
        digits = "".join(ch for ch in segment if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class Action(ABC):
    """
    Abstract base class for all actions.

    Actions are constructed once at startup, registered, and never mutated
    afterwards. Per-call data arrives in the ActionRequest; per-call clients
    are built inside form()/execute().
    """

    name: str = ""
    label: str = ""
    icon_name: Optional[str] = None
    description: str = ""
    supported_action_types: list[ActionType] = []
    supported_formats: list[str] = []
    uses_streaming: bool = False
    minimum_supported_version: Optional[str] = None
    params: list[ActionParam] = []
    required_fields: list[RequiredField] = []

    kind: ActionKind = ActionKind.ACTION

    @property
    def capabilities(self) -> frozenset[Capability]:
        return CAPABILITIES[self.kind]

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def supports_version(self, caller_version: Optional[str]) -> bool:
        """Whether a caller speaking caller_version can use this action."""
        if not caller_version or not self.minimum_supported_version:
            return True
        return parse_version(caller_version) >= parse_version(self.minimum_supported_version)

    def describe(self, base_url: Optional[str] = None) -> ActionDescription:
        """Static metadata. No side effects."""
        url = f"{base_url}/actions/{self.name}" if base_url else None
        return ActionDescription(
            name=self.name,
            label=self.label,
            icon_name=self.icon_name,
            description=self.description,
            params=self.params,
            required_fields=self.required_fields,
            supported_action_types=self.supported_action_types,
            supported_formats=self.supported_formats,
            uses_streaming=self.uses_streaming,
            minimum_supported_version=self.minimum_supported_version,
            uses_oauth=self.kind in (ActionKind.OAUTH, ActionKind.DELEGATE_OAUTH),
            delegate_oauth=self.kind == ActionKind.DELEGATE_OAUTH,
            url=f"{url}/execute" if url else None,
            form_url=f"{url}/form" if url else None,
        )

    def validate_request(self, request: ActionRequest) -> None:
        """
        Check the request against the declared contract.

        Raises:
            CapabilityError: Request type not supported by this action
            ConfigurationError: A required param is missing
        """
        if request.type is not None and self.supported_action_types \
                and request.type not in self.supported_action_types:
            raise CapabilityError(f"{self.label} does not support {request.type.value} requests")

        missing = [p.label for p in self.params if p.required and not request.params.get(p.name)]
        if missing:
            raise ConfigurationError(f"Missing required parameters: {', '.join(missing)}")

    def fail(self, request: ActionRequest, error: HubError, **kwargs) -> ActionResponse:
        """
        Build a failed response without raising.

        Not logged here: the dispatcher logs it once sensitive values are
        scrubbed.
        """
        return ActionResponse.failure(error, webhook_id=request.webhook_id, **kwargs)

    async def form(self, request: ActionRequest) -> ActionForm:
        """Dynamic form. Actions without configurable fields keep the default."""
        return ActionForm()

    @abstractmethod
    async def execute(self, request: ActionRequest) -> ActionResponse:
        """
        Deliver the request's payload.

        Missing payload or form values are reported as a failed response,
        not raised.
        """


class OAuthAction(Action):
    """
    Action whose destination needs a user OAuth grant.

    The hub issues the authorization link itself, so these actions need the
    public base URL and the state codec.
    """

    kind = ActionKind.OAUTH

    def __init__(self, config: HubConfig, crypto: Optional[ActionCrypto]):
        self.config = config
        self.crypto = crypto

    @property
    def redirect_uri(self) -> str:
        return callback_redirect_uri(self.name, self.config)

    def oauth_link_form(self, request: ActionRequest, description: Optional[str] = None) -> ActionForm:
        return build_oauth_link_form(self.name, request, self.crypto, self.config, description=description)

    @abstractmethod
    async def oauth_url(self, redirect_uri: str, encrypted_state: str) -> str:
        """Provider authorization URL with encrypted_state as its state param."""

    @abstractmethod
    async def oauth_fetch_info(self, url_params: dict[str, str], redirect_uri: str) -> None:
        """Complete the provider callback by handing the code to the caller."""

    @abstractmethod
    async def oauth_check(self, request: ActionRequest) -> bool:
        """Cheap authenticated probe. True if the held credentials work."""


class DelegateOAuthAction(Action):
    """Action whose OAuth grant is obtained and held by the caller."""

    kind = ActionKind.DELEGATE_OAUTH

    @abstractmethod
    async def oauth_check(self, request: ActionRequest) -> bool:
        """Probe the destination with the caller-supplied credentials."""
