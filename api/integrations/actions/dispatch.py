"""
Action Dispatcher

Routes one inbound call to exactly one capability of one action and
normalizes whatever happens into an ActionResponse:

1. Look the action up (NotFoundError if unknown)
2. Check the capability against the action's kind (CapabilityError)
3. Validate declared params / request type for form and execute
4. Materialize streamed payloads for actions that cannot stream
5. Invoke the handler; any fault becomes a failed, classified response

Nothing raised by a handler crosses this boundary except cancellation.
Every failure is logged with the caller's webhook id, and values of params
declared sensitive are scrubbed from messages before they are logged or
returned.
"""

import logging
from typing import Any, Optional

import httpx

from integrations.core.config import HubConfig
from integrations.core.errors import (
    ConfigurationError,
    CapabilityError,
    DeliveryError,
    HubError,
)
from integrations.core.streaming import materialize
from integrations.core.types import (
    ActionRequest,
    ActionResponse,
    Capability,
)
from .base import Action
from .registry import ActionRegistry

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


def classify_exception(e: Exception) -> HubError:
    """Map an unclassified handler fault onto an error kind."""
    if isinstance(e, HubError):
        return e
    if isinstance(e, httpx.HTTPError):
        return DeliveryError(f"Destination request failed: {e}", safe_message="Destination request failed")
    if isinstance(e, (ValueError, KeyError)):
        return ConfigurationError(f"Invalid request: {e}", safe_message="Invalid action configuration")
    return DeliveryError(f"Unexpected error: {type(e).__name__}: {e}", safe_message="Action failed unexpectedly")


def redact(text: Optional[str], secrets: list[str]) -> Optional[str]:
    """Replace every occurrence of a secret value in text."""
    if not text:
        return text
    values = [s for s in secrets if isinstance(s, str) and s]
    for secret in sorted(values, key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


class ActionDispatcher:
    """
    Entry point used by the HTTP layer.

    Usage:
        dispatcher = ActionDispatcher(get_action_registry(config), config)
        response = await dispatcher.execute("dropbox", request)
    """

    def __init__(self, registry: ActionRegistry, config: HubConfig, *, max_materialized_bytes: Optional[int] = None):
        self.registry = registry
        self.config = config
        self.max_materialized_bytes = max_materialized_bytes

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    async def describe(self, name: str) -> ActionResponse:
        try:
            action = self.registry.lookup(name)
        except HubError as e:
            return self._failure(e, name, "describe")
        return ActionResponse(action=action.describe(self.config.base_url))

    async def form(self, name: str, request: ActionRequest) -> ActionResponse:
        return await self.dispatch(Capability.FORM, name, request=request)

    async def execute(self, name: str, request: ActionRequest) -> ActionResponse:
        return await self.dispatch(Capability.EXECUTE, name, request=request)

    async def oauth_url(self, name: str, redirect_uri: str, encrypted_state: str) -> ActionResponse:
        return await self.dispatch(
            Capability.OAUTH_URL, name, redirect_uri=redirect_uri, encrypted_state=encrypted_state
        )

    async def oauth_fetch_info(self, name: str, url_params: dict[str, str], redirect_uri: str) -> ActionResponse:
        return await self.dispatch(
            Capability.OAUTH_FETCH_INFO, name, url_params=url_params, redirect_uri=redirect_uri
        )

    async def oauth_check(self, name: str, request: ActionRequest) -> ActionResponse:
        return await self.dispatch(Capability.OAUTH_CHECK, name, request=request)

    async def dispatch(
        self,
        capability: Capability,
        name: str,
        *,
        request: Optional[ActionRequest] = None,
        **kwargs: Any,
    ) -> ActionResponse:
        """Invoke one capability. Never raises HubError."""
        webhook_id = request.webhook_id if request else None
        secrets: list[str] = []

        try:
            action = self.registry.lookup(name)
            if request is not None:
                secrets = request.sensitive_values(action.params)

            if not action.supports(capability):
                raise CapabilityError(
                    f"Action '{name}' ({action.kind.value}) does not support {capability.value}"
                )

            return await self._invoke(action, capability, request, **kwargs)

        except HubError as e:
            return self._failure(e, name, capability.value, webhook_id, secrets)
        except Exception as e:
            # Tracebacks can carry param values, so only the type is logged here.
            logger.warning(
                f"[DISPATCH] Unhandled {type(e).__name__} in {name}.{capability.value} "
                f"(webhook {webhook_id})"
            )
            return self._failure(classify_exception(e), name, capability.value, webhook_id, secrets)

    async def _invoke(
        self,
        action: Action,
        capability: Capability,
        request: Optional[ActionRequest],
        **kwargs: Any,
    ) -> ActionResponse:
        if capability in (Capability.FORM, Capability.EXECUTE, Capability.OAUTH_CHECK) and request is None:
            raise ConfigurationError(f"{capability.value} needs a request")

        if capability == Capability.FORM:
            action.validate_request(request)
            form = await action.form(request)
            return ActionResponse(form=form, state=form.state, webhook_id=request.webhook_id)

        if capability == Capability.EXECUTE:
            action.validate_request(request)
            if request.payload is not None and request.payload.is_streaming and not action.uses_streaming:
                request.payload = await materialize(request.payload, max_bytes=self.max_materialized_bytes)
            response = await action.execute(request)
            response.webhook_id = request.webhook_id
            if not response.success:
                secrets = request.sensitive_values(action.params)
                response.message = redact(response.message, secrets)
                if response.error is not None:
                    response.error.message = redact(response.error.message, secrets)
                logger.error(
                    f"[DISPATCH] {action.name}.execute failed "
                    f"({response.error.kind if response.error else 'unknown'}): {response.message} "
                    f"(webhook {request.webhook_id})"
                )
            return response

        if capability == Capability.OAUTH_URL:
            url = await action.oauth_url(kwargs["redirect_uri"], kwargs["encrypted_state"])
            return ActionResponse(redirect_url=url)

        if capability == Capability.OAUTH_FETCH_INFO:
            await action.oauth_fetch_info(kwargs["url_params"], kwargs["redirect_uri"])
            return ActionResponse(message="Authorization forwarded")

        if capability == Capability.OAUTH_CHECK:
            ok = await action.oauth_check(request)
            return ActionResponse(success=True, authenticated=bool(ok), webhook_id=request.webhook_id)

        raise CapabilityError(f"Unknown capability {capability}")

    def _failure(
        self,
        error: HubError,
        name: str,
        operation: str,
        webhook_id: Optional[str] = None,
        secrets: Optional[list[str]] = None,
    ) -> ActionResponse:
        secrets = secrets or []
        internal = redact(error.message, secrets)
        safe = redact(error.safe_message, secrets)
        logger.error(
            f"[DISPATCH] {name}.{operation} failed ({error.kind}): {internal} (webhook {webhook_id})"
        )
        error.safe_message = safe
        return ActionResponse.failure(error, webhook_id=webhook_id)
