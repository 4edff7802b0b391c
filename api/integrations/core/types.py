"""
Action type definitions.

Shared types for the hub: the wire envelopes returned to callers
(pydantic models) and the per-call request and payload objects handed to
actions (plain classes, since payloads may wrap a live byte stream).
"""

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel

from .errors import ConfigurationError, DeliveryError, HubError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class ActionType(str, Enum):
    """Kinds of data a caller can send to an action."""
    QUERY = "query"
    DASHBOARD = "dashboard"
    CELL = "cell"


class ActionKind(str, Enum):
    """Closed set of action variants."""
    ACTION = "action"
    OAUTH = "oauth"
    DELEGATE_OAUTH = "delegate_oauth"


class Capability(str, Enum):
    """Operations the dispatcher can route to an action."""
    FORM = "form"
    EXECUTE = "execute"
    OAUTH_URL = "oauth_url"
    OAUTH_FETCH_INFO = "oauth_fetch_info"
    OAUTH_CHECK = "oauth_check"


CAPABILITIES: dict[ActionKind, frozenset[Capability]] = {
    ActionKind.ACTION: frozenset({Capability.FORM, Capability.EXECUTE}),
    ActionKind.OAUTH: frozenset({
        Capability.FORM,
        Capability.EXECUTE,
        Capability.OAUTH_URL,
        Capability.OAUTH_FETCH_INFO,
        Capability.OAUTH_CHECK,
    }),
    # Auth lives with the caller; the hub can only probe it.
    ActionKind.DELEGATE_OAUTH: frozenset({
        Capability.FORM,
        Capability.EXECUTE,
        Capability.OAUTH_CHECK,
    }),
}


# =============================================================================
# Action metadata
# =============================================================================

class ActionParam(BaseModel):
    """A top-level parameter the caller configures once per destination."""
    name: str
    label: str
    required: bool = False
    sensitive: bool = False
    description: Optional[str] = None


class RequiredField(BaseModel):
    """A payload field the action needs the caller to include."""
    tag: Optional[str] = None
    any_tag: Optional[list[str]] = None
    all_tags: Optional[list[str]] = None
    name: Optional[str] = None


class ActionDescription(BaseModel):
    """Static, side-effect free description of a registered action."""
    name: str
    label: str
    icon_name: Optional[str] = None
    description: str = ""
    params: list[ActionParam] = []
    required_fields: list[RequiredField] = []
    supported_action_types: list[ActionType] = []
    supported_formats: list[str] = []
    uses_streaming: bool = False
    minimum_supported_version: Optional[str] = None
    uses_oauth: bool = False
    delegate_oauth: bool = False
    url: Optional[str] = None
    form_url: Optional[str] = None


# =============================================================================
# Forms and responses
# =============================================================================

class FormOption(BaseModel):
    name: str
    label: str


class FormField(BaseModel):
    """One field of a dynamic form."""
    name: str
    label: Optional[str] = None
    type: str = "string"
    required: bool = False
    default: Optional[str] = None
    description: Optional[str] = None
    options: Optional[list[FormOption]] = None
    oauth_url: Optional[str] = None


class ActionState(BaseModel):
    """Opaque state handed back to the caller for its next request."""
    data: str


class ActionForm(BaseModel):
    fields: list[FormField] = []
    state: Optional[ActionState] = None
    error: Optional[str] = None

    def field(self, name: str) -> Optional[FormField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class ActionError(BaseModel):
    """Classified, caller-safe error."""
    kind: str
    message: str
    status_code: int = 500


class ActionResponse(BaseModel):
    """
    Uniform envelope for every dispatched capability.

    Only the fields relevant to the invoked capability are populated:
    form for form(), redirect_url for oauth_url(), authenticated for
    oauth_check(), action for describe().
    """
    success: bool = True
    message: Optional[str] = None
    error: Optional[ActionError] = None
    webhook_id: Optional[str] = None
    state: Optional[ActionState] = None
    filename: Optional[str] = None
    form: Optional[ActionForm] = None
    redirect_url: Optional[str] = None
    authenticated: Optional[bool] = None
    action: Optional[ActionDescription] = None

    @classmethod
    def failure(cls, error: HubError, webhook_id: Optional[str] = None, **kwargs) -> "ActionResponse":
        return cls(
            success=False,
            message=error.safe_message,
            error=ActionError(
                kind=error.kind,
                message=error.safe_message,
                status_code=error.status_code,
            ),
            webhook_id=webhook_id,
            **kwargs,
        )


# =============================================================================
# Payload and request
# =============================================================================

class ActionPayload:
    """
    The data being delivered.

    Holds either fully materialized bytes or a lazy async byte stream. A
    stream can be consumed once; bytes can be re-read freely.
    """

    def __init__(
        self,
        data: Optional[bytes] = None,
        stream: Optional[AsyncIterator[bytes]] = None,
        filename: Optional[str] = None,
        file_extension: Optional[str] = None,
        mime_type: Optional[str] = None,
    ):
        if (data is None) == (stream is None):
            raise ValueError("ActionPayload needs exactly one of data or stream")
        self.data = data
        self._stream = stream
        self._consumed = False
        self.filename = filename
        self.file_extension = file_extension
        self.mime_type = mime_type

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs) -> "ActionPayload":
        return cls(data=data, **kwargs)

    @classmethod
    def from_stream(cls, stream: AsyncIterator[bytes], **kwargs) -> "ActionPayload":
        return cls(stream=stream, **kwargs)

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None

    async def chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the payload bytes in order."""
        if self.data is not None:
            for start in range(0, len(self.data), chunk_size):
                yield self.data[start:start + chunk_size]
            return

        if self._consumed:
            raise DeliveryError("Payload stream was already consumed")
        self._consumed = True
        try:
            async for chunk in self._stream:
                if chunk:
                    yield chunk
        finally:
            aclose = getattr(self._stream, "aclose", None)
            if aclose is not None:
                await aclose()


_UNSAFE_FILENAME = re.compile(r'[<>:"/\\|?*]')


def sanitize_filename(name: str) -> str:
    """Strip characters destinations reject in object names."""
    sanitized = _UNSAFE_FILENAME.sub("", name).strip()
    return sanitized[:200]


@dataclass
class ActionRequest:
    """
    One inbound call addressed to an action.

    params holds the declared top-level params plus the hub-level
    state_url / state_json keys; form_params holds the dynamic form values.
    """
    action_name: str
    type: Optional[ActionType] = None
    params: dict[str, str] = field(default_factory=dict)
    form_params: dict[str, str] = field(default_factory=dict)
    payload: Optional[ActionPayload] = None
    webhook_id: Optional[str] = None
    caller_version: Optional[str] = None
    scheduled_plan: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        action_name: str,
        body: dict[str, Any],
        stream: Optional[AsyncIterator[bytes]] = None,
    ) -> "ActionRequest":
        """
        Build a request from the JSON wire format.

        Args:
            action_name: Target action
            body: Parsed request JSON
            stream: Raw body stream when the payload arrives separately

        Raises:
            ConfigurationError: If the body is malformed
        """
        if not isinstance(body, dict):
            raise ConfigurationError("Request body must be a JSON object")

        action_type = None
        if body.get("type"):
            try:
                action_type = ActionType(body["type"])
            except ValueError:
                raise ConfigurationError(f"Unknown action type: {body['type']}")

        params = _string_map(body, "data")
        form_params = _string_map(body, "form_params")

        payload = None
        attachment = body.get("attachment") or {}
        if not isinstance(attachment, dict):
            raise ConfigurationError("attachment must be a JSON object")
        meta = {
            "filename": attachment.get("filename"),
            "file_extension": attachment.get("fileExtension"),
            "mime_type": attachment.get("mimetype"),
        }
        if stream is not None:
            payload = ActionPayload.from_stream(stream, **meta)
        elif attachment.get("data") is not None:
            payload = ActionPayload.from_bytes(_decode_attachment(attachment), **meta)

        scheduled_plan = body.get("scheduled_plan") or {}
        if not isinstance(scheduled_plan, dict):
            raise ConfigurationError("scheduled_plan must be a JSON object")

        webhook_id = body.get("webhook_id")
        caller_version = body.get("caller_version")
        return cls(
            action_name=action_name,
            type=action_type,
            params=params,
            form_params=form_params,
            payload=payload,
            webhook_id=str(webhook_id) if webhook_id is not None else None,
            caller_version=str(caller_version) if caller_version is not None else None,
            scheduled_plan=scheduled_plan,
        )

    @property
    def state_json(self) -> Optional[str]:
        return self.params.get("state_json") or None

    @property
    def state_url(self) -> Optional[str]:
        return self.params.get("state_url") or None

    def parse_state_json(self) -> Optional[dict[str, Any]]:
        """Parse caller-held state. Malformed state is treated as absent."""
        raw = self.state_json
        if not raw:
            return None
        try:
            state = json.loads(raw)
        except ValueError:
            logger.warning(f"[ACTIONS] Could not parse state_json for webhook {self.webhook_id}")
            return None
        return state if isinstance(state, dict) else None

    def suggested_filename(self) -> Optional[str]:
        """Filename to use when the caller did not pick one."""
        if self.payload is None:
            return None
        if self.payload.filename:
            return sanitize_filename(self.payload.filename)

        ext = self.payload.file_extension
        title = self.scheduled_plan.get("filename") or self.scheduled_plan.get("title")
        if not title:
            title = f"hub_file_{int(time.time() * 1000)}"
        name = sanitize_filename(title)
        return f"{name}.{ext}" if ext else name

    def sensitive_values(self, params: list[ActionParam]) -> list[str]:
        """Values of params declared sensitive; these never leave the hub."""
        names = {p.name for p in params if p.sensitive}
        return [v for k, v in self.params.items() if k in names and v]


def _string_map(body: dict[str, Any], key: str) -> dict[str, str]:
    """Param values arrive as arbitrary JSON; actions only ever see strings."""
    raw = body.get(key) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{key} must be a JSON object")
    return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items() if v is not None}


def _decode_attachment(attachment: dict[str, Any]) -> bytes:
    data = attachment["data"]
    if not isinstance(data, str):
        raise ConfigurationError("Attachment data must be a string")
    if attachment.get("encoding", "base64") == "base64":
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise ConfigurationError("Attachment data is not valid base64")
    return data.encode("utf-8")
