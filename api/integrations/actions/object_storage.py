"""
Object Storage Actions

One generic streaming action for bucket-style destinations. Each
destination is an ObjectStorageBackend: its metadata and declared params,
plus a client factory that builds an ObjectStorageClient from the request's
params. Adding an S3-compatible provider means adding a backend, not a
subclass.

Registered backends:
- amazon_s3                    boto3 against AWS
- digitalocean_object_storage  boto3 against <region>.digitaloceanspaces.com
- google_cloud_storage         GCS JSON API with a service account

Form fields:
    bucket     select, populated by a live bucket listing
    filename   optional; defaults to the request's suggested filename
    overwrite  "no" inserts a millisecond timestamp before the extension
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from integrations.core.config import HubConfig
from integrations.core.errors import ConfigurationError, DeliveryError, HubError
from integrations.core.filenames import Clock, unique_filename, unix_millis
from integrations.core.gcs_client import GCSStorageClient
from integrations.core.s3_client import S3StorageClient
from integrations.core.streaming import ObjectStorageClient, deliver_payload
from integrations.core.types import (
    DEFAULT_CHUNK_SIZE,
    ActionForm,
    ActionParam,
    ActionRequest,
    ActionResponse,
    ActionType,
    FormField,
    FormOption,
)
from .base import Action
from .registry import ActionRegistry

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ActionRequest], ObjectStorageClient]


@dataclass(frozen=True)
class ObjectStorageBackend:
    """Everything that differs between object storage destinations."""
    name: str
    label: str
    description: str
    client_factory: ClientFactory
    params: list[ActionParam] = field(default_factory=list)
    icon_name: Optional[str] = None
    bucket_label: str = "Bucket"


class ObjectStorageAction(Action):
    """
    Streams payloads into a bucket of the configured backend.

    Uploads go through the delivery pipeline, so memory use is bounded by
    the backend writer's part size regardless of payload size.
    """

    uses_streaming = True
    supported_action_types = [ActionType.QUERY, ActionType.DASHBOARD]
    required_fields = []

    def __init__(
        self,
        backend: ObjectStorageBackend,
        *,
        clock: Clock = unix_millis,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.backend = backend
        self.name = backend.name
        self.label = backend.label
        self.icon_name = backend.icon_name
        self.description = backend.description
        self.params = backend.params
        self._clock = clock
        self._chunk_size = chunk_size

    async def form(self, request: ActionRequest) -> ActionForm:
        client = self.backend.client_factory(request)
        try:
            buckets = await client.list_buckets()
        except httpx.HTTPError as e:
            raise ConfigurationError(
                f"{self.label} bucket listing failed: {e}",
                safe_message=f"Could not list {self.backend.bucket_label.lower()}s",
            ) from e

        return ActionForm(fields=[
            FormField(
                name="bucket",
                label=self.backend.bucket_label,
                type="select",
                required=True,
                options=[FormOption(name=b, label=b) for b in buckets],
                default=buckets[0] if buckets else None,
            ),
            FormField(
                name="filename",
                label="Filename",
                type="string",
            ),
            FormField(
                name="overwrite",
                label="Overwrite",
                type="select",
                options=[FormOption(name="yes", label="Yes"), FormOption(name="no", label="No")],
                default="yes",
                description=(
                    "If Overwrite is enabled, will use the title or filename and overwrite existing data."
                    " If disabled, a date time will be appended to the name to make the file unique."
                ),
            ),
        ])

    async def execute(self, request: ActionRequest) -> ActionResponse:
        bucket = request.form_params.get("bucket")
        if not bucket:
            return self.fail(request, ConfigurationError(
                f"{self.label} needs a {self.backend.bucket_label.lower()} specified."
            ))

        if request.payload is None:
            return self.fail(request, ConfigurationError(f"No data sent to be delivered to {self.label}."))

        filename = request.form_params.get("filename") or request.suggested_filename()
        if not filename:
            return self.fail(request, ConfigurationError(
                f"{self.label} request did not contain filename, or invalid filename was provided."
            ))
        if request.form_params.get("overwrite") == "no":
            filename = unique_filename(filename, self._clock)

        try:
            client = self.backend.client_factory(request)
            writer = client.open_writer(bucket, filename)
            stats = await deliver_payload(
                request.payload,
                writer,
                chunk_size=self._chunk_size,
                label=f"{self.name} {bucket}/{filename}",
            )
        except HubError as e:
            return self.fail(request, e)
        except httpx.HTTPError as e:
            return self.fail(request, DeliveryError(f"{self.label} upload failed: {e}",
                                                    safe_message=f"Upload to {self.label} failed"))

        logger.info(
            f"[OBJECT_STORAGE] {self.name}: delivered {stats.bytes_written} bytes to "
            f"{bucket}/{filename} (webhook {request.webhook_id})"
        )
        return ActionResponse(success=True, filename=filename)


# =============================================================================
# Backends
# =============================================================================

def amazon_s3_client(request: ActionRequest) -> ObjectStorageClient:
    return S3StorageClient(
        access_key_id=request.params["access_key_id"],
        secret_access_key=request.params["secret_access_key"],
        region=request.params.get("region"),
    )


def digitalocean_spaces_client(request: ActionRequest) -> ObjectStorageClient:
    region = request.params["region"].lower()
    return S3StorageClient(
        access_key_id=request.params["access_key_id"],
        secret_access_key=request.params["secret_access_key"],
        region=region,
        endpoint_url=f"https://{region}.digitaloceanspaces.com",
    )


def google_cloud_storage_client(request: ActionRequest) -> ObjectStorageClient:
    return GCSStorageClient(
        client_email=request.params["client_email"],
        private_key=request.params["private_key"],
        project_id=request.params["project_id"],
    )


AMAZON_S3 = ObjectStorageBackend(
    name="amazon_s3",
    label="Amazon S3",
    icon_name="amazon/amazon_s3.png",
    description="Write data files to an S3 bucket.",
    client_factory=amazon_s3_client,
    params=[
        ActionParam(
            name="access_key_id",
            label="Access Key",
            required=True,
            sensitive=False,
            description="Your access key for S3.",
        ),
        ActionParam(
            name="secret_access_key",
            label="Secret Key",
            required=True,
            sensitive=True,
            description="Your secret key for S3.",
        ),
        ActionParam(
            name="region",
            label="Region",
            required=True,
            sensitive=False,
            description="S3 Region e.g. us-east-1",
        ),
    ],
)

DIGITALOCEAN_SPACES = ObjectStorageBackend(
    name="digitalocean_object_storage",
    label="DigitalOcean Spaces",
    icon_name="digitalocean/DigitalOcean.png",
    description="Write data files to DigitalOcean's Spaces storage.",
    client_factory=digitalocean_spaces_client,
    bucket_label="Space Name",
    params=[
        ActionParam(
            name="access_key_id",
            label="Spaces Access Key",
            required=True,
            sensitive=False,
            description="Your access key for DigitalOcean Spaces https://cloud.digitalocean.com/settings/api/tokens.",
        ),
        ActionParam(
            name="secret_access_key",
            label="Spaces Secret Key",
            required=True,
            sensitive=True,
            description="Your secret key for DigitalOcean Spaces https://cloud.digitalocean.com/settings/api/tokens.",
        ),
        ActionParam(
            name="region",
            label="Region",
            required=True,
            sensitive=False,
            description="DigitalOcean Region e.g. NYC3 ",
        ),
    ],
)

GOOGLE_CLOUD_STORAGE = ObjectStorageBackend(
    name="google_cloud_storage",
    label="Google Cloud Storage",
    icon_name="google/gcs/google_cloud_storage.svg",
    description="Write data files to a Google Cloud Storage bucket.",
    client_factory=google_cloud_storage_client,
    params=[
        ActionParam(
            name="client_email",
            label="Client Email",
            required=True,
            sensitive=False,
            description="Your client email for GCS from https://console.cloud.google.com/apis/credentials",
        ),
        ActionParam(
            name="private_key",
            label="Private Key",
            required=True,
            sensitive=True,
            description="Your private key for GCS from https://console.cloud.google.com/apis/credentials",
        ),
        ActionParam(
            name="project_id",
            label="Project Id",
            required=True,
            sensitive=False,
            description="The Project Id for your GCS project from https://console.cloud.google.com/apis/credentials",
        ),
    ],
)

BACKENDS = [AMAZON_S3, DIGITALOCEAN_SPACES, GOOGLE_CLOUD_STORAGE]


def register_actions(registry: ActionRegistry, config: HubConfig) -> None:
    """Object storage needs no hub-level config; credentials come per request."""
    for backend in BACKENDS:
        registry.register(ObjectStorageAction(backend))
