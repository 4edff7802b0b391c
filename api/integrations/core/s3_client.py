"""
S3-compatible storage client.

Used for Amazon S3 and for S3-compatible services (DigitalOcean Spaces)
by pointing boto3 at a different endpoint. boto3 is synchronous, so every
call runs in a worker thread.

Uploads go through S3MultipartWriter: the payload is cut into parts of
part_size bytes as it arrives, so memory use is bounded by one part no
matter how large the payload is. Small payloads that never fill a part are
sent with a single PutObject.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AuthError, DeliveryError
from .streaming import ObjectStorageClient, PayloadSink

logger = logging.getLogger(__name__)

# S3 requires every part but the last to be at least 5 MiB.
DEFAULT_PART_SIZE = 8 * 1024 * 1024

_AUTH_ERROR_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
}


def _classify(e: Exception, operation: str) -> Exception:
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        if code in _AUTH_ERROR_CODES:
            return AuthError(f"S3 {operation} denied: {code}", safe_message="Storage credentials were rejected")
        return DeliveryError(f"S3 {operation} failed: {code} {e}", safe_message=f"Storage {operation} failed")
    return DeliveryError(f"S3 {operation} failed: {e}", safe_message=f"Storage {operation} failed")


async def _call(operation: str, fn: Callable[..., Any], **kwargs) -> Any:
    try:
        return await asyncio.to_thread(fn, **kwargs)
    except (ClientError, BotoCoreError) as e:
        raise _classify(e, operation) from e


class S3StorageClient(ObjectStorageClient):
    """
    Bucket listing and uploads against one S3-compatible endpoint.

    Usage:
        client = S3StorageClient(
            access_key_id="...", secret_access_key="...",
            region="nyc3", endpoint_url="https://nyc3.digitaloceanspaces.com",
        )
        buckets = await client.list_buckets()
        writer = client.open_writer("my-bucket", "report.csv")
    """

    def __init__(
        self,
        *,
        access_key_id: str,
        secret_access_key: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        part_size: int = DEFAULT_PART_SIZE,
        client: Any = None,
    ):
        self.part_size = part_size
        self._s3 = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    async def list_buckets(self) -> list[str]:
        response = await _call("list_buckets", self._s3.list_buckets)
        return [b["Name"] for b in response.get("Buckets", [])]

    def open_writer(self, bucket: str, key: str) -> "S3MultipartWriter":
        return S3MultipartWriter(self._s3, bucket, key, part_size=self.part_size)


class S3MultipartWriter(PayloadSink):
    """Multipart upload sink. abort() removes any uploaded parts."""

    def __init__(self, s3: Any, bucket: str, key: str, part_size: int = DEFAULT_PART_SIZE):
        self._s3 = s3
        self.bucket = bucket
        self.key = key
        self.part_size = part_size
        self._buffer = bytearray()
        self._parts: list[dict[str, Any]] = []
        self._upload_id: Optional[str] = None

    async def write(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        while len(self._buffer) >= self.part_size:
            part = bytes(self._buffer[:self.part_size])
            del self._buffer[:self.part_size]
            await self._upload_part(part)

    async def _upload_part(self, data: bytes) -> None:
        if self._upload_id is None:
            response = await _call(
                "create_multipart_upload",
                self._s3.create_multipart_upload,
                Bucket=self.bucket,
                Key=self.key,
            )
            self._upload_id = response["UploadId"]

        number = len(self._parts) + 1
        response = await _call(
            "upload_part",
            self._s3.upload_part,
            Bucket=self.bucket,
            Key=self.key,
            UploadId=self._upload_id,
            PartNumber=number,
            Body=data,
        )
        self._parts.append({"ETag": response["ETag"], "PartNumber": number})

    async def close(self) -> None:
        if self._upload_id is None:
            await _call(
                "put_object",
                self._s3.put_object,
                Bucket=self.bucket,
                Key=self.key,
                Body=bytes(self._buffer),
            )
        else:
            if self._buffer:
                await self._upload_part(bytes(self._buffer))
            await _call(
                "complete_multipart_upload",
                self._s3.complete_multipart_upload,
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts},
            )
        self._buffer.clear()
        logger.info(f"[OBJECT_STORAGE] Wrote s3://{self.bucket}/{self.key} ({len(self._parts)} parts)")

    async def abort(self) -> None:
        self._buffer.clear()
        if self._upload_id is None:
            return
        await _call(
            "abort_multipart_upload",
            self._s3.abort_multipart_upload,
            Bucket=self.bucket,
            Key=self.key,
            UploadId=self._upload_id,
        )
        logger.info(f"[OBJECT_STORAGE] Aborted partial upload s3://{self.bucket}/{self.key}")
