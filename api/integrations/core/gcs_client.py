"""
Google Cloud Storage client.

Direct JSON API client authenticated with a service account: a signed JWT
assertion (RS256) is exchanged for a short-lived access token.

Uploads use the resumable protocol. Each non-final request carries exactly
chunk_size bytes (a multiple of 256 KiB, as GCS requires); the final
request carries the remainder and the total size, and GCS only creates the
object once that request succeeds. Deleting the session URI cancels the
upload.
"""

import logging
import time
from typing import Optional
from urllib.parse import quote

import httpx
import jwt

from .errors import AuthError, ConfigurationError, DeliveryError
from .streaming import ObjectStorageClient, PayloadSink

logger = logging.getLogger(__name__)

_GCS_API_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

TOKEN_URL = "https://oauth2.googleapis.com/token"
STORAGE_SCOPE = "https://www.googleapis.com/auth/devstorage.read_write"
JSON_API_BASE = "https://storage.googleapis.com/storage/v1"
UPLOAD_API_BASE = "https://storage.googleapis.com/upload/storage/v1"

_CHUNK_QUANTUM = 256 * 1024
DEFAULT_CHUNK_SIZE = 32 * _CHUNK_QUANTUM  # 8 MiB


class GCSStorageClient(ObjectStorageClient):
    """
    Bucket listing and resumable uploads for one GCS project.

    Usage:
        client = GCSStorageClient(client_email=..., private_key=..., project_id=...)
        buckets = await client.list_buckets()
        writer = client.open_writer("exports", "report.csv")
    """

    def __init__(
        self,
        *,
        client_email: str,
        private_key: str,
        project_id: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if chunk_size % _CHUNK_QUANTUM:
            raise ValueError("chunk_size must be a multiple of 256 KiB")
        self.client_email = client_email
        # Keys pasted into a single-line form field arrive with literal "\n"
        self.private_key = private_key.replace("\\n", "\n")
        self.project_id = project_id
        self.chunk_size = chunk_size
        self._transport = transport
        self._token: Optional[tuple[str, float]] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=_GCS_API_TIMEOUT, transport=self._transport)

    def _assertion(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.client_email,
            "scope": STORAGE_SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        try:
            return jwt.encode(claims, self.private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid GCS private key: {e}",
                safe_message="The GCS private key could not be used",
            ) from e

    async def access_token(self) -> str:
        """Service-account access token, reused until a minute before expiry."""
        if self._token and time.monotonic() < self._token[1] - 60:
            return self._token[0]

        async with self._client() as client:
            response = await client.post(
                TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": self._assertion(),
                },
            )
        if response.status_code != 200:
            raise AuthError(
                f"GCS token exchange failed: HTTP {response.status_code} {response.text}",
                safe_message="Google Cloud credentials were rejected",
            )
        data = response.json()
        self._token = (data["access_token"], time.monotonic() + data.get("expires_in", 3600))
        return self._token[0]

    async def list_buckets(self) -> list[str]:
        token = await self.access_token()
        async with self._client() as client:
            response = await client.get(
                f"{JSON_API_BASE}/b",
                params={"project": self.project_id},
                headers={"Authorization": f"Bearer {token}"},
            )
        if response.status_code in (401, 403):
            raise AuthError(f"GCS list buckets denied: {response.text}",
                            safe_message="Google Cloud credentials were rejected")
        if response.status_code != 200:
            raise DeliveryError(f"GCS list buckets failed: HTTP {response.status_code}",
                                safe_message="Listing buckets failed")
        return [item["name"] for item in response.json().get("items", [])]

    def open_writer(self, bucket: str, key: str) -> "GCSResumableWriter":
        return GCSResumableWriter(self, bucket, key, chunk_size=self.chunk_size)


class GCSResumableWriter(PayloadSink):
    """Resumable-upload sink for one object."""

    def __init__(self, gcs: GCSStorageClient, bucket: str, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._gcs = gcs
        self.bucket = bucket
        self.key = key
        self.chunk_size = chunk_size
        self._buffer = bytearray()
        self._offset = 0
        self._session_url: Optional[str] = None
        self._http: Optional[httpx.AsyncClient] = None

    async def _ensure_session(self) -> None:
        if self._session_url:
            return
        token = await self._gcs.access_token()
        self._http = self._gcs._client()
        response = await self._http.post(
            f"{UPLOAD_API_BASE}/b/{quote(self.bucket, safe='')}/o",
            params={"uploadType": "resumable", "name": self.key},
            headers={
                "Authorization": f"Bearer {token}",
                "X-Upload-Content-Type": "application/octet-stream",
            },
        )
        if response.status_code in (401, 403):
            raise AuthError(f"GCS upload denied: {response.text}",
                            safe_message="Google Cloud credentials were rejected")
        if response.status_code != 200 or "location" not in response.headers:
            raise DeliveryError(f"GCS upload session failed: HTTP {response.status_code}",
                                safe_message="Could not start the upload")
        self._session_url = response.headers["location"]

    async def write(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        # Strictly greater: the final request must always have bytes to commit.
        while len(self._buffer) > self.chunk_size:
            part = bytes(self._buffer[:self.chunk_size])
            del self._buffer[:self.chunk_size]
            await self._put(part, final=False)

    async def _put(self, data: bytes, *, final: bool) -> None:
        await self._ensure_session()
        start = self._offset
        end = start + len(data) - 1
        if final:
            total = start + len(data)
            content_range = f"bytes {start}-{end}/{total}" if data else f"bytes */{total}"
        else:
            content_range = f"bytes {start}-{end}/*"

        response = await self._http.put(
            self._session_url,
            content=data,
            headers={"Content-Range": content_range},
        )
        expected = (200, 201) if final else (308,)
        if response.status_code not in expected:
            raise DeliveryError(
                f"GCS chunk {content_range} failed: HTTP {response.status_code} {response.text}",
                safe_message="Writing to Google Cloud Storage failed",
            )
        self._offset += len(data)

    async def close(self) -> None:
        # On failure the session stays open so abort() can cancel it.
        await self._put(bytes(self._buffer), final=True)
        self._buffer.clear()
        await self._close_http()
        logger.info(f"[OBJECT_STORAGE] Wrote gs://{self.bucket}/{self.key} ({self._offset} bytes)")

    async def abort(self) -> None:
        self._buffer.clear()
        try:
            if self._session_url and self._http is not None:
                # GCS answers a cancelled session with 499
                await self._http.delete(self._session_url)
                logger.info(f"[OBJECT_STORAGE] Cancelled upload gs://{self.bucket}/{self.key}")
        finally:
            await self._close_http()

    async def _close_http(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
