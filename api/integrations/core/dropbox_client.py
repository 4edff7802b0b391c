"""
Dropbox API Client.

Direct REST client for the few Dropbox endpoints the dropbox action needs:
token exchange, folder listing, and file upload.
"""

import json
import logging
from typing import Any, Optional

import httpx

from .errors import AuthError, DeliveryError

logger = logging.getLogger(__name__)

_DROPBOX_API_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"
TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
LIST_FOLDER_URL = "https://api.dropboxapi.com/2/files/list_folder"
UPLOAD_URL = "https://content.dropboxapi.com/2/files/upload"


class DropboxAPIClient:
    """
    Dropbox API client bound to one access token.

    Usage:
        client = DropboxAPIClient(access_token)
        folders = await client.list_folders("")
        await client.upload("/reports/q1.csv", data)
    """

    def __init__(self, access_token: str = "", transport: Optional[httpx.AsyncBaseTransport] = None):
        self.access_token = access_token
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=_DROPBOX_API_TIMEOUT, transport=self._transport)

    def _auth_headers(self) -> dict[str, str]:
        if not self.access_token:
            raise AuthError("No Dropbox access token", safe_message="Not logged in to Dropbox")
        return {"Authorization": f"Bearer {self.access_token}"}

    async def list_folders(self, path: str = "") -> list[str]:
        """
        List folder names directly under path.

        Raises:
            AuthError: Token missing, expired or revoked
            DeliveryError: Any other API failure
        """
        async with self._client() as client:
            response = await client.post(
                LIST_FOLDER_URL,
                headers={**self._auth_headers(), "Content-Type": "application/json"},
                json={"path": path},
            )
        _raise_for_status(response, "list_folder")
        entries = response.json().get("entries", [])
        return [e["name"] for e in entries if e.get(".tag") == "folder"]

    async def upload(self, path: str, contents: bytes) -> dict[str, Any]:
        """Upload a file; fails rather than overwriting an existing path."""
        api_arg = {"path": path, "mode": "add", "autorename": False, "mute": False}
        async with self._client() as client:
            response = await client.post(
                UPLOAD_URL,
                headers={
                    **self._auth_headers(),
                    "Content-Type": "application/octet-stream",
                    "Dropbox-API-Arg": json.dumps(api_arg),
                },
                content=contents,
            )
        _raise_for_status(response, "upload")
        return response.json()

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str,
    ) -> str:
        """
        Exchange an authorization code for an access token.

        Raises:
            AuthError: Dropbox rejected the code
        """
        async with self._client() as client:
            try:
                response = await client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "redirect_uri": redirect_uri,
                    },
                )
            except httpx.HTTPError as e:
                raise AuthError(f"Dropbox token request failed: {e}",
                                safe_message="Error requesting Dropbox access token") from e

        if response.status_code != 200:
            logger.error(f"[DROPBOX] Token exchange failed: HTTP {response.status_code}")
            raise AuthError(
                f"Dropbox token exchange failed: {response.text}",
                safe_message="Error requesting Dropbox access token",
            )
        token = response.json().get("access_token")
        if not token:
            raise AuthError("Dropbox token response had no access_token",
                            safe_message="Error requesting Dropbox access token")
        return token


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    if response.status_code == 200:
        return
    if response.status_code == 401:
        raise AuthError(
            f"Dropbox {operation} unauthorized: {response.text}",
            safe_message="Dropbox credentials are invalid or expired",
        )
    raise DeliveryError(
        f"Dropbox {operation} failed: HTTP {response.status_code} {response.text}",
        safe_message=f"Dropbox {operation} failed",
    )
