"""
Boundary to the messaging client.

The live messaging session (pairing, transport encryption, media crypto) is
held by a bridge sidecar. The pipeline only depends on the MessagingClient
protocol; BridgeClient implements it over the bridge's HTTP API.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from wa_archiver.exceptions import LookupMiss, MediaFetchError
from wa_archiver.utils import JID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaDownloadRequest:
    """Everything the network needs to fetch and decrypt one media object."""
    url: str
    direct_path: str
    media_key: bytes
    file_sha256: bytes
    file_enc_sha256: bytes
    file_length: int
    media_type: str

    def to_json(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "direct_path": self.direct_path,
            "media_key": base64.b64encode(self.media_key).decode("ascii"),
            "file_sha256": base64.b64encode(self.file_sha256).decode("ascii"),
            "file_enc_sha256": base64.b64encode(self.file_enc_sha256).decode("ascii"),
            "file_length": self.file_length,
            "media_type": self.media_type,
        }


@dataclass(frozen=True)
class UploadedMedia:
    """Result of uploading media to the network, used to build the outbound message."""
    url: str
    direct_path: str
    media_key: bytes
    file_sha256: bytes
    file_enc_sha256: bytes
    file_length: int


def _json_object(response: httpx.Response) -> Optional[dict[str, Any]]:
    """JSON object body of a response, None when the body is not one."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class MessagingClient(Protocol):
    def is_connected(self) -> bool: ...

    def own_user(self) -> str: ...

    def get_contact_name(self, jid: JID) -> Optional[str]: ...

    def get_group_name(self, jid: JID) -> Optional[str]: ...

    def download_media(self, request: MediaDownloadRequest) -> bytes: ...

    def upload_media(self, data: bytes, media_type: str) -> UploadedMedia: ...

    def send_message(self, jid: JID, payload: dict[str, Any]) -> None: ...


class BridgeClient:
    """
    MessagingClient backed by the bridge's HTTP API.

    Lookups that find nothing raise LookupMiss internally and return None;
    media failures raise MediaFetchError.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._own_user: Optional[str] = None

    def close(self) -> None:
        self._http.close()

    def _session(self) -> dict[str, Any]:
        response = self._http.get("/session")
        response.raise_for_status()
        return _json_object(response) or {}

    def is_connected(self) -> bool:
        try:
            return bool(self._session().get("connected"))
        except httpx.HTTPError as e:
            logger.warning(f"Bridge session check failed: {e}")
            return False

    def own_user(self) -> str:
        """User part of the account's own JID, empty when the bridge can't tell."""
        if self._own_user is None:
            try:
                user = self._session().get("user") or ""
            except httpx.HTTPError as e:
                logger.warning(f"Bridge session lookup failed: {e}")
                return ""
            if user:
                self._own_user = user
            return user
        return self._own_user

    def _lookup(self, path: str, field: str) -> str:
        try:
            response = self._http.get(path)
        except httpx.HTTPError as e:
            logger.warning(f"Bridge lookup {path} failed: {e}")
            raise LookupMiss(path) from e
        if response.status_code == 404:
            raise LookupMiss(path)
        if response.is_error:
            logger.warning(f"Bridge lookup {path} returned {response.status_code}")
            raise LookupMiss(path)
        body = _json_object(response)
        if body is None:
            logger.warning(f"Bridge lookup {path} returned an unreadable body")
            raise LookupMiss(path)
        value = body.get(field) or ""
        if not value:
            raise LookupMiss(path)
        return value

    def get_contact_name(self, jid: JID) -> Optional[str]:
        try:
            return self._lookup(f"/contacts/{jid}", "full_name")
        except LookupMiss:
            return None

    def get_group_name(self, jid: JID) -> Optional[str]:
        try:
            return self._lookup(f"/groups/{jid}", "name")
        except LookupMiss:
            return None

    def download_media(self, request: MediaDownloadRequest) -> bytes:
        try:
            response = self._http.post("/media/download", json=request.to_json())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MediaFetchError(f"failed to download media: {e}") from e
        return response.content

    def upload_media(self, data: bytes, media_type: str) -> UploadedMedia:
        response = self._http.post(
            "/media/upload",
            params={"media_type": media_type},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        response.raise_for_status()
        body = response.json()
        return UploadedMedia(
            url=body["url"],
            direct_path=body["direct_path"],
            media_key=base64.b64decode(body["media_key"]),
            file_sha256=base64.b64decode(body["file_sha256"]),
            file_enc_sha256=base64.b64decode(body["file_enc_sha256"]),
            file_length=int(body["file_length"]),
        )

    def send_message(self, jid: JID, payload: dict[str, Any]) -> None:
        response = self._http.post("/messages", json={"to": str(jid), "message": payload})
        response.raise_for_status()
