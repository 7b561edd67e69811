# ============================================================================
# BLOB MEDIA STORAGE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Infrastructure - Azure Blob Storage for generated media
# PURPOSE: Copy expiring media URLs into permanent storage
# CREATED: 17 OCT 2026
# ============================================================================
"""
Blob Media Storage

MediaStorage implementation on Azure Blob Storage.

upload_media_from_url:
1. Fetch the bytes (httpx for http(s) URLs, base64 decode for data: URLs)
2. Pick an extension from the URL or the content type
3. Upload to {type_folder}/{owner_path}/{timestamp_ms}.{ext}
4. Return the blob URL

Blob paths by type:
    images/{user}/{project}/{sheet}/{cell}/{ts}.png
    videos/{user}/{project}/{sheet}/{cell}/{ts}.mp4
    audio/{user}/{project}/{sheet}/{cell}/{ts}.mp3

Uses ManagedIdentityCredential when AZURE_CLIENT_ID is set, otherwise
DefaultAzureCredential. The blob SDK is synchronous; uploads run in a
worker thread.
"""

import asyncio
import base64
import binascii
import logging
import os
import time
from typing import Optional, Tuple

import httpx

from core.config import StorageDefaults, get_defaults
from core.contracts import GenerationType
from core.errors import UploadFailure
from core.interfaces import MediaStorage

logger = logging.getLogger(__name__)

_FOLDERS = {
    GenerationType.IMAGE: "images",
    GenerationType.VIDEO: "videos",
    GenerationType.AUDIO: "audio",
}

_DEFAULT_EXTENSION = {
    GenerationType.IMAGE: ("jpg", "image/jpeg"),
    GenerationType.VIDEO: ("mp4", "video/mp4"),
    GenerationType.AUDIO: ("mp3", "audio/mpeg"),
}

_KNOWN_EXTENSIONS = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "mp4": "video/mp4",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp3": "audio/mpeg",
}


def detect_extension(
    url: str,
    content_type: Optional[str],
    media_type: GenerationType,
) -> Tuple[str, str]:
    """
    Choose a file extension and content type for an upload.

    The URL wins over the reported content type; both fall back to the
    media type's default (jpg, mp4, mp3).
    """
    default_ext, default_type = _DEFAULT_EXTENSION.get(
        media_type, ("bin", "application/octet-stream")
    )
    url_lower = url.lower() if not url.startswith("data:") else ""

    for ext, mime in _KNOWN_EXTENSIONS.items():
        if mime.split("/")[0] != default_type.split("/")[0]:
            continue
        if f".{ext}" in url_lower:
            return ext, mime

    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        for ext, known in _KNOWN_EXTENSIONS.items():
            if known == mime:
                return ext, mime
        if mime == "audio/wave":
            return "wav", "audio/wav"

    return default_ext, content_type or default_type


def decode_data_url(url: str) -> Tuple[bytes, str]:
    """
    Decode a data: URL.

    Raises:
        ValueError: If the URL is malformed
    """
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("malformed data URL")
    meta = header[len("data:"):]
    content_type = meta.split(";")[0] or "application/octet-stream"
    if ";base64" in meta:
        try:
            return base64.b64decode(payload, validate=False), content_type
        except binascii.Error as e:
            raise ValueError(f"invalid base64 payload: {e}")
    return payload.encode("utf-8"), content_type


class BlobMediaStorage(MediaStorage):
    """Permanent media storage in one Azure Blob container."""

    def __init__(
        self,
        defaults: Optional[StorageDefaults] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.defaults = defaults or get_defaults().storage
        if not self.defaults.account_name:
            raise ValueError(
                "BlobMediaStorage requires a storage account. "
                "Set MEDIA_STORAGE_ACCOUNT to the storage account name."
            )
        self._http = http_client
        self._owns_http = http_client is None
        self._credential = None
        self._blob_service = None
        self._container_client = None
        logger.info(f"BlobMediaStorage initialized for account: {self.defaults.account_name}")

    # ========================================================================
    # AZURE CLIENT INITIALIZATION
    # ========================================================================

    def _get_credential(self):
        """Get Azure credential (lazy initialization)."""
        if self._credential is None:
            client_id = os.environ.get("AZURE_CLIENT_ID")
            if client_id:
                from azure.identity import ManagedIdentityCredential
                self._credential = ManagedIdentityCredential(client_id=client_id)
                logger.debug("ManagedIdentityCredential initialized with client_id")
            else:
                from azure.identity import DefaultAzureCredential
                self._credential = DefaultAzureCredential()
                logger.debug("DefaultAzureCredential initialized")
        return self._credential

    def _get_container_client(self):
        """Get the media container client (lazy initialization)."""
        if self._container_client is None:
            from azure.storage.blob import BlobServiceClient
            self._blob_service = BlobServiceClient(
                account_url=self.defaults.account_url,
                credential=self._get_credential(),
            )
            self._container_client = self._blob_service.get_container_client(
                self.defaults.container_name
            )
            logger.debug(f"Container client created for: {self.defaults.container_name}")
        return self._container_client

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.defaults.download_timeout_seconds,
                follow_redirects=True,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    # ========================================================================
    # MEDIA STORAGE
    # ========================================================================

    def is_permanent(self, url: str) -> bool:
        host = f"{self.defaults.account_name}.blob.core.windows.net"
        return host in url and f"/{self.defaults.container_name}/" in url

    async def _fetch(self, url: str) -> Tuple[bytes, Optional[str]]:
        if url.startswith("data:"):
            try:
                return decode_data_url(url)
            except ValueError as e:
                raise UploadFailure(url, str(e))

        try:
            response = await self._get_http().get(url)
        except httpx.HTTPError as e:
            raise UploadFailure(url, f"download failed: {e}")
        if response.status_code >= 400:
            raise UploadFailure(url, f"download failed with HTTP {response.status_code}")
        return response.content, response.headers.get("content-type")

    def _upload_blob(self, blob_path: str, data: bytes, content_type: str) -> str:
        from azure.storage.blob import ContentSettings

        blob_client = self._get_container_client().get_blob_client(blob_path)
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(
                content_type=content_type,
                cache_control="public, max-age=31536000",
            ),
        )
        return blob_client.url

    async def upload_media_from_url(
        self,
        url: str,
        owner_path: str,
        media_type: GenerationType,
    ) -> str:
        data, reported_type = await self._fetch(url)
        if not data:
            raise UploadFailure(url, "downloaded media is empty")

        ext, content_type = detect_extension(url, reported_type, media_type)
        folder = _FOLDERS.get(media_type, "media")
        blob_path = f"{folder}/{owner_path.strip('/')}/{int(time.time() * 1000)}.{ext}"

        size_mb = len(data) / (1024 * 1024)
        logger.info(f"Uploading {size_mb:.2f}MB to {self.defaults.container_name}/{blob_path}")

        try:
            stored_url = await asyncio.to_thread(self._upload_blob, blob_path, data, content_type)
        except Exception as e:
            logger.error(f"Blob upload failed for {blob_path}: {e}")
            raise UploadFailure(url, f"upload failed: {e}")

        return stored_url


__all__ = [
    "BlobMediaStorage",
    "detect_extension",
    "decode_data_url",
]
