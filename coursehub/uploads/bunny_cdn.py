"""
Bunny CDN integration
Storage zone (thumbnails, documents), Stream library (lesson videos)
and token-authenticated delivery URLs
"""

import base64
import hashlib
import logging
import time
from typing import List, Optional
from urllib.parse import urlsplit

import httpx

from coursehub.config import settings

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = (
    "BUNNY_STORAGE_ZONE_NAME",
    "BUNNY_STORAGE_ACCESS_KEY",
    "BUNNY_LIBRARY_ID",
    "BUNNY_STREAM_ACCESS_KEY",
    "BUNNY_PULL_ZONE_URL",
)


class CdnError(Exception):
    """Bunny API call failed"""


def missing_settings() -> List[str]:
    return [key for key in REQUIRED_SETTINGS if not getattr(settings, key)]


def is_configured() -> bool:
    return not missing_settings()


def validate_config() -> None:
    missing = missing_settings()
    if missing:
        raise CdnError(f"Missing Bunny CDN environment variables: {', '.join(missing)}")


# ==================== URL HELPERS ====================

def video_embed_url(video_id: str) -> str:
    return f"https://iframe.mediadelivery.net/embed/{settings.BUNNY_LIBRARY_ID}/{video_id}"


def video_thumbnail_url(video_id: str) -> str:
    return f"https://vz-{settings.BUNNY_LIBRARY_ID}.b-cdn.net/{video_id}/thumbnail.jpg"


def video_playlist_url(video_id: str) -> str:
    return f"https://vz-{settings.BUNNY_LIBRARY_ID}.b-cdn.net/{video_id}/playlist.m3u8"


def sign_url(url: str, expires_in: Optional[int] = None, now: Optional[int] = None) -> str:
    """
    Token-authenticated delivery URL

    token = urlsafe_b64(sha256(token_key + path + expires)) without padding.
    Returns the URL unchanged when no token key is configured.
    """
    if not settings.BUNNY_TOKEN_KEY or not url:
        return url

    expires = (now or int(time.time())) + (expires_in or settings.BUNNY_SIGNED_URL_TTL)
    parts = urlsplit(url)
    path = parts.path or "/"

    digest = hashlib.sha256(f"{settings.BUNNY_TOKEN_KEY}{path}{expires}".encode()).digest()
    token = base64.urlsafe_b64encode(digest).decode().rstrip("=")

    separator = "&" if parts.query else "?"
    return f"{url}{separator}token={token}&expires={expires}"


# ==================== API CLIENT ====================

class BunnyCDNClient:
    """
    Thin async client over the Bunny Storage and Stream HTTP APIs

    A custom httpx transport can be passed in (tests use MockTransport).
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 120.0):
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    @property
    def _storage_headers(self) -> dict:
        return {"AccessKey": settings.BUNNY_STORAGE_ACCESS_KEY, "Content-Type": "application/octet-stream"}

    @property
    def _stream_headers(self) -> dict:
        return {"AccessKey": settings.BUNNY_STREAM_ACCESS_KEY, "Accept": "application/json"}

    def _videos_url(self, video_id: str = None) -> str:
        base = f"{settings.BUNNY_STREAM_BASE_URL}/{settings.BUNNY_LIBRARY_ID}/videos"
        return f"{base}/{video_id}" if video_id else base

    # ---------- storage ----------

    async def upload_file(self, content: bytes, path: str, file_name: str) -> dict:
        """
        PUT a file into the storage zone

        Returns:
            dict: {"success", "url", "path"} where url is served by the pull zone
        """
        validate_config()
        full_path = f"/{settings.BUNNY_STORAGE_ZONE_NAME}/{path}/{file_name}"

        try:
            async with self._client() as client:
                response = await client.put(
                    f"{settings.BUNNY_STORAGE_BASE_URL}{full_path}",
                    content=content,
                    headers=self._storage_headers,
                )
        except httpx.RequestError as e:
            logger.error("Bunny storage upload failed for %s: %s", full_path, e)
            raise CdnError(f"File upload failed: {e}")

        if response.status_code != 201:
            logger.error("Bunny storage upload returned %s for %s", response.status_code, full_path)
            raise CdnError(f"Upload failed with status: {response.status_code}")

        return {
            "success": True,
            "url": f"{settings.BUNNY_PULL_ZONE_URL}/{path}/{file_name}",
            "path": full_path,
        }

    async def delete_file(self, path: str) -> bool:
        full_path = f"/{settings.BUNNY_STORAGE_ZONE_NAME}/{path.lstrip('/')}"
        try:
            async with self._client() as client:
                response = await client.delete(
                    f"{settings.BUNNY_STORAGE_BASE_URL}{full_path}",
                    headers={"AccessKey": settings.BUNNY_STORAGE_ACCESS_KEY},
                )
            return response.status_code == 200
        except httpx.RequestError as e:
            logger.warning("Bunny storage delete failed for %s: %s", full_path, e)
            return False

    # ---------- stream ----------

    async def upload_video(self, content: bytes, title: str) -> dict:
        """
        Create a Stream video entry, then upload its bytes

        Returns:
            dict: Bunny video object (guid, title, length, ...)
        """
        validate_config()

        try:
            async with self._client() as client:
                created = await client.post(self._videos_url(), json={"title": title}, headers=self._stream_headers)
                if created.status_code not in (200, 201):
                    raise CdnError(f"Video upload failed: create returned {created.status_code}")
                video = created.json()

                uploaded = await client.put(
                    self._videos_url(video["guid"]),
                    content=content,
                    headers={**self._stream_headers, "Content-Type": "application/octet-stream"},
                )
                if uploaded.status_code not in (200, 201):
                    raise CdnError(f"Video upload failed: upload returned {uploaded.status_code}")
        except httpx.RequestError as e:
            logger.error("Bunny stream upload failed for %s: %s", title, e)
            raise CdnError(f"Video upload failed: {e}")

        logger.info("Uploaded video %s (%s)", video["guid"], title)
        return video

    async def get_video(self, video_id: str) -> dict:
        try:
            async with self._client() as client:
                response = await client.get(self._videos_url(video_id), headers=self._stream_headers)
        except httpx.RequestError as e:
            raise CdnError(f"Failed to get video details: {e}")

        if response.status_code != 200:
            raise CdnError(f"Failed to get video details: status {response.status_code}")
        return response.json()

    async def delete_video(self, video_id: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.delete(self._videos_url(video_id), headers=self._stream_headers)
            return response.status_code == 200
        except httpx.RequestError as e:
            logger.warning("Bunny video delete failed for %s: %s", video_id, e)
            return False


bunny_cdn = BunnyCDNClient()


def get_cdn_client() -> BunnyCDNClient:
    """Dependency hook so tests can swap the client"""
    return bunny_cdn
