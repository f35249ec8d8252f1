import base64
import hashlib
import json

import httpx
import pytest

from coursehub.config import settings
from coursehub.uploads.bunny_cdn import BunnyCDNClient, CdnError, is_configured, missing_settings, sign_url


@pytest.fixture
def bunny_settings(monkeypatch):
    values = {
        "BUNNY_STORAGE_ZONE_NAME": "coursehub-zone",
        "BUNNY_STORAGE_ACCESS_KEY": "storage-key",
        "BUNNY_STORAGE_BASE_URL": "https://storage.bunnycdn.com",
        "BUNNY_LIBRARY_ID": "4242",
        "BUNNY_STREAM_ACCESS_KEY": "stream-key",
        "BUNNY_STREAM_BASE_URL": "https://video.bunnycdn.com/library",
        "BUNNY_PULL_ZONE_URL": "https://coursehub.b-cdn.net",
    }
    for key, value in values.items():
        monkeypatch.setattr(settings, key, value)
    return values


def client_for(handler):
    return BunnyCDNClient(transport=httpx.MockTransport(handler))


def test_missing_settings(monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_STORAGE_ZONE_NAME", "")
    monkeypatch.setattr(settings, "BUNNY_LIBRARY_ID", "")

    assert "BUNNY_STORAGE_ZONE_NAME" in missing_settings()
    assert "BUNNY_LIBRARY_ID" in missing_settings()
    assert not is_configured()


async def test_upload_without_config_fails(monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_STORAGE_ACCESS_KEY", "")

    with pytest.raises(CdnError, match="Missing Bunny CDN environment variables"):
        await client_for(lambda request: httpx.Response(201)).upload_file(b"x", "courses/1", "a.jpg")


async def test_upload_file(bunny_settings):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["key"] = request.headers["AccessKey"]
        seen["body"] = request.content
        return httpx.Response(201, json={"HttpCode": 201})

    result = await client_for(handler).upload_file(b"image", "courses/CRS_1/thumbnails", "thumb.jpg")

    assert seen == {
        "method": "PUT",
        "url": "https://storage.bunnycdn.com/coursehub-zone/courses/CRS_1/thumbnails/thumb.jpg",
        "key": "storage-key",
        "body": b"image",
    }
    assert result == {
        "success": True,
        "url": "https://coursehub.b-cdn.net/courses/CRS_1/thumbnails/thumb.jpg",
        "path": "/coursehub-zone/courses/CRS_1/thumbnails/thumb.jpg",
    }


async def test_upload_file_error_status(bunny_settings):
    with pytest.raises(CdnError, match="Upload failed with status: 401"):
        await client_for(lambda request: httpx.Response(401)).upload_file(b"x", "courses/1", "a.jpg")


async def test_upload_file_network_error(bunny_settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CdnError, match="File upload failed"):
        await client_for(handler).upload_file(b"x", "courses/1", "a.jpg")


async def test_delete_file(bunny_settings):
    urls = []

    def handler(request):
        urls.append(str(request.url))
        return httpx.Response(200)

    assert await client_for(handler).delete_file("/courses/1/a.jpg") is True
    assert urls == ["https://storage.bunnycdn.com/coursehub-zone/courses/1/a.jpg"]

    assert await client_for(lambda request: httpx.Response(404)).delete_file("courses/1/a.jpg") is False


async def test_upload_video_creates_then_uploads(bunny_settings):
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "POST":
            assert json.loads(request.content) == {"title": "Course - Lesson 1"}
            assert request.headers["AccessKey"] == "stream-key"
            return httpx.Response(200, json={"guid": "abc-123", "title": "Course - Lesson 1"})
        assert request.content == b"video-bytes"
        return httpx.Response(200, json={"success": True})

    video = await client_for(handler).upload_video(b"video-bytes", "Course - Lesson 1")

    assert video["guid"] == "abc-123"
    assert calls == [
        ("POST", "/library/4242/videos"),
        ("PUT", "/library/4242/videos/abc-123"),
    ]


async def test_upload_video_create_failure(bunny_settings):
    with pytest.raises(CdnError, match="create returned 500"):
        await client_for(lambda request: httpx.Response(500)).upload_video(b"x", "title")


async def test_get_video(bunny_settings):
    def handler(request):
        return httpx.Response(200, json={"guid": "abc-123", "length": 321})

    assert (await client_for(handler).get_video("abc-123"))["length"] == 321

    with pytest.raises(CdnError):
        await client_for(lambda request: httpx.Response(404)).get_video("missing")


async def test_delete_video(bunny_settings):
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path))
        return httpx.Response(200)

    assert await client_for(handler).delete_video("abc-123") is True
    assert seen == [("DELETE", "/library/4242/videos/abc-123")]

    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    assert await client_for(unreachable).delete_video("abc-123") is False


# ==================== SIGNED URLS ====================

def test_sign_url_without_key_is_unchanged(monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_TOKEN_KEY", "")
    url = "https://vz-4242.b-cdn.net/abc/playlist.m3u8"
    assert sign_url(url) == url


def test_sign_url(monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_TOKEN_KEY", "secret-key")

    signed = sign_url("https://vz-4242.b-cdn.net/abc/playlist.m3u8", expires_in=60, now=1000)

    digest = hashlib.sha256(b"secret-key/abc/playlist.m3u81060").digest()
    token = base64.urlsafe_b64encode(digest).decode().rstrip("=")
    assert signed == f"https://vz-4242.b-cdn.net/abc/playlist.m3u8?token={token}&expires=1060"


def test_sign_url_keeps_query(monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_TOKEN_KEY", "secret-key")

    signed = sign_url("https://cdn.example.com/file.pdf?v=2", expires_in=60, now=1000)

    assert signed.startswith("https://cdn.example.com/file.pdf?v=2&token=")
    assert signed.endswith("&expires=1060")
