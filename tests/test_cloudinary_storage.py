"""Tests for CloudinaryStorage: signing, upload requests, error mapping."""
import hashlib

import httpx
import pytest

from stefna.services.errors import StorageError
from stefna.services.generation.base import GenerationRequest, ProviderOutput
from stefna.services.generation.cascade import CascadeExecutor
from stefna.services.storage.cloudinary import CloudinaryStorage, sign_params


def _storage(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    defaults = {"cloud_name": "demo", "api_key": "key", "api_secret": "secret", "folder": "stefna/generated"}
    defaults.update(kwargs)
    return CloudinaryStorage(client=client, **defaults)


def test_sign_params_sorts_and_skips_empty():
    signature = sign_params({"timestamp": "100", "folder": "f", "public_id": None}, "secret")
    assert signature == hashlib.sha1(b"folder=f&timestamp=100secret").hexdigest()


def test_upload_url_posts_signed_form():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(
            200,
            json={"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/stefna/generated/job-1.jpg", "public_id": "stefna/generated/job-1"},
        )

    stored = _storage(handler).upload_url("https://fal.media/out.jpg", public_id="job-1")

    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    assert "signature=" in seen["body"]
    assert "api_key=key" in seen["body"]
    assert "file=https%3A%2F%2Ffal.media%2Fout.jpg" in seen["body"]
    assert stored.public_id == "stefna/generated/job-1"
    assert stored.url.startswith("https://res.cloudinary.com/demo/")


def test_upload_bytes_video_endpoint():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/video/upload/x.mp4", "public_id": "x"})

    stored = _storage(handler).upload_bytes(b"mp4", resource_type="video", content_type="video/mp4")

    assert seen["path"] == "/v1_1/demo/video/upload"
    assert stored.resource_type == "video"


def test_http_error_becomes_storage_error():
    storage = _storage(lambda r: httpx.Response(500, text="boom"))
    with pytest.raises(StorageError):
        storage.upload_url("https://fal.media/out.jpg")


def test_missing_secure_url_is_error():
    storage = _storage(lambda r: httpx.Response(200, json={"public_id": "x"}))
    with pytest.raises(StorageError):
        storage.upload_url("https://fal.media/out.jpg")


def test_not_configured():
    storage = CloudinaryStorage(cloud_name="demo", api_key="key", api_secret="", client=httpx.Client())
    storage.api_secret = ""
    with pytest.raises(StorageError):
        storage.upload_bytes(b"x")


def test_is_durable():
    storage = _storage(lambda r: httpx.Response(200))
    assert storage.is_durable("https://res.cloudinary.com/demo/image/upload/a.jpg")
    assert not storage.is_durable("https://res.cloudinary.com/other/image/upload/a.jpg")
    assert not storage.is_durable("https://fal.media/a.jpg")


def test_rejects_unsupported_resource_type():
    storage = _storage(lambda r: httpx.Response(200))
    with pytest.raises(StorageError):
        storage.upload_url("https://fal.media/out.jpg", resource_type="raw")


def test_cascade_rehosts_provider_url_through_cloudinary(make_provider):
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        return httpx.Response(
            200,
            json={"secure_url": "https://res.cloudinary.com/demo/image/upload/v1/job-9.jpg", "public_id": "job-9"},
        )

    provider = make_provider("fal", ProviderOutput(url="https://fal.media/out.jpg"))
    request = GenerationRequest(prompt="portrait", source_url="https://example.com/in.jpg")

    result = CascadeExecutor(_storage(handler)).execute(request, [provider], public_id="job-9")

    assert result.provider == "fal"
    assert result.output_url == "https://res.cloudinary.com/demo/image/upload/v1/job-9.jpg"
    assert result.public_id == "job-9"
    assert "file=https%3A%2F%2Ffal.media%2Fout.jpg" in seen["body"]
