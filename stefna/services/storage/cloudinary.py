"""
Cloudinary storage using signed uploads over httpx.
Remote URLs are passed to Cloudinary as `file` so it fetches them server-side;
inline payloads are uploaded as multipart bytes.
"""
import hashlib
import logging
import time

import httpx

from stefna.core.config import settings
from stefna.services.errors import StorageError
from stefna.services.storage.base import Storage, StoredMedia

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("image", "video")


def sign_params(params: dict, api_secret: str) -> str:
    """Cloudinary signature: sha1 of sorted key=value pairs joined by & plus the API secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryStorage(Storage):
    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        folder: str | None = None,
        upload_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.cloud_name = cloud_name or settings.cloudinary_cloud_name
        self.api_key = api_key or settings.cloudinary_api_key
        self.api_secret = api_secret or settings.cloudinary_api_secret
        self.folder = folder if folder is not None else settings.cloudinary_folder
        self.api_base_url = (upload_url or settings.cloudinary_upload_url).rstrip("/")
        self.timeout = timeout or settings.cloudinary_timeout
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def is_durable(self, url: str) -> bool:
        return bool(self.cloud_name) and f"res.cloudinary.com/{self.cloud_name}/" in url

    def upload_bytes(
        self,
        content: bytes,
        resource_type: str = "image",
        public_id: str | None = None,
        content_type: str | None = None,
    ) -> StoredMedia:
        if not content:
            raise StorageError("Refusing to upload empty content")
        files = {"file": ("upload", content, content_type or "application/octet-stream")}
        return self._upload(resource_type, public_id, files=files)

    def upload_url(self, url: str, resource_type: str = "image", public_id: str | None = None) -> StoredMedia:
        if not url.startswith(("http://", "https://")):
            raise StorageError(f"Not a fetchable URL: {url[:64]}")
        return self._upload(resource_type, public_id, file_url=url)

    def _upload(
        self,
        resource_type: str,
        public_id: str | None,
        files: dict | None = None,
        file_url: str | None = None,
    ) -> StoredMedia:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise StorageError("Cloudinary is not configured")
        if resource_type not in RESOURCE_TYPES:
            raise StorageError(f"Unsupported resource type: {resource_type}")

        params = {"timestamp": str(int(time.time()))}
        if self.folder:
            params["folder"] = self.folder
        if public_id:
            params["public_id"] = public_id
            params["overwrite"] = "true"
        data = {**params, "api_key": self.api_key, "signature": sign_params(params, self.api_secret)}
        if file_url:
            data["file"] = file_url

        endpoint = f"{self.api_base_url}/{self.cloud_name}/{resource_type}/upload"
        try:
            resp = self.client.post(endpoint, data=data, files=files)
            resp.raise_for_status()
            result = resp.json()
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"Cloudinary {resource_type} upload failed: HTTP {e.response.status_code}",
                detail={"body": e.response.text[:200]},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise StorageError(f"Cloudinary {resource_type} upload failed: {e}") from e

        secure_url = result.get("secure_url")
        if not secure_url:
            raise StorageError("Cloudinary upload succeeded but returned no secure_url")
        logger.info("storage_uploaded", extra={"provider": "cloudinary", "status": resource_type})
        return StoredMedia(url=secure_url, public_id=result.get("public_id"), resource_type=resource_type)
