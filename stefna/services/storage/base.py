from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class StoredMedia:
    url: str
    public_id: str | None = None
    resource_type: str = "image"


class Storage(ABC):
    """Durable media storage: re-hosts provider output and returns a long-lived URL."""

    @abstractmethod
    def upload_bytes(
        self,
        content: bytes,
        resource_type: str = "image",
        public_id: str | None = None,
        content_type: str | None = None,
    ) -> StoredMedia:
        raise NotImplementedError

    @abstractmethod
    def upload_url(self, url: str, resource_type: str = "image", public_id: str | None = None) -> StoredMedia:
        """Fetch a remote URL into storage."""
        raise NotImplementedError

    def is_durable(self, url: str) -> bool:
        """True when url already points at this storage (no re-upload needed)."""
        return False
