"""
Turn any provider output shape into one durable stored URL.

Shapes: poll handle (resolved through the provider), inline payload (raw bytes, base64 or data URI),
a single url, or a list of urls (strings or {"url": ...} dicts). Anything else is malformed.
"""
import base64
import binascii
import time
from typing import Any, Callable

from stefna.services.errors import MalformedOutput, ProviderTimeout
from stefna.services.generation.base import GenerationProvider, ProviderOutput
from stefna.services.storage.base import Storage, StoredMedia

# A provider that keeps answering with new poll handles is treated as malformed
MAX_POLL_RESOLUTIONS = 3


def decode_inline(payload: str | bytes) -> tuple[bytes, str | None]:
    """Decode raw bytes, base64 text or a data URI. Returns (content, content_type)."""
    if isinstance(payload, bytes):
        if not payload:
            raise MalformedOutput("Empty inline payload")
        return payload, None
    content_type = None
    data = payload.strip()
    if data.startswith("data:"):
        header, sep, data = data.partition(",")
        if not sep or ";base64" not in header:
            raise MalformedOutput("Unsupported data URI encoding")
        content_type = header[len("data:"):].split(";", 1)[0] or None
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedOutput(f"Inline payload is not valid base64: {e}") from e
    if not content:
        raise MalformedOutput("Empty inline payload")
    return content, content_type


def first_url(output: ProviderOutput) -> str | None:
    if output.url:
        return output.url
    for item in output.urls or []:
        if isinstance(item, str) and item:
            return item
        if isinstance(item, dict) and isinstance(item.get("url"), str) and item["url"]:
            return item["url"]
    return None


def normalize_output(
    output: ProviderOutput,
    provider: GenerationProvider,
    storage: Storage,
    resource_type: str,
    deadline: float,
    public_id: str | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> StoredMedia:
    """
    Resolve output to a stored media reference.
    Raises MalformedOutput, ProviderTimeout (poll past deadline) or StorageError.
    """
    resolutions = 0
    while output.poll is not None:
        if resolutions >= MAX_POLL_RESOLUTIONS:
            raise MalformedOutput("Provider kept returning poll handles", provider=provider.key)
        if clock() >= deadline:
            raise ProviderTimeout("Deadline reached before poll handle resolved", provider=provider.key)
        output = provider.poll(output.poll, deadline)
        resolutions += 1

    if output.inline is not None:
        content, content_type = decode_inline(output.inline)
        return storage.upload_bytes(
            content,
            resource_type=resource_type,
            public_id=public_id,
            content_type=content_type or output.content_type,
        )

    url = first_url(output)
    if url is None:
        raise MalformedOutput("Provider returned no usable output", provider=provider.key)
    if url.startswith("data:"):
        content, content_type = decode_inline(url)
        return storage.upload_bytes(content, resource_type=resource_type, public_id=public_id, content_type=content_type)
    if storage.is_durable(url):
        return StoredMedia(url=url, public_id=public_id, resource_type=resource_type)
    return storage.upload_url(url, resource_type=resource_type, public_id=public_id)


def describe_output(output: Any) -> str:
    """Short shape label for logs."""
    if not isinstance(output, ProviderOutput):
        return type(output).__name__
    for name in ("poll", "inline", "url", "urls"):
        if getattr(output, name):
            return name
    return "empty"
