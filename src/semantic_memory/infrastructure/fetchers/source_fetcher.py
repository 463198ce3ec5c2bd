"""Fetches raw knowledge source content from URLs and files."""

import asyncio
import hashlib
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from pydantic import BaseModel, Field

from semantic_memory.core.base import ServiceErrorDetails, ValidationErrorDetails
from semantic_memory.core.errors import ServiceUnavailableError, ValidationError
from semantic_memory.core.logging import get_logger

logger = get_logger(__name__)

TEXT_CONTENT_TYPES = (
    "text/",
    "application/json",
    "application/xml",
    "application/xhtml+xml",
    "application/x-yaml",
    "application/yaml",
)


class FetchedContent(BaseModel):
    """Raw bytes of a source plus what change detection and chunking need."""

    locator: str
    raw: bytes
    text: str
    content_hash: str
    content_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def content_hash(raw: bytes) -> str:
    """Digest of the raw fetched bytes; equal hashes mean unchanged content."""
    return hashlib.sha256(raw).hexdigest()


class SourceFetcher:
    """Resolves a locator to content.

    ``http(s)://`` locators are fetched with httpx; ``file://`` locators and
    plain paths are read from disk. Only text content is accepted.
    """

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport)

    async def fetch(self, locator: str) -> FetchedContent:
        """Fetch a locator.

        Raises:
            ValidationError: The locator is malformed, missing, or not text
            ServiceUnavailableError: The remote host could not be reached
        """
        parsed = urlparse(locator)
        if parsed.scheme in ("http", "https"):
            return await self._fetch_http(locator)
        if parsed.scheme == "file":
            return await self._fetch_file(locator, Path(unquote(parsed.path)))
        if parsed.scheme and len(parsed.scheme) > 1:
            raise self._invalid(locator, f"Unsupported locator scheme '{parsed.scheme}'")
        return await self._fetch_file(locator, Path(locator))

    async def _fetch_http(self, locator: str) -> FetchedContent:
        try:
            response = await self.client.get(locator)
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(
                message=f"Could not fetch {locator}: {e!s}; retry later",
                details=ServiceErrorDetails(
                    source="source_fetcher",
                    operation="fetch",
                    service_name=urlparse(locator).netloc,
                    endpoint=locator,
                ),
            ) from e

        if response.status_code >= 500:
            raise ServiceUnavailableError(
                message=f"{locator} answered {response.status_code}; retry later",
                details=ServiceErrorDetails(
                    source="source_fetcher",
                    operation="fetch",
                    service_name=urlparse(locator).netloc,
                    endpoint=locator,
                    status_code=response.status_code,
                ),
            )
        if response.status_code >= 400:
            raise self._invalid(locator, f"Fetching {locator} failed with status {response.status_code}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower() or None
        if content_type and not content_type.startswith(TEXT_CONTENT_TYPES):
            raise self._invalid(locator, f"Content type '{content_type}' is not text")

        raw = response.content
        return FetchedContent(
            locator=locator,
            raw=raw,
            text=self._decode(locator, raw, response.encoding),
            content_hash=content_hash(raw),
            content_type=content_type,
            metadata={"status_code": response.status_code, "url": str(response.url)},
        )

    async def _fetch_file(self, locator: str, path: Path) -> FetchedContent:
        if not path.is_file():
            raise self._invalid(locator, f"No such file: {path}")
        raw = await asyncio.to_thread(path.read_bytes)
        return FetchedContent(
            locator=locator,
            raw=raw,
            text=self._decode(locator, raw),
            content_hash=content_hash(raw),
            metadata={"path": str(path.resolve()), "size": len(raw)},
        )

    def _decode(self, locator: str, raw: bytes, encoding: str | None = None) -> str:
        if b"\x00" in raw:
            raise self._invalid(locator, "Content looks binary")
        try:
            return raw.decode(encoding or "utf-8")
        except (UnicodeDecodeError, LookupError) as e:
            raise self._invalid(locator, f"Content is not valid text: {e!s}") from e

    @staticmethod
    def _invalid(locator: str, message: str) -> ValidationError:
        return ValidationError(
            message=message,
            details=ValidationErrorDetails(
                source="source_fetcher",
                operation="fetch",
                field="locator",
                actual_value=locator,
            ),
        )

    async def close(self) -> None:
        await self.client.aclose()
