"""Client for the content-extraction (reader) service.

The reader service takes a URL and returns the page as structured JSON:

    GET {base_url}/{url}
    Accept: application/json
    X-With-Images-Summary: true
    X-With-Links-Summary: true
    Authorization: Bearer {api_key}      (optional)

    {"code": 200, "data": {"title": ..., "description": ..., "content": ...,
     "images": [{"src": ..., "alt": ...}], "author": ..., "siteName": ...}}

Some deployments return ``images`` as an ``{alt: src}`` mapping instead of a
list; both shapes are accepted. Anything else (network error, timeout,
non-2xx, unparseable or empty payload) raises ExtractionError so the
dispatcher can apply retry bookkeeping.
"""

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from models.article import ExtractedContent, ExtractedImage
from tools.utils import create_ssl_context, http_timeout

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when the reader service fails or returns an unusable payload."""


class ReaderImage(BaseModel):
    src: str
    alt: str | None = None


class ReaderPayload(BaseModel):
    """The ``data`` object of a reader response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str | None = None
    description: str | None = None
    content: str | None = None
    url: str | None = None
    published_time: str | None = Field(default=None, alias="publishedTime")
    author: str | None = None
    site_name: str | None = Field(default=None, alias="siteName")
    images: list[ReaderImage] = Field(default_factory=list)

    @field_validator("images", mode="before")
    @classmethod
    def _normalize_images(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            return [{"src": src, "alt": alt} for alt, src in value.items()]
        return value


class ReaderResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int | None = None
    data: ReaderPayload

    def to_content(self) -> ExtractedContent:
        """Convert to the pipeline's extraction result."""
        data = self.data
        return ExtractedContent(
            title=data.title or "",
            description=data.description or "",
            content=data.content or "",
            author=data.author or None,
            site_name=data.site_name or None,
            published_time=data.published_time or None,
            images=[
                ExtractedImage(url=image.src, alt=image.alt or "")
                for image in data.images
                if image.src
            ],
        )


def parse_reader_response(body: str) -> ExtractedContent:
    """Validate a raw reader response body.

    Raises:
        ExtractionError: If the body is not a valid reader payload or has no content
    """
    try:
        response = ReaderResponse.model_validate_json(body)
    except ValidationError as e:
        raise ExtractionError(f"Malformed reader payload: {e.error_count()} validation errors") from e
    content = response.to_content()
    if not content.content.strip():
        raise ExtractionError("Reader returned no article content")
    return content


async def read_article(
    url: str,
    base_url: str = "https://r.jina.ai",
    api_key: str = "",
    timeout: float = 45.0,
) -> ExtractedContent:
    """Extract structured content for ``url`` through the reader service.

    Args:
        url: Article URL to extract
        base_url: Reader service base URL
        api_key: Optional bearer token
        timeout: Total request timeout in seconds

    Returns:
        Extracted content (comments not included)

    Raises:
        ExtractionError: On any network, HTTP, timeout or payload failure
    """
    headers = {
        "Accept": "application/json",
        "X-With-Images-Summary": "true",
        "X-With-Links-Summary": "true",
    }
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    endpoint = f"{base_url.rstrip('/')}/{url}"
    logger.debug("Reader request | url=%s", url[:120])

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                endpoint,
                headers=headers,
                timeout=http_timeout(timeout),
                ssl=create_ssl_context(),
            ) as resp:
                body = await resp.text()
                if resp.status >= 300:
                    raise ExtractionError(
                        f"Reader extraction failed: HTTP {resp.status} {resp.reason or ''}".strip()
                    )
    except asyncio.TimeoutError as e:
        raise ExtractionError(f"Reader extraction timed out after {timeout:.0f}s") from e
    except aiohttp.ClientError as e:
        raise ExtractionError(f"Reader request failed: {type(e).__name__}: {e}") from e

    content = parse_reader_response(body)
    logger.debug(
        "Reader response | url=%s chars=%d images=%d",
        url[:120],
        len(content.content),
        len(content.images),
    )
    return content
