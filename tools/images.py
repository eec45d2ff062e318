"""Image download for multi-modal analysis.

Fetches raw image bytes and the media type the LLM needs to accept them.
Certificate problems fall back to an unverified request, since images are
public and are only described, never trusted.
"""

import asyncio
import logging
from dataclasses import dataclass

import aiohttp

from tools.utils import USER_AGENT, create_ssl_context, http_timeout

logger = logging.getLogger(__name__)

# Larger images are skipped rather than sent to the model
MAX_IMAGE_BYTES = 5 * 1024 * 1024

DEFAULT_MEDIA_TYPE = "image/jpeg"


class ImageFetchError(Exception):
    """Raised when an image cannot be downloaded or is not an image."""


@dataclass
class ImageData:
    """Downloaded image ready for the LLM."""

    url: str
    data: bytes
    media_type: str


def _media_type(resp: aiohttp.ClientResponse) -> str:
    header = resp.headers.get("Content-Type", "")
    media_type = header.split(";")[0].strip().lower()
    if not media_type or media_type == "application/octet-stream":
        return DEFAULT_MEDIA_TYPE
    return media_type


async def fetch_image(
    url: str,
    timeout: float = 20.0,
    max_bytes: int = MAX_IMAGE_BYTES,
) -> ImageData:
    """Download one image.

    Args:
        url: Image URL
        timeout: Total request timeout in seconds
        max_bytes: Reject bodies larger than this

    Raises:
        ImageFetchError: On network failure, timeout, non-200, non-image or oversized body
    """

    async def fetch_with_ssl(session: aiohttp.ClientSession, verify: bool) -> ImageData:
        async with session.get(
            url,
            timeout=http_timeout(timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "image/*"},
            ssl=create_ssl_context(verify),
        ) as resp:
            if resp.status != 200:
                raise ImageFetchError(f"HTTP {resp.status} fetching image")
            media_type = _media_type(resp)
            if not media_type.startswith("image/"):
                raise ImageFetchError(f"Not an image: {media_type}")
            if resp.content_length and resp.content_length > max_bytes:
                raise ImageFetchError(f"Image too large: {resp.content_length} bytes")
            data = await resp.read()
            if len(data) > max_bytes:
                raise ImageFetchError(f"Image too large: {len(data)} bytes")
            if not data:
                raise ImageFetchError("Empty image body")
            return ImageData(url=url, data=data, media_type=media_type)

    try:
        async with aiohttp.ClientSession() as session:
            try:
                return await fetch_with_ssl(session, verify=True)
            except aiohttp.ClientSSLError:
                logger.debug("SSL error, retrying image without verification | url=%s", url[:120])
                return await fetch_with_ssl(session, verify=False)
    except asyncio.TimeoutError as e:
        raise ImageFetchError(f"Image fetch timed out after {timeout:.0f}s") from e
    except aiohttp.ClientError as e:
        raise ImageFetchError(f"Image fetch failed: {type(e).__name__}: {e}") from e
