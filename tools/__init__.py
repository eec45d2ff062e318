"""HTTP collaborators for the saveflow pipeline stages.

read_article:
    Extract structured article content through the reader service.
    Raises ExtractionError on any failure.

fetch_image:
    Download image bytes and media type for multi-modal analysis.
    Raises ImageFetchError on any failure.

CommentExtractorRegistry:
    Best-effort comment strategies keyed by discussion domain.

Example:
    >>> from tools import read_article
    >>> content = await read_article("https://example.com/post")
    >>> print(content.title)
"""

from tools.utils import create_ssl_context, http_timeout, USER_AGENT
from tools.reader import ExtractionError, ReaderResponse, parse_reader_response, read_article
from tools.images import ImageData, ImageFetchError, fetch_image
from tools.comments import CommentExtractorRegistry, DISCUSSION_DOMAINS, default_registry

__all__ = [
    "read_article",
    "parse_reader_response",
    "ReaderResponse",
    "ExtractionError",
    "fetch_image",
    "ImageData",
    "ImageFetchError",
    "CommentExtractorRegistry",
    "DISCUSSION_DOMAINS",
    "default_registry",
    "create_ssl_context",
    "http_timeout",
    "USER_AGENT",
]
