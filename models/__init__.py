"""Pydantic models for the saveflow article pipeline.

Article:
    A saved URL with extracted content, analysis and processing status.

ArticleStatus:
    Article state machine (submitted, extracting, analyzing, ready, failed).

ArticleAnalysis / ImageAnalysis:
    Strict schemas for the LLM analysis replies.

QueueJob / JobKind / JobStatus:
    Durable queue entries and their lifecycle.

DispatchResult / JobOutcome:
    Per-cycle dispatch summary.

Digest / DigestContent / DigestArticle:
    Daily per-user digest and the strict schema for its LLM reply.

UserSettings:
    Push token and notification opt-in.

Example:
    >>> from models import ArticleAnalysis
    >>> ArticleAnalysis.model_validate_json(llm_reply)  # raises on prose
"""

from models.article import (
    Article,
    ArticleAnalysis,
    ArticleStatus,
    ExtractedContent,
    ExtractedImage,
    ImageAnalysis,
)
from models.queue import DispatchResult, JobKind, JobOutcome, JobStatus, QueueJob
from models.digest import (
    Digest,
    DigestArticle,
    DigestContent,
    DigestRunResult,
    UserDigestResult,
    UserSettings,
)

__all__ = [
    "Article",
    "ArticleAnalysis",
    "ArticleStatus",
    "ExtractedContent",
    "ExtractedImage",
    "ImageAnalysis",
    "DispatchResult",
    "JobKind",
    "JobOutcome",
    "JobStatus",
    "QueueJob",
    "Digest",
    "DigestArticle",
    "DigestContent",
    "DigestRunResult",
    "UserDigestResult",
    "UserSettings",
]
