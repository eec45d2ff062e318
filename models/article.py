"""Article data models and the article state machine.

An Article is one URL saved by a user. It starts as a bare submission and
is filled in by the pipeline stages:

    submitted -> extracting -> analyzing -> ready
                     |             |
                     +--> failed <-+

Transitions are driven by the extraction and analysis stages; the record
itself is passive data. Only the dispatcher's retry ceiling moves an
article to ``failed``.

The analysis models double as the strict schema for LLM output: the raw
reply string is validated with ``model_validate_json`` and anything that
does not conform is rejected.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ArticleStatus(str, Enum):
    """Processing status of an article."""

    SUBMITTED = "submitted"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ArticleStatus.READY, ArticleStatus.FAILED)

    def can_transition_to(self, target: "ArticleStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed.

        Re-entering the same in-progress status is allowed so that a retried
        job can restart its stage.
        """
        return target in _TRANSITIONS[self]

    @classmethod
    def sources_for(cls, target: "ArticleStatus") -> list["ArticleStatus"]:
        """All statuses that may transition into ``target``."""
        return [status for status in cls if target in _TRANSITIONS[status]]


_TRANSITIONS: dict[ArticleStatus, frozenset[ArticleStatus]] = {
    ArticleStatus.SUBMITTED: frozenset({ArticleStatus.EXTRACTING}),
    ArticleStatus.EXTRACTING: frozenset({
        ArticleStatus.EXTRACTING,
        ArticleStatus.ANALYZING,
        ArticleStatus.FAILED,
    }),
    ArticleStatus.ANALYZING: frozenset({
        ArticleStatus.ANALYZING,
        ArticleStatus.READY,
        ArticleStatus.FAILED,
    }),
    ArticleStatus.READY: frozenset(),
    ArticleStatus.FAILED: frozenset(),
}


Sentiment = Literal["positive", "negative", "neutral", "mixed"]


class ExtractedImage(BaseModel):
    """Image reference found by the extraction service."""

    url: str = Field(description="Absolute image URL")
    alt: str = Field(default="", description="Alt text, if any")


class ExtractedContent(BaseModel):
    """Structured content returned by the extraction stage."""

    title: str = ""
    description: str = ""
    content: str = ""
    author: str | None = None
    site_name: str | None = None
    published_time: str | None = None
    images: list[ExtractedImage] = Field(default_factory=list)
    comments: list[str] = Field(default_factory=list)


class ImageAnalysis(BaseModel):
    """LLM description of one article image.

    The reply schema is ``{description, objects, relevance}``; ``image_url``
    is attached after validation.
    """

    image_url: str = ""
    description: str = Field(description="Brief description of the image")
    objects: list[str] = Field(default_factory=list)
    relevance: str = Field(description="How the image relates to the article")


class ArticleAnalysis(BaseModel):
    """Structured analysis of an article's text.

    Attributes:
        summary: 2-3 sentence summary
        key_points: Ordered key points (target 5)
        topics: Short topic labels
        sentiment: positive, negative, neutral or mixed
        reading_time_minutes: Estimated reading time
        comments_summary: Discussion summary, when comments were available
        image_analyses: Per-image descriptions (best effort, may be empty)
    """

    summary: str
    key_points: list[str]
    topics: list[str]
    sentiment: Sentiment
    reading_time_minutes: int = Field(ge=0)
    comments_summary: str | None = None
    image_analyses: list[ImageAnalysis] = Field(default_factory=list)


class Article(BaseModel):
    """One saved article and its evolving content."""

    id: str
    user_id: str
    url: str
    title: str | None = None
    description: str | None = None
    content: str | None = None
    author: str | None = None
    site_name: str | None = None
    published_time: str | None = None
    image_url: str | None = None
    images: list[ExtractedImage] = Field(default_factory=list)
    comments: list[str] = Field(default_factory=list)
    analysis: ArticleAnalysis | None = None
    status: ArticleStatus = ArticleStatus.SUBMITTED
    error_message: str | None = None
    created_at: int = 0
    updated_at: int = 0

    def __str__(self) -> str:
        label = self.title or self.url
        return f"Article({self.id[:8]}, {self.status.value}, '{label[:50]}')"
