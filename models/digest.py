"""Daily digest models and per-user settings."""

from typing import Any

from pydantic import BaseModel, Field


class DigestArticle(BaseModel):
    """Per-article entry within a daily digest."""

    article_id: str = Field(description="Id of the source article")
    title: str = Field(description="Article title")
    image_url: str | None = Field(default=None, description="Lead image, if any")
    summary: str = Field(description="1-2 sentence summary specific to this article")
    highlights: list[str] = Field(default_factory=list, description="Key highlights")
    url: str = Field(default="", description="Original article URL")


class DigestContent(BaseModel):
    """Strict schema for the digest LLM reply."""

    overall_summary: str = Field(description="2-3 paragraph narrative summary")
    top_themes: list[str] = Field(max_length=5, description="Up to 5 themes, ranked")
    articles: list[DigestArticle] = Field(default_factory=list)
    ai_insights: str = Field(description="Cross-article insight or pattern")


class Digest(DigestContent):
    """Stored digest, unique per (user_id, date)."""

    id: str
    user_id: str
    date: str = Field(description="Calendar date, YYYY-MM-DD")
    article_count: int = 0
    created_at: int = 0
    updated_at: int = 0


class UserSettings(BaseModel):
    """Per-user notification settings (read-only to the pipeline)."""

    user_id: str
    push_token: str | None = None
    push_notifications: bool = False
    timezone: str | None = None

    @property
    def can_notify(self) -> bool:
        return bool(self.push_notifications and self.push_token)


class UserDigestResult(BaseModel):
    """Outcome of digest generation for one user."""

    user_id: str
    success: bool
    digest_id: str | None = None
    skipped: str | None = None
    error: str | None = None
    notified: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"user_id": self.user_id, "success": self.success}
        if self.digest_id:
            out["digest_id"] = self.digest_id
        if self.skipped:
            out["skipped"] = self.skipped
        if self.error:
            out["error"] = self.error
        return out


class DigestRunResult(BaseModel):
    """Summary of one digest run across users."""

    date: str
    results: list[UserDigestResult] = Field(default_factory=list)
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "results": [r.to_dict() for r in self.results]}
