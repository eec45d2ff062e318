"""Digest writer: synthesizes a daily digest from a user's articles."""

import json
import logging

from agents.llm import LLMClient, parse_strict
from models.article import Article
from models.digest import DigestContent

logger = logging.getLogger(__name__)

DIGEST_MAX_TOKENS = 2048

DIGEST_PROMPT = """You are creating a daily reading digest for a user. Analyze these {count} articles they saved and create an intelligent summary.

Articles saved today:
{articles_json}

Create a digest in the following JSON format:
{{
  "overall_summary": "A 2-3 paragraph narrative summary that weaves together the main themes and insights from all articles. Make it engaging and insightful.",
  "top_themes": ["Theme 1", "Theme 2", "Theme 3", "Theme 4", "Theme 5"],
  "articles": [
    {{
      "article_id": "id",
      "title": "Article title",
      "image_url": "url or null",
      "summary": "1-2 sentence summary specific to this article",
      "highlights": ["Key highlight 1", "Key highlight 2"],
      "url": "original url"
    }}
  ],
  "ai_insights": "An interesting insight, connection, or pattern you noticed across the articles that the reader might find valuable. Be specific and thoughtful."
}}

Return ONLY valid JSON, no other text."""


def project_article(article: Article) -> dict:
    """Compact per-article projection sent to the digest prompt.

    The summary falls back to the extracted description when the article
    has no analysis summary.
    """
    analysis = article.analysis
    return {
        "id": article.id,
        "title": article.title,
        "url": article.url,
        "summary": (analysis.summary if analysis and analysis.summary else article.description),
        "key_points": analysis.key_points if analysis else [],
        "topics": analysis.topics if analysis else [],
        "image_url": article.image_url,
    }


def build_digest_prompt(articles: list[Article]) -> str:
    projections = [project_article(a) for a in articles]
    return DIGEST_PROMPT.format(
        count=len(articles),
        articles_json=json.dumps(projections, indent=2, ensure_ascii=False),
    )


class DigestWriter:
    """Runs the single digest synthesis call for one user-day."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def write(self, articles: list[Article]) -> DigestContent:
        """Synthesize a digest over ``articles`` (newest first).

        Raises:
            LLMError: On call failure or timeout
            MalformedOutputError: If the reply is not a strict DigestContent object
        """
        reply = await self.llm.complete(build_digest_prompt(articles), max_tokens=DIGEST_MAX_TOKENS)
        content = parse_strict(reply, DigestContent)
        logger.debug(
            "Digest parsed | articles=%d themes=%d entries=%d",
            len(articles),
            len(content.top_themes),
            len(content.articles),
        )
        return content
