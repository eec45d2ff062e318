"""Article analyst: structured text analysis and image descriptions.

The analyst builds the prompts, calls the LLM, and strictly validates the
replies. It holds no state and never touches the database; the analysis
stage decides what to do with results and failures.
"""

import json
import logging

from agents.llm import LLMClient, image_prompt, parse_strict
from models.article import Article, ArticleAnalysis, ImageAnalysis
from tools.images import ImageData

logger = logging.getLogger(__name__)

TEXT_MAX_TOKENS = 1024
IMAGE_MAX_TOKENS = 512
MAX_COMMENTS = 10
TRUNCATION_MARKER = "...[truncated]"

ANALYSIS_PROMPT = """Analyze this article and provide a structured analysis.

Title: {title}

Content:
{content}
{comments_block}
Provide your analysis in the following JSON format:
{{
  "summary": "A concise 2-3 sentence summary of the main points",
  "key_points": ["Key point 1", "Key point 2", "Key point 3", "Key point 4", "Key point 5"],
  "topics": ["topic1", "topic2", "topic3"],
  "sentiment": "positive|negative|neutral|mixed",
  "reading_time_minutes": <estimated reading time>,
  "comments_summary": "Brief summary of the discussion if comments exist, or null"
}}

Return ONLY the JSON, no other text."""

IMAGE_PROMPT = """Describe this image briefly and explain how it relates to the article. Return JSON:
{
  "description": "Brief description of what's in the image",
  "objects": ["object1", "object2"],
  "relevance": "How this image relates to the article content"
}
Return ONLY JSON."""


def truncate_content(content: str, max_chars: int) -> str:
    """Cut body text to ``max_chars``, appending a marker when cut."""
    if len(content) <= max_chars:
        return content
    return f"{content[:max_chars]} {TRUNCATION_MARKER}"


def build_analysis_prompt(
    title: str,
    content: str,
    comments: list[str],
    max_chars: int = 15000,
) -> str:
    """Build the single text-analysis prompt for an article."""
    comments_block = ""
    if comments:
        comments_json = json.dumps(comments[:MAX_COMMENTS], ensure_ascii=False)
        comments_block = f"\nDiscussion/Comments Summary:\n{comments_json}\n"
    return ANALYSIS_PROMPT.format(
        title=title,
        content=truncate_content(content, max_chars),
        comments_block=comments_block,
    )


class ArticleAnalyst:
    """Produces ArticleAnalysis and ImageAnalysis objects for articles."""

    def __init__(self, llm: LLMClient, max_content_chars: int = 15000):
        self.llm = llm
        self.max_content_chars = max_content_chars

    async def analyze_text(self, article: Article) -> ArticleAnalysis:
        """Run the text analysis for an article with extracted content.

        Raises:
            LLMError: On call failure or timeout
            MalformedOutputError: If the reply is not a strict ArticleAnalysis object
        """
        prompt = build_analysis_prompt(
            article.title or "",
            article.content or "",
            article.comments,
            self.max_content_chars,
        )
        reply = await self.llm.complete(prompt, max_tokens=TEXT_MAX_TOKENS)
        analysis = parse_strict(reply, ArticleAnalysis)
        logger.debug(
            "Text analysis parsed | article=%s topics=%d sentiment=%s",
            article.id[:8],
            len(analysis.topics),
            analysis.sentiment,
        )
        # Image analyses come only from the per-image calls
        return analysis.model_copy(update={"image_analyses": []})

    async def describe_image(self, image: ImageData) -> ImageAnalysis:
        """Describe one downloaded image.

        Raises:
            LLMError: On call failure or timeout
            MalformedOutputError: If the reply is not a strict image description
        """
        prompt = image_prompt(image.data, image.media_type, IMAGE_PROMPT)
        reply = await self.llm.complete(prompt, max_tokens=IMAGE_MAX_TOKENS)
        description = parse_strict(reply, ImageAnalysis)
        return description.model_copy(update={"image_url": image.url})
