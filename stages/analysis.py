"""Analysis stage: LLM text analysis plus best-effort image descriptions.

The text pass is mandatory: a failed call or a reply that is not strict
JSON fails the stage. Image passes are independent and best effort: each
image that cannot be fetched or described is logged and left out, and the
stage still succeeds.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable

from agents.analyst import ArticleAnalyst
from agents.llm import LLMClient
from config import Config
from database import Database
from models.article import ArticleStatus, ExtractedImage, ImageAnalysis
from models.queue import QueueJob
from stages.base import ArticleStateError, load_article
from tools.images import ImageData, fetch_image

logger = logging.getLogger(__name__)

ImageFetcher = Callable[[str], Awaitable[ImageData]]


class AnalysisStage:
    """Analyzes one extracted article and marks it ``ready``."""

    def __init__(
        self,
        db: Database,
        analyst: ArticleAnalyst,
        image_fetcher: ImageFetcher,
        max_images: int = 5,
        max_concurrent_images: int = 5,
    ):
        self.db = db
        self.analyst = analyst
        self.image_fetcher = image_fetcher
        self.max_images = max_images
        self.max_concurrent_images = max(1, max_concurrent_images)

    @classmethod
    def from_config(
        cls,
        config: Config,
        db: Database,
        llm: LLMClient | None = None,
    ) -> "AnalysisStage":
        llm = llm or LLMClient(
            config.analysis_model,
            api_key=config.llm_api_key,
            timeout=config.llm_timeout_seconds,
        )
        analyst = ArticleAnalyst(llm, max_content_chars=config.max_content_chars)
        fetcher = functools.partial(fetch_image, timeout=config.image_timeout_seconds)
        return cls(db, analyst, fetcher, max_images=config.max_images)

    async def run(self, job: QueueJob) -> dict[str, Any]:
        """Analyze the job's article.

        Raises:
            ArticleNotFoundError: If the article no longer exists
            ArticleStateError: If the article is not analyzable
            LLMError / MalformedOutputError: If the text analysis fails
        """
        article = load_article(self.db, job.article_id)

        if article.status == ArticleStatus.READY:
            logger.info("Analysis already done | article=%s", article.id[:8])
            return {"article_id": article.id, "skipped": "already analyzed"}

        if not self.db.set_article_status(article.id, ArticleStatus.ANALYZING):
            raise ArticleStateError(
                f"Article {article.id} cannot start analysis from '{article.status.value}'"
            )
        if not article.content:
            raise ArticleStateError(f"Article {article.id} has no extracted content")

        logger.info("Analysis started | article=%s images=%d", article.id[:8], len(article.images))
        analysis = await self.analyst.analyze_text(article)

        images = article.images[: self.max_images]
        image_analyses = await self._describe_images(images)
        analysis = analysis.model_copy(update={"image_analyses": image_analyses})

        if not self.db.save_analysis(article.id, analysis):
            raise ArticleStateError(f"Article {article.id} left analysis before results were saved")

        logger.info(
            "Analysis complete | article=%s sentiment=%s images=%d/%d",
            article.id[:8],
            analysis.sentiment,
            len(image_analyses),
            len(images),
        )
        return {
            "article_id": article.id,
            "summary": analysis.summary,
            "topics": analysis.topics,
            "image_analyses": len(image_analyses),
        }

    async def _describe_images(self, images: list[ExtractedImage]) -> list[ImageAnalysis]:
        """Describe images concurrently, keeping input order and dropping failures."""
        if not images:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrent_images)

        async def describe_one(image: ExtractedImage) -> ImageAnalysis:
            async with semaphore:
                data = await self.image_fetcher(image.url)
                return await self.analyst.describe_image(data)

        results = await asyncio.gather(
            *(describe_one(image) for image in images),
            return_exceptions=True,
        )

        analyses = []
        for image, result in zip(images, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Image analysis skipped | url=%s error=%s: %s",
                    image.url[:80],
                    type(result).__name__,
                    result,
                )
                continue
            analyses.append(result)
        return analyses
