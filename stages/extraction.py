"""Extraction stage: fetch article content and advance to ``analyzing``.

The stage never marks an article ``failed``. Any failure propagates to the
dispatcher, whose retry ceiling decides when the article is given up on.
"""

import functools
import logging
from typing import Any, Awaitable, Callable

from config import Config
from database import Database
from models.article import ArticleStatus, ExtractedContent
from models.queue import QueueJob
from stages.base import ArticleStateError, load_article
from tools.comments import CommentExtractorRegistry, default_registry
from tools.reader import read_article

logger = logging.getLogger(__name__)

Reader = Callable[[str], Awaitable[ExtractedContent]]


class ExtractionStage:
    """Runs the reader service for one article.

    Example:
        >>> stage = ExtractionStage.from_config(config, db)
        >>> result = await stage.run(job)
    """

    def __init__(
        self,
        db: Database,
        reader: Reader,
        comments: CommentExtractorRegistry | None = None,
    ):
        """Initialize the stage.

        Args:
            db: Article store
            reader: Coroutine function returning extracted content for a URL
            comments: Comment strategy registry (defaults to known discussion domains)
        """
        self.db = db
        self.reader = reader
        self.comments = comments or default_registry()

    @classmethod
    def from_config(cls, config: Config, db: Database) -> "ExtractionStage":
        reader = functools.partial(
            read_article,
            base_url=config.reader_base_url,
            api_key=config.reader_api_key,
            timeout=config.reader_timeout_seconds,
        )
        return cls(db, reader)

    async def run(self, job: QueueJob) -> dict[str, Any]:
        """Extract content for the job's article.

        Returns:
            Result summary for the dispatch cycle

        Raises:
            ArticleNotFoundError: If the article no longer exists
            ArticleStateError: If the article cannot enter extraction
            ExtractionError: On any reader failure
        """
        article = load_article(self.db, job.article_id)

        # A rerun after a crash between saving content and completing the job
        if article.status in (ArticleStatus.ANALYZING, ArticleStatus.READY):
            logger.info(
                "Extraction already done | article=%s status=%s",
                article.id[:8],
                article.status.value,
            )
            return {"article_id": article.id, "skipped": "already extracted"}

        if not self.db.set_article_status(article.id, ArticleStatus.EXTRACTING):
            raise ArticleStateError(
                f"Article {article.id} cannot start extraction from '{article.status.value}'"
            )

        logger.info("Extraction started | article=%s url=%s", article.id[:8], article.url[:80])
        extracted = await self.reader(article.url)
        extracted.comments = self.comments.extract(article.url, extracted.content)

        if not self.db.save_extraction(article.id, extracted):
            raise ArticleStateError(f"Article {article.id} left extraction before content was saved")

        logger.info(
            "Extraction complete | article=%s chars=%d images=%d comments=%d",
            article.id[:8],
            len(extracted.content),
            len(extracted.images),
            len(extracted.comments),
        )
        return {
            "article_id": article.id,
            "title": extracted.title,
            "content_chars": len(extracted.content),
            "images": len(extracted.images),
            "comments": len(extracted.comments),
        }
