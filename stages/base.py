"""Shared stage errors and helpers."""

from database import Database
from models.article import Article


class StageError(Exception):
    """Base class for stage failures that are not collaborator errors."""


class ArticleNotFoundError(StageError):
    """Raised when a job references an article that no longer exists."""


class ArticleStateError(StageError):
    """Raised when an article is not in a state the stage can advance."""


def load_article(db: Database, article_id: str) -> Article:
    article = db.get_article(article_id)
    if article is None:
        raise ArticleNotFoundError(f"Article {article_id} not found")
    return article
