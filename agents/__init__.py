"""PydanticAI-backed agents for the saveflow pipeline.

LLMClient:
    Raw-text model access with per-call timeout and token ceiling.
    Replies are validated strictly with parse_strict.

ArticleAnalyst:
    Text analysis (summary, key points, topics, sentiment, reading time)
    and per-image descriptions.

DigestWriter:
    Daily digest synthesis across a user's ready articles.

Example:
    >>> from agents import ArticleAnalyst, LLMClient
    >>> analyst = ArticleAnalyst(LLMClient(config.analysis_model, config.llm_api_key))
    >>> analysis = await analyst.analyze_text(article)
"""

from agents.llm import LLMClient, LLMError, MalformedOutputError, parse_strict
from agents.analyst import ArticleAnalyst
from agents.digester import DigestWriter

__all__ = [
    "LLMClient",
    "LLMError",
    "MalformedOutputError",
    "parse_strict",
    "ArticleAnalyst",
    "DigestWriter",
]
