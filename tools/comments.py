"""Comment extraction strategies for discussion sites.

Comment extraction is a best-effort heuristic. Strategies are registered
per host (matching the host itself and any subdomain) and receive the URL
and the extracted body text. No site has a real parser yet, so the default
registry maps every known discussion domain to a strategy that returns no
comments; articles simply carry an empty list.
"""

import logging
from typing import Callable
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# (url, content) -> comments
CommentStrategy = Callable[[str, str], list[str]]

DISCUSSION_DOMAINS = (
    "reddit.com",
    "news.ycombinator.com",
    "twitter.com",
    "x.com",
)


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def no_comments(url: str, content: str) -> list[str]:
    return []


class CommentExtractorRegistry:
    """Maps discussion domains to comment extraction strategies.

    Example:
        >>> registry = CommentExtractorRegistry()
        >>> registry.register("news.ycombinator.com", parse_hn_comments)
        >>> registry.extract("https://news.ycombinator.com/item?id=1", body)
    """

    def __init__(self):
        self._strategies: list[tuple[str, CommentStrategy]] = []

    def register(self, domain: str, strategy: CommentStrategy) -> None:
        """Register ``strategy`` for ``domain``; later registrations win."""
        self._strategies.insert(0, (domain.lower(), strategy))

    def strategy_for(self, url: str) -> CommentStrategy | None:
        host = _host(url)
        if not host:
            return None
        for domain, strategy in self._strategies:
            if _host_matches(host, domain):
                return strategy
        return None

    def is_discussion_url(self, url: str) -> bool:
        return self.strategy_for(url) is not None

    def extract(self, url: str, content: str) -> list[str]:
        """Run the matching strategy; unknown sites and strategy errors yield ``[]``."""
        strategy = self.strategy_for(url)
        if strategy is None:
            return []
        try:
            comments = strategy(url, content)
        except Exception as e:
            logger.warning("Comment extraction failed | url=%s error=%s", url[:120], e, exc_info=True)
            return []
        return [c for c in comments if c and c.strip()]


def default_registry() -> CommentExtractorRegistry:
    """Registry covering the known discussion domains."""
    registry = CommentExtractorRegistry()
    for domain in DISCUSSION_DOMAINS:
        registry.register(domain, no_comments)
    return registry
