"""NewsAPI lookup used to attach recent headlines to each digest entry."""
from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ValidationError

from .http_client import HttpClientError, body_snippet, request_json, status_of

logger = logging.getLogger(__name__)

EVERYTHING_URL = "https://newsapi.org/v2/everything"


class NewsLookupError(RuntimeError):
    """Raised when the news provider fails or returns an unusable payload."""


class NewsArticle(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None


class NewsSearchResponse(BaseModel):
    articles: list[NewsArticle]


class NewsApiClient:
    def __init__(
        self,
        api_key: str,
        *,
        limit: int = 12,
        timeout_seconds: float = 30.0,
        base_url: str = EVERYTHING_URL,
    ) -> None:
        self.api_key = api_key
        self.limit = limit
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url

    @classmethod
    def from_config(cls, config: Any) -> "NewsApiClient":
        return cls(
            config.news_api_key,
            limit=config.news_limit,
            timeout_seconds=config.http_timeout_seconds,
        )

    def search(self, query: str) -> list[str]:
        logger.info("news_lookup query=%s", query)
        params = urlencode({"q": query, "sortBy": "publishedAt", "apiKey": self.api_key})
        try:
            payload = request_json(f"{self.base_url}?{params}", timeout=self.timeout_seconds)
        except HttpClientError as exc:
            logger.warning(
                "news_lookup_failed query=%s status=%s body=%s",
                query,
                status_of(exc),
                body_snippet(exc),
            )
            raise NewsLookupError(f"News lookup failed for {query!r}: {exc}") from exc

        try:
            parsed = NewsSearchResponse.model_validate(payload)
        except ValidationError as exc:
            logger.warning("news_lookup_no_articles query=%s body=%s", query, str(payload)[:180])
            raise NewsLookupError(f"News response for {query!r} has no articles array.") from exc

        return render_articles(parsed.articles, self.limit)


def render_articles(articles: list[NewsArticle], limit: int) -> list[str]:
    rendered: list[str] = []
    for article in articles[:limit]:
        title = (article.title or "").strip()
        url = (article.url or "").strip()
        if not title or not url:
            continue
        rendered.append(f"{title} - {url}")
    return rendered
