"""NewsData.io keyword search source."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from insights.config import get_newsdata_config, is_valid_key
from insights.ingest import register_source
from insights.ingest.base import BaseSource, SourceError
from insights.models import Article
from insights.retry import retry_async

logger = logging.getLogger(__name__)

PUB_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@register_source("newsdata")
class NewsDataSource(BaseSource):
    """Fetch articles from the NewsData.io ``/news`` endpoint."""

    @property
    def name(self) -> str:
        return "newsdata"

    async def search(self, keyword: str) -> list[Article]:
        cfg = get_newsdata_config(self.config)
        if not is_valid_key(cfg["api_key"]):
            logger.error("NewsData API key not configured, skipping '%s'", keyword)
            return []

        params = {
            "apikey": cfg["api_key"],
            "q": keyword,
            "language": cfg["language"],
            "country": cfg["country"],
        }
        data = await retry_async(
            self._get, cfg["base_url"], params, cfg["timeout"],
            max_retries=cfg["max_retries"],
        )

        if not isinstance(data, dict) or data.get("status") != "success":
            message = data.get("results") if isinstance(data, dict) else data
            raise SourceError(f"NewsData error for '{keyword}': {message}")

        articles = []
        for item in data.get("results") or []:
            article = parse_result(item, keyword)
            if article is None:
                logger.debug("Skipping invalid result: %.50s", (item or {}).get("title"))
                continue
            articles.append(article)

        logger.info(
            "NewsData returned %d valid of %s results for '%s'",
            len(articles), data.get("totalResults", "?"), keyword,
        )
        return articles

    async def _get(self, url: str, params: dict, timeout: int) -> dict:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()


def _first(value):
    """NewsData sends some fields as lists; keep the first element."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(value) -> str:
    value = _first(value)
    return value.strip() if isinstance(value, str) else ""


def parse_published(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, PUB_DATE_FORMAT)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Store naive local-comparable timestamps like the rest of the schema
    return parsed.replace(tzinfo=None)


def parse_result(item: dict | None, keyword: str) -> Article | None:
    """Build an Article from one search hit, or None when it lacks title/description/URL."""
    if not isinstance(item, dict):
        return None

    title = _text(item.get("title"))
    description = _text(item.get("description"))
    url = _text(item.get("link") or item.get("url"))
    if not title or not description or not url:
        return None

    return Article(
        url=url,
        title=title,
        description=description,
        content=_text(item.get("content")) or None,
        image_url=_text(item.get("image_url") or item.get("image")) or None,
        source_name=_text(item.get("source_name") or item.get("source_id") or item.get("source")),
        author=_text(item.get("creator") or item.get("author")) or None,
        published_at=parse_published(_text(item.get("pubDate") or item.get("publishedAt"))),
        language=_text(item.get("language")) or None,
        country=_text(item.get("country")) or None,
        keyword=keyword,
    )
