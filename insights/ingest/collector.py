"""Keyword-driven collection of new articles into the store."""

from __future__ import annotations

import asyncio
import logging
import sqlite3

from insights.config import get_active_sources, get_keyword_delay, get_keywords
from insights.db import article_exists, insert_article
from insights.ingest import SOURCES
from insights.models import Article, ProcessingStatus

logger = logging.getLogger(__name__)


async def collect_all(config: dict, conn: sqlite3.Connection) -> int:
    """Search every keyword on every enabled source and store the new hits.

    One failing keyword never stops the others. Returns the number of newly
    persisted articles.
    """
    keywords = get_keywords(config)
    delay = get_keyword_delay(config)

    sources = []
    for source_name in get_active_sources(config):
        if source_name not in SOURCES:
            logger.warning("Source '%s' enabled but not registered", source_name)
            continue
        sources.append(SOURCES[source_name](config))

    logger.info(
        "Collecting %d keywords from %d sources", len(keywords), len(sources),
    )

    total = 0
    for i, keyword in enumerate(keywords):
        if i and delay > 0:
            await asyncio.sleep(delay)
        for source in sources:
            total += await collect_keyword(source, keyword, conn)

    logger.info("Collection finished: %d new articles", total)
    return total


async def collect_keyword(source, keyword: str, conn: sqlite3.Connection) -> int:
    """Run a single search and persist its unseen articles (0 on any provider failure)."""
    try:
        candidates = await source.search(keyword)
    except Exception:
        logger.exception("Source '%s' failed for keyword '%s'", source.name, keyword)
        return 0

    saved = store_new_articles(conn, candidates)
    logger.info("Stored %d new articles for '%s' (%s)", saved, keyword, source.name)
    return saved


def store_new_articles(conn: sqlite3.Connection, candidates: list[Article]) -> int:
    """Insert candidates whose URL is not yet known, all as PENDING."""
    saved = 0
    for article in candidates:
        if not article.title or not article.description or not article.url:
            logger.debug("Invalid article skipped: %s", article.short_title())
            continue
        if article_exists(conn, article.url):
            logger.debug("Duplicate article skipped: %s", article.short_title())
            continue
        article.status = ProcessingStatus.PENDING
        article.id = insert_article(conn, article)
        saved += 1
    return saved
