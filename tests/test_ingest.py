"""Tests for the NewsData source and the keyword collector."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest

from insights.db import count_articles, get_pending_articles, insert_article
from insights.ingest import SOURCES
from insights.ingest.base import SourceError
from insights.ingest.collector import collect_all, store_new_articles
from insights.ingest.newsdata import NewsDataSource, parse_published, parse_result
from insights.models import Article, ProcessingStatus


def _newsdata_item(n: int = 1, **overrides) -> dict:
    item = {
        "article_id": f"abc{n}",
        "title": f"Vision model {n} hits new accuracy record",
        "link": f"https://news.example.com/story-{n}",
        "description": "Researchers report a large jump on a detection benchmark.",
        "content": None,
        "pubDate": "2024-05-02 09:00:00",
        "image_url": None,
        "source_id": "techwire",
        "creator": ["Jane Doe"],
        "language": "english",
        "country": ["united states of america"],
    }
    item.update(overrides)
    return item


def _newsdata_body(*items) -> dict:
    return {"status": "success", "totalResults": len(items), "results": list(items)}


def test_newsdata_registered():
    assert SOURCES["newsdata"] is NewsDataSource


def test_parse_result_maps_fields():
    article = parse_result(_newsdata_item(), "computer vision")
    assert article.url == "https://news.example.com/story-1"
    assert article.source_name == "techwire"
    assert article.author == "Jane Doe"
    assert article.country == "united states of america"
    assert article.published_at == datetime(2024, 5, 2, 9, 0)
    assert article.keyword == "computer vision"
    assert article.content is None


@pytest.mark.parametrize("missing", ["title", "description", "link"])
def test_parse_result_rejects_incomplete(missing):
    assert parse_result(_newsdata_item(**{missing: None}), "ai") is None
    assert parse_result(_newsdata_item(**{missing: "  "}), "ai") is None


def test_parse_published_formats():
    assert parse_published("2024-05-02 09:00:00") == datetime(2024, 5, 2, 9, 0)
    assert parse_published("2024-05-02T09:00:00Z") == datetime(2024, 5, 2, 9, 0)
    assert parse_published("yesterday") is None
    assert parse_published(None) is None


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_search_returns_valid_articles(mock_client_cls, sample_config, make_http_client):
    mock_client = make_http_client(get_json=_newsdata_body(
        _newsdata_item(1),
        _newsdata_item(2, description=None),
        _newsdata_item(3),
    ))
    mock_client_cls.return_value = mock_client

    articles = await NewsDataSource(sample_config).search("artificial intelligence")

    assert [a.url for a in articles] == [
        "https://news.example.com/story-1",
        "https://news.example.com/story-3",
    ]
    params = mock_client.get.call_args.kwargs["params"]
    assert params == {
        "apikey": "news-key",
        "q": "artificial intelligence",
        "language": "en",
        "country": "us",
    }


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_search_error_status_raises(mock_client_cls, sample_config, make_http_client):
    mock_client_cls.return_value = make_http_client(
        get_json={"status": "error", "results": {"message": "API key invalid"}},
    )

    with pytest.raises(SourceError, match="API key invalid"):
        await NewsDataSource(sample_config).search("ai")


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_search_without_key_skips_call(mock_client_cls, sample_config):
    sample_config["sources"]["newsdata"]["api_key"] = "your_newsdata_key_here"

    assert await NewsDataSource(sample_config).search("ai") == []
    mock_client_cls.assert_not_called()


def test_store_new_articles_dedups_by_url(db_conn, sample_articles):
    insert_article(db_conn, sample_articles[0])
    invalid = Article(url="https://example.com/empty", title="No body", description="")

    saved = store_new_articles(db_conn, [*sample_articles, invalid])

    assert saved == 2
    assert count_articles(db_conn) == 3
    assert all(a.status == ProcessingStatus.PENDING for a in get_pending_articles(db_conn))


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_collect_is_idempotent(mock_client_cls, sample_config, db_conn, make_http_client):
    """Re-running collection over the same results stores nothing new."""
    body = _newsdata_body(_newsdata_item(1), _newsdata_item(2))
    mock_client_cls.return_value = make_http_client(get_json=[body, body])

    assert await collect_all(sample_config, db_conn) == 2
    assert await collect_all(sample_config, db_conn) == 0
    assert count_articles(db_conn) == 2


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_failing_keyword_does_not_stop_others(
    mock_client_cls, sample_config, db_conn, make_http_client,
):
    sample_config["collector"]["keywords"] = ["computer vision", "machine learning", "automation"]
    mock_client_cls.return_value = make_http_client(get_json=[
        httpx.ConnectError("connection refused"),
        {"status": "error", "results": {"message": "rate limited"}},
        _newsdata_body(_newsdata_item(7)),
    ])

    assert await collect_all(sample_config, db_conn) == 1
    stored = get_pending_articles(db_conn)
    assert [a.keyword for a in stored] == ["automation"]


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_keywords_are_paced(mock_client_cls, sample_config, db_conn, make_http_client):
    """The pause sits between keywords, never before the first one."""
    sample_config["collector"]["keywords"] = ["computer vision", "machine learning", "automation"]
    sample_config["collector"]["keyword_delay_seconds"] = 1.5
    mock_client_cls.return_value = make_http_client(get_json=_newsdata_body())

    with patch("insights.ingest.collector.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await collect_all(sample_config, db_conn)

    assert mock_sleep.await_args_list == [call(1.5)] * 2
