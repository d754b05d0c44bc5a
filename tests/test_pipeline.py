"""Tests for pipeline orchestration."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, call, patch

import pytest

from insights.classify.classifier import error_result
from insights.db import (
    count_articles,
    count_articles_by_status,
    get_article,
    get_insight_for_article,
    get_recent_runs,
    insert_article,
    update_article_status,
)
from insights.models import ProcessingStatus
from insights.pipeline import (
    collect_only,
    expire_old,
    get_usage_tracker,
    process_article,
    process_only,
    process_pending,
    reconcile_stale,
    retry_failed,
    run_pipeline,
    track_usage,
)

NEWSDATA_BODY = {
    "status": "success",
    "totalResults": 1,
    "results": [{
        "title": "Edge AI camera ships to retailers",
        "link": "https://news.example.com/edge-camera",
        "description": "A vision startup begins shipping its on-device detection camera.",
        "source_id": "techwire",
        "pubDate": "2024-05-02 09:00:00",
    }],
}

PORTUGUESE_REPLY = json.dumps({
    "relevante": True,
    "motivo": "Lançamento de produto de visão computacional",
    "categoria": "PRODUTO",
    "acaoSugerida": "Avaliar parceria comercial",
    "scoreConfianca": 0.9,
    "resumoExecutivo": "Startup lança câmera com IA embarcada.",
    "palavrasChave": "visão computacional, edge AI",
})


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_full_pipeline_end_to_end(
    mock_client_cls, sample_config, db_conn, make_http_client, gemini_reply,
):
    """One search hit flows through collection and classification into an insight."""
    mock_client_cls.return_value = make_http_client(
        get_json=NEWSDATA_BODY,
        post_json=gemini_reply(PORTUGUESE_REPLY, 120, 80),
    )

    run = await run_pipeline(sample_config)

    assert run.success
    assert run.status == "completed"
    assert (run.collected, run.processed, run.retried, run.expired) == (1, 1, 0, 0)
    assert run.llm_tokens_used == 200

    counts = count_articles_by_status(db_conn)
    assert counts[ProcessingStatus.COMPLETED] == 1
    assert sum(counts.values()) == 1

    insight = get_insight_for_article(db_conn, 1)
    assert insight.is_relevant is True
    assert insight.category.value == "PRODUCT"
    assert insight.confidence_level == "High"
    assert insight.ai_model == "gemini-1.5-pro"

    runs = get_recent_runs(db_conn)
    assert runs[0]["trigger"] == "full"
    assert runs[0]["processed"] == 1
    assert get_usage_tracker() is None


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_failed_article_recovers_in_retry_phase(
    mock_client_cls, sample_config, db_conn, make_http_client, gemini_reply, classification,
):
    """An incomplete first answer leaves the article FAILED; the retry pass completes it."""
    mock_client_cls.return_value = make_http_client(
        get_json=NEWSDATA_BODY,
        post_json=[
            gemini_reply(classification(category="GOSSIP")),
            gemini_reply(classification(category="STRATEGY")),
        ],
    )

    run = await run_pipeline(sample_config)

    assert (run.collected, run.processed, run.retried) == (1, 0, 1)
    article = get_article(db_conn, 1)
    assert article.status == ProcessingStatus.COMPLETED
    assert get_insight_for_article(db_conn, 1).category.value == "STRATEGY"


@pytest.mark.asyncio
@patch("insights.ingest.newsdata.httpx.AsyncClient")
async def test_unsuccessful_analysis_stores_no_insight(
    mock_client_cls, sample_config, db_conn, make_http_client, gemini_reply,
):
    mock_client_cls.return_value = make_http_client(
        get_json=NEWSDATA_BODY,
        post_json=gemini_reply("I cannot help with that."),
    )

    run = await run_pipeline(sample_config)

    assert run.success
    assert (run.collected, run.processed, run.retried) == (1, 0, 0)
    assert get_article(db_conn, 1).status == ProcessingStatus.FAILED
    assert get_insight_for_article(db_conn, 1) is None


@pytest.mark.asyncio
async def test_process_article_forces_failed_on_exception(
    sample_config, db_conn, sample_articles,
):
    article = sample_articles[0]
    article.id = insert_article(db_conn, article)

    with patch("insights.pipeline.classify", AsyncMock(side_effect=RuntimeError("boom"))):
        ok = await process_article(
            sample_config, db_conn, article, ProcessingStatus.PROCESSING, "gemini-1.5-pro",
        )

    assert ok is False
    assert get_article(db_conn, article.id).status == ProcessingStatus.FAILED


@pytest.mark.asyncio
async def test_retry_moves_through_retrying(sample_config, db_conn, sample_articles):
    """Retried articles pass through RETRYING before their final status."""
    article = sample_articles[0]
    article.id = insert_article(db_conn, article)
    update_article_status(db_conn, article, ProcessingStatus.FAILED)
    seen = []

    async def fake_classify(config, target):
        seen.append(get_article(db_conn, target.id).status)
        return error_result("still broken")

    with patch("insights.pipeline.classify", fake_classify):
        assert await retry_failed(sample_config, db_conn) == 0

    assert seen == [ProcessingStatus.RETRYING]
    assert get_article(db_conn, article.id).status == ProcessingStatus.FAILED


@pytest.mark.asyncio
async def test_fatal_error_is_reported_not_raised(sample_config, db_conn):
    with patch("insights.pipeline.collect_all", AsyncMock(side_effect=RuntimeError("disk full"))):
        run = await run_pipeline(sample_config)

    assert not run.success
    assert run.status == "failed"
    assert run.error == "disk full"
    assert run.collected == 0
    runs = get_recent_runs(db_conn)
    assert runs[0]["status"] == "failed"
    assert runs[0]["error"] == "disk full"


@pytest.mark.asyncio
async def test_collect_only_reraises_and_records(sample_config, db_conn):
    with patch("insights.pipeline.collect_all", AsyncMock(side_effect=RuntimeError("offline"))):
        with pytest.raises(RuntimeError, match="offline"):
            await collect_only(sample_config)

    run = get_recent_runs(db_conn)[0]
    assert run["trigger"] == "collect"
    assert run["status"] == "failed"


@pytest.mark.asyncio
@patch("insights.llm.gemini.httpx.AsyncClient")
async def test_process_only(
    mock_client_cls, sample_config, db_conn, sample_articles, make_http_client,
    gemini_reply, classification,
):
    for article in sample_articles[:2]:
        insert_article(db_conn, article)
    mock_client_cls.return_value = make_http_client(post_json=gemini_reply(classification()))

    assert await process_only(sample_config) == 2
    assert count_articles_by_status(db_conn)[ProcessingStatus.COMPLETED] == 2
    assert get_recent_runs(db_conn)[0]["trigger"] == "process"


def test_reconcile_stale(db_conn, sample_articles):
    stuck, retrying, done = sample_articles
    for article, status in (
        (stuck, ProcessingStatus.PROCESSING),
        (retrying, ProcessingStatus.RETRYING),
        (done, ProcessingStatus.COMPLETED),
    ):
        article.id = insert_article(db_conn, article)
        update_article_status(db_conn, article, status)

    assert reconcile_stale(db_conn) == 2
    assert get_article(db_conn, stuck.id).status == ProcessingStatus.PENDING
    assert get_article(db_conn, retrying.id).status == ProcessingStatus.FAILED
    assert get_article(db_conn, done.id).status == ProcessingStatus.COMPLETED


def test_expire_old(db_conn, sample_articles):
    old, recent, _ = sample_articles
    old.created_at = datetime.now() - timedelta(days=8)
    insert_article(db_conn, old)
    insert_article(db_conn, recent)

    assert expire_old(db_conn, 7) == 1
    assert count_articles(db_conn) == 1


@pytest.mark.asyncio
@patch("insights.llm.gemini.httpx.AsyncClient")
async def test_failed_completion_leaves_no_insight_and_can_retry(
    mock_client_cls, sample_config, db_conn, sample_articles, make_http_client,
    gemini_reply, classification,
):
    """Insight and COMPLETED are written together; a failed write keeps neither."""
    article = sample_articles[0]
    article.id = insert_article(db_conn, article)
    mock_client_cls.return_value = make_http_client(post_json=gemini_reply(classification()))
    db_conn.execute(
        """CREATE TRIGGER block_completion BEFORE UPDATE OF status ON articles
           WHEN NEW.status = 'COMPLETED'
           BEGIN SELECT RAISE(ABORT, 'database is locked'); END"""
    )
    db_conn.commit()

    assert await process_pending(sample_config, db_conn) == 0
    assert get_article(db_conn, article.id).status == ProcessingStatus.FAILED
    assert get_insight_for_article(db_conn, article.id) is None

    db_conn.execute("DROP TRIGGER block_completion")
    db_conn.commit()

    assert await retry_failed(sample_config, db_conn) == 1
    assert get_article(db_conn, article.id).status == ProcessingStatus.COMPLETED
    assert get_insight_for_article(db_conn, article.id) is not None


@pytest.mark.asyncio
async def test_unusable_store_is_reported_not_raised(sample_config):
    """A database without tables yields a failed run instead of an exception."""
    run = await run_pipeline(sample_config)

    assert not run.success
    assert run.status == "failed"
    assert "no such table" in run.error
    assert run.id is None
    assert run.finished_at is not None


@pytest.mark.asyncio
async def test_items_are_paced_except_the_first(sample_config, db_conn, sample_articles):
    sample_config["pipeline"]["item_delay_seconds"] = 2.0
    for article in sample_articles:
        insert_article(db_conn, article)

    with patch("insights.pipeline.classify", AsyncMock(return_value=error_result("down"))), \
            patch("insights.pipeline.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        assert await process_pending(sample_config, db_conn) == 0
        assert mock_sleep.await_args_list == [call(2.0)] * 2

        assert await retry_failed(sample_config, db_conn) == 0
        assert mock_sleep.await_args_list == [call(2.0)] * 4


@pytest.mark.asyncio
async def test_usage_tracking_is_scoped_per_task():
    """Overlapping runs each count only their own tokens."""

    async def job(calls: int) -> int:
        with track_usage() as tracker:
            for _ in range(calls):
                get_usage_tracker().track(10, 5)
                await asyncio.sleep(0)
            return tracker.total_tokens

    assert await asyncio.gather(job(3), job(5)) == [45, 75]
    assert get_usage_tracker() is None
