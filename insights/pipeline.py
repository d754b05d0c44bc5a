"""Pipeline orchestrator: collect, classify, retry failures, expire old rows."""

from __future__ import annotations

import asyncio
import contextvars
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta

from insights.classify.classifier import classify, model_name, persist
from insights.config import get_db_path, get_pipeline_settings
from insights.db import (
    delete_articles_before,
    finish_run,
    get_connection,
    get_failed_articles,
    get_pending_articles,
    insert_run,
    reset_status,
    update_article_status,
)
from insights.ingest.collector import collect_all
from insights.models import Article, PipelineRun, ProcessingStatus

logger = logging.getLogger(__name__)


class UsageTracker:
    """Accumulate LLM token usage across a pipeline run."""

    def __init__(self):
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    def track(self, input_tokens: int, output_tokens: int):
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


# Each asyncio task (scheduled job, API request) sees its own tracker
_usage_tracker: contextvars.ContextVar[UsageTracker | None] = contextvars.ContextVar(
    "_usage_tracker", default=None,
)


def get_usage_tracker() -> UsageTracker | None:
    return _usage_tracker.get()


@contextmanager
def track_usage():
    """Install a fresh UsageTracker for the current task until the block exits."""
    tracker = UsageTracker()
    token = _usage_tracker.set(tracker)
    try:
        yield tracker
    finally:
        _usage_tracker.reset(token)


def reconcile_stale(conn: sqlite3.Connection) -> int:
    """Requeue rows left mid-flight by a crash.

    PROCESSING goes back to PENDING and RETRYING back to FAILED. Only safe
    when no pipeline is running, so callers invoke it at process start.
    """
    requeued = reset_status(conn, ProcessingStatus.PROCESSING, ProcessingStatus.PENDING)
    requeued += reset_status(conn, ProcessingStatus.RETRYING, ProcessingStatus.FAILED)
    if requeued:
        logger.warning("Requeued %d articles stuck in PROCESSING/RETRYING", requeued)
    return requeued


async def process_article(
    config: dict,
    conn: sqlite3.Connection,
    article: Article,
    in_flight: ProcessingStatus,
    ai_model: str,
) -> bool:
    """Drive one article through ``in_flight`` to COMPLETED or FAILED.

    Returns True when an Insight was stored. Any exception is logged and the
    article is forced to FAILED.
    """
    try:
        update_article_status(conn, article, in_flight)
        result = await classify(config, article)
        if result.is_successful:
            persist(conn, article, result, ai_model)
            return True
        update_article_status(conn, article, ProcessingStatus.FAILED)
        logger.warning("Article %s failed classification: %s", article.id, result.reason)
        return False
    except Exception:
        logger.exception("Error processing article %s", article.id)
        update_article_status(conn, article, ProcessingStatus.FAILED)
        return False


async def _drive(
    config: dict,
    conn: sqlite3.Connection,
    articles: list[Article],
    in_flight: ProcessingStatus,
) -> int:
    delay = get_pipeline_settings(config)["item_delay_seconds"]
    ai_model = model_name(config)
    succeeded = 0
    for i, article in enumerate(articles):
        if i and delay > 0:
            await asyncio.sleep(delay)
        if await process_article(config, conn, article, in_flight, ai_model):
            succeeded += 1
    return succeeded


async def process_pending(config: dict, conn: sqlite3.Connection) -> int:
    """Classify every PENDING article; returns how many reached COMPLETED."""
    pending = get_pending_articles(conn)
    logger.info("Found %d pending articles", len(pending))
    processed = await _drive(config, conn, pending, ProcessingStatus.PROCESSING)
    logger.info("Processing finished: %d/%d completed", processed, len(pending))
    return processed


async def retry_failed(config: dict, conn: sqlite3.Connection) -> int:
    """Give every FAILED article one more attempt; returns how many recovered."""
    failed = get_failed_articles(conn)
    logger.info("Found %d failed articles to retry", len(failed))
    retried = await _drive(config, conn, failed, ProcessingStatus.RETRYING)
    logger.info("Retry finished: %d/%d recovered", retried, len(failed))
    return retried


def expire_old(conn: sqlite3.Connection, days: int) -> int:
    """Delete articles (and, by cascade, their insights) older than ``days``."""
    cutoff = datetime.now() - timedelta(days=days)
    removed = delete_articles_before(conn, cutoff)
    logger.info("Expired %d articles older than %d days", removed, days)
    return removed


def _stamp(run: PipelineRun, started: float, tracker: UsageTracker | None = None) -> None:
    run.execution_time_ms = int((time.monotonic() - started) * 1000)
    run.finished_at = datetime.now()
    if tracker:
        run.llm_tokens_used = tracker.total_tokens


def _fail(run: PipelineRun, exc: Exception) -> None:
    run.status = "failed"
    run.error = str(exc) or type(exc).__name__


async def run_pipeline(config: dict) -> PipelineRun:
    """Execute the full pipeline: collect -> process -> retry -> expire.

    Never raises for failures inside the run, including an unusable store;
    they are reported through ``PipelineRun.error`` alongside the counts
    gathered so far.
    """
    run = PipelineRun(trigger="full")
    started = time.monotonic()
    conn = None

    with track_usage() as tracker:
        try:
            conn = get_connection(get_db_path(config))
            run.id = insert_run(conn, run)
            logger.info("=== Pipeline run #%d started ===", run.id)

            settings = get_pipeline_settings(config)

            logger.info("Phase 1: collecting articles")
            run.collected = await collect_all(config, conn)

            logger.info("Phase 2: processing pending articles")
            run.processed = await process_pending(config, conn)

            logger.info("Phase 3: retrying failed articles")
            run.retried = await retry_failed(config, conn)

            logger.info("Phase 4: expiring old articles")
            run.expired = expire_old(conn, settings["expire_after_days"])

            run.status = "completed"
        except Exception as exc:
            logger.exception("Pipeline run #%s failed", run.id)
            _fail(run, exc)

        _stamp(run, started, tracker)
        try:
            if run.id is not None:
                finish_run(conn, run.id, run)
        except Exception as exc:
            logger.exception("Could not record pipeline run #%s", run.id)
            if run.error is None:
                _fail(run, exc)
        finally:
            if conn is not None:
                conn.close()

    logger.info(
        "=== Pipeline run #%s %s in %dms: %d collected, %d processed, "
        "%d retried, %d expired ===",
        run.id, run.status, run.execution_time_ms, run.collected,
        run.processed, run.retried, run.expired,
    )
    return run


async def collect_only(config: dict) -> int:
    """Phase 1 alone, for the lightweight collection trigger."""
    logger.info("Running collection only")
    conn = get_connection(get_db_path(config))
    run = PipelineRun(trigger="collect")
    run_id = insert_run(conn, run)
    started = time.monotonic()
    try:
        run.collected = await collect_all(config, conn)
        run.status = "completed"
        return run.collected
    except Exception as exc:
        _fail(run, exc)
        raise
    finally:
        _stamp(run, started)
        finish_run(conn, run_id, run)
        conn.close()


async def process_only(config: dict) -> int:
    """Phase 2 alone, for the lightweight processing trigger."""
    logger.info("Running processing only")
    with track_usage() as tracker:
        conn = get_connection(get_db_path(config))
        run = PipelineRun(trigger="process")
        run_id = insert_run(conn, run)
        started = time.monotonic()
        try:
            run.processed = await process_pending(config, conn)
            run.status = "completed"
            return run.processed
        except Exception as exc:
            _fail(run, exc)
            raise
        finally:
            _stamp(run, started, tracker)
            finish_run(conn, run_id, run)
            conn.close()
