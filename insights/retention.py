"""Age-based cleanup jobs and the periodic health check."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta

from insights.config import get_db_path, get_retention_config
from insights.db import (
    count_articles_by_status,
    delete_articles_before,
    delete_insights_before,
    get_connection,
)
from insights.models import ProcessingStatus

logger = logging.getLogger(__name__)


def _cutoff(days: int) -> datetime:
    return datetime.now() - timedelta(days=days)


def cleanup_old_articles(conn: sqlite3.Connection, days: int) -> int:
    """Delete every article created more than ``days`` ago."""
    removed = delete_articles_before(conn, _cutoff(days))
    logger.info("Removed %d articles older than %d days", removed, days)
    return removed


def cleanup_failed_articles(conn: sqlite3.Connection, days: int) -> int:
    """Delete FAILED articles created more than ``days`` ago."""
    removed = delete_articles_before(conn, _cutoff(days), ProcessingStatus.FAILED)
    logger.info("Removed %d failed articles older than %d days", removed, days)
    return removed


def cleanup_stale_pending(conn: sqlite3.Connection, days: int) -> int:
    """Delete articles that never left PENDING within ``days``."""
    removed = delete_articles_before(conn, _cutoff(days), ProcessingStatus.PENDING)
    logger.info("Removed %d pending articles older than %d days", removed, days)
    return removed


def cleanup_old_insights(conn: sqlite3.Connection, days: int) -> int:
    """Delete insights created more than ``days`` ago, leaving their articles."""
    removed = delete_insights_before(conn, _cutoff(days))
    logger.info("Removed %d insights older than %d days", removed, days)
    return removed


def run_daily_cleanup(config: dict) -> dict[str, int]:
    """Full retention sweep; returns the count removed per operation."""
    cfg = get_retention_config(config)
    conn = get_connection(get_db_path(config))
    try:
        removed = {
            "articles": cleanup_old_articles(conn, cfg["articles_days"]),
            "failed": cleanup_failed_articles(conn, cfg["failed_days"]),
            "pending": cleanup_stale_pending(conn, cfg["pending_days"]),
            "insights": cleanup_old_insights(conn, cfg["insights_days"]),
        }
    finally:
        conn.close()
    logger.info("Daily cleanup finished: %d rows removed", sum(removed.values()))
    return removed


def run_light_cleanup(config: dict) -> int:
    """Frequent sweep of failed articles only."""
    cfg = get_retention_config(config)
    conn = get_connection(get_db_path(config))
    try:
        removed = cleanup_failed_articles(conn, cfg["light_failed_days"])
    finally:
        conn.close()
    if removed:
        logger.info("Light cleanup finished: %d failed articles removed", removed)
    return removed


def health_check(config: dict) -> bool:
    """Warn when articles are sitting in FAILED. Returns False in that case."""
    conn = get_connection(get_db_path(config))
    try:
        counts = count_articles_by_status(conn)
    finally:
        conn.close()

    failed = counts[ProcessingStatus.FAILED]
    if failed:
        logger.warning("ALERT: %d articles failed processing", failed)
        logger.warning(
            "Status counts: %s",
            ", ".join(f"{status.value}={n}" for status, n in counts.items()),
        )
        return False
    return True
