"""Read-side queries: paginated insight listings, daily summary, system stats."""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from insights.db import (
    count_articles,
    count_articles_by_status,
    count_insights,
    count_insights_grouped,
    find_insights,
    get_insights_between,
    get_recent_runs,
)
from insights.models import Category, Insight, ProcessingStatus, confidence_tier

logger = logging.getLogger(__name__)

DEFAULT_SORT = "processedAt,desc"
MAX_PAGE_SIZE = 100
TOP_RELEVANT = 10
UNCATEGORIZED = "Uncategorized"

SORT_FIELDS = {
    "processedAt": "i.processed_at",
    "confidenceScore": "i.confidence_score",
    "createdAt": "i.created_at",
    "category": "i.category",
    "id": "i.id",
}


@dataclass
class Page:
    """One page of insights."""

    items: list[Insight] = field(default_factory=list)
    page: int = 0
    size: int = 20
    total_elements: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.size) if self.size else 0


def parse_sort(sort: str | None) -> str:
    """Translate ``field,direction`` into a whitelisted ORDER BY clause."""
    column, direction = SORT_FIELDS["processedAt"], "DESC"
    if sort:
        parts = [p.strip() for p in sort.split(",")]
        if len(parts) == 2 and parts[0] in SORT_FIELDS:
            column = SORT_FIELDS[parts[0]]
            direction = "DESC" if parts[1].lower() == "desc" else "ASC"
    return f"{column} {direction}"


def list_insights(
    conn: sqlite3.Connection,
    category: Category | None = None,
    relevant: bool | None = None,
    page: int = 0,
    size: int = 20,
    sort: str | None = DEFAULT_SORT,
) -> Page:
    """Insights filtered by category and/or relevance, paginated and sorted."""
    page = max(page, 0)
    size = min(max(size, 1), MAX_PAGE_SIZE)
    items, total = find_insights(
        conn,
        category=category,
        relevant=relevant,
        order_by=parse_sort(sort),
        limit=size,
        offset=page * size,
    )
    logger.debug(
        "Listed %d insights (category=%s, relevant=%s, page=%d)",
        len(items), category, relevant, page,
    )
    return Page(items=items, page=page, size=size, total_elements=total)


def insight_brief(insight: Insight) -> dict:
    """Compact rendering used by the daily summary."""
    brief = {
        "id": insight.id,
        "category": insight.category.display_name if insight.category else None,
        "confidence": confidence_tier(insight.confidence_score),
        "executive_summary": insight.executive_summary,
        "suggested_action": insight.suggested_action,
        "processed_at": insight.processed_at.isoformat() if insight.processed_at else None,
    }
    if insight.article is not None:
        brief["title"] = insight.article.title
        brief["source"] = insight.article.source_name
        brief["url"] = insight.article.url
    return brief


def daily_summary(conn: sqlite3.Connection, start: datetime, end: datetime) -> dict:
    """Aggregate the insights processed between ``start`` and ``end``."""
    logger.info("Building daily summary from %s to %s", start, end)
    insights = get_insights_between(conn, start, end)

    total = len(insights)
    relevant = [i for i in insights if i.is_relevant is True]
    high_confidence = sum(1 for i in insights if i.has_high_confidence)

    categories = {category.display_name: 0 for category in Category}
    uncategorized = 0
    for insight in insights:
        if insight.category is None:
            uncategorized += 1
        else:
            categories[insight.category.display_name] += 1
    categories[UNCATEGORIZED] = uncategorized

    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "stats": {
            "total_insights": total,
            "relevant_insights": len(relevant),
            "relevant_percentage": (len(relevant) * 100.0 / total) if total else 0,
            "high_confidence_insights": high_confidence,
        },
        "categories": categories,
        "insights": [insight_brief(i) for i in relevant[:TOP_RELEVANT]],
    }


def system_stats(conn: sqlite3.Connection) -> str:
    """Plain-text overview of collection, analysis and recent runs."""
    statuses = count_articles_by_status(conn)
    total_articles = count_articles(conn)
    total_insights = count_insights(conn)
    by_relevance = count_insights_grouped(conn, "is_relevant")
    by_category = count_insights_grouped(conn, "category")
    by_model = count_insights_grouped(conn, "ai_model")

    relevant = by_relevance.get(1, 0)
    pct = relevant * 100.0 / total_insights if total_insights else 0.0

    lines = ["=== SYSTEM STATISTICS ===", "", "Collection:"]
    lines.append(f"- Total articles: {total_articles}")
    for status in ProcessingStatus:
        lines.append(f"- {status.value.title()}: {statuses[status]}")

    lines += ["", "Analysis:"]
    lines.append(f"- Total insights: {total_insights}")
    lines.append(f"- Relevant: {relevant} ({pct:.1f}%)")
    for category in Category:
        lines.append(f"- {category.display_name}: {by_category.get(category.value, 0)}")
    if by_category.get(None):
        lines.append(f"- {UNCATEGORIZED}: {by_category[None]}")

    lines += ["", "AI models:"]
    for model, n in sorted(by_model.items(), key=lambda kv: str(kv[0])):
        lines.append(f"- {model or 'unknown'}: {n}")

    runs = get_recent_runs(conn, limit=5)
    lines += ["", "Recent runs:"]
    if not runs:
        lines.append("- none")
    for r in runs:
        lines.append(
            f"- #{r['id']} {r['trigger']} {r['status']} at {r['started_at']}: "
            f"{r['collected']} collected, {r['processed']} processed, "
            f"{r['retried']} retried, {r['expired']} expired"
        )

    return "\n".join(lines)
