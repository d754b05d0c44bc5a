"""SQLite database schema, migrations, and query helpers."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from insights.models import (
    Article,
    Category,
    Insight,
    PipelineRun,
    ProcessingStatus,
)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    content TEXT,
    image_url TEXT,
    source_name TEXT NOT NULL DEFAULT '',
    author TEXT,
    published_at TEXT,
    language TEXT,
    country TEXT,
    keyword TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'PENDING',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS insights (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id INTEGER NOT NULL UNIQUE,
    is_relevant INTEGER,
    category TEXT,
    relevance_reason TEXT,
    suggested_action TEXT,
    confidence_score REAL,
    executive_summary TEXT,
    extracted_keywords TEXT,
    ai_model TEXT NOT NULL DEFAULT '',
    processing_time_ms INTEGER NOT NULL DEFAULT 0,
    processed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (article_id) REFERENCES articles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pipeline_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trigger TEXT NOT NULL DEFAULT 'full',
    started_at TEXT NOT NULL,
    finished_at TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    collected INTEGER NOT NULL DEFAULT 0,
    processed INTEGER NOT NULL DEFAULT 0,
    retried INTEGER NOT NULL DEFAULT 0,
    expired INTEGER NOT NULL DEFAULT 0,
    execution_time_ms INTEGER NOT NULL DEFAULT 0,
    llm_tokens_used INTEGER NOT NULL DEFAULT 0,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(status);
CREATE INDEX IF NOT EXISTS idx_articles_created_at ON articles(created_at);
CREATE INDEX IF NOT EXISTS idx_insights_processed_at ON insights(processed_at);
CREATE INDEX IF NOT EXISTS idx_insights_category ON insights(category);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode enabled."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    """Create all tables and set schema version."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
    finally:
        conn.close()


def _dt_str(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def _parse_dt(s: str | None) -> datetime | None:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _now() -> str:
    return datetime.now().isoformat()


# --- Article helpers ---


def insert_article(conn: sqlite3.Connection, article: Article) -> int:
    """Insert an article, returning its ID. Skips duplicates by URL."""
    now = _now()
    try:
        cur = conn.execute(
            """INSERT INTO articles
               (url, title, description, content, image_url, source_name, author,
                published_at, language, country, keyword, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                article.url,
                article.title,
                article.description,
                article.content,
                article.image_url,
                article.source_name,
                article.author,
                _dt_str(article.published_at),
                article.language,
                article.country,
                article.keyword,
                article.status.value,
                _dt_str(article.created_at) or now,
                now,
            ),
        )
        conn.commit()
        return cur.lastrowid
    except sqlite3.IntegrityError:
        # Duplicate URL, return the existing row
        row = conn.execute("SELECT id FROM articles WHERE url = ?", (article.url,)).fetchone()
        return row["id"] if row else -1


def article_exists(conn: sqlite3.Connection, url: str) -> bool:
    row = conn.execute("SELECT 1 FROM articles WHERE url = ?", (url,)).fetchone()
    return row is not None


def get_article(conn: sqlite3.Connection, article_id: int) -> Article | None:
    row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
    return _row_to_article(row) if row else None


def get_pending_articles(conn: sqlite3.Connection) -> list[Article]:
    """Articles waiting for their first classification, newest publication first."""
    rows = conn.execute(
        "SELECT * FROM articles WHERE status = ? ORDER BY published_at DESC, id",
        (ProcessingStatus.PENDING.value,),
    ).fetchall()
    return [_row_to_article(row) for row in rows]


def get_failed_articles(conn: sqlite3.Connection) -> list[Article]:
    """Articles eligible for the retry pass, most recently failed first."""
    rows = conn.execute(
        "SELECT * FROM articles WHERE status = ? ORDER BY updated_at DESC, id",
        (ProcessingStatus.FAILED.value,),
    ).fetchall()
    return [_row_to_article(row) for row in rows]


def update_article_status(
    conn: sqlite3.Connection, article: Article, status: ProcessingStatus,
) -> None:
    """Persist a status transition and mirror it on the in-memory article."""
    now = _now()
    conn.execute(
        "UPDATE articles SET status = ?, updated_at = ? WHERE id = ?",
        (status.value, now, article.id),
    )
    conn.commit()
    article.status = status
    article.updated_at = datetime.fromisoformat(now)


def reset_status(
    conn: sqlite3.Connection, old: ProcessingStatus, new: ProcessingStatus,
) -> int:
    """Move every article in ``old`` to ``new``; returns rows changed."""
    cur = conn.execute(
        "UPDATE articles SET status = ?, updated_at = ? WHERE status = ?",
        (new.value, _now(), old.value),
    )
    conn.commit()
    return cur.rowcount


def count_articles(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]


def count_articles_by_status(conn: sqlite3.Connection) -> dict[ProcessingStatus, int]:
    """Article counts for every status (zero-filled)."""
    counts = {status: 0 for status in ProcessingStatus}
    rows = conn.execute("SELECT status, COUNT(*) AS n FROM articles GROUP BY status").fetchall()
    for row in rows:
        counts[ProcessingStatus(row["status"])] = row["n"]
    return counts


def delete_articles_before(
    conn: sqlite3.Connection,
    cutoff: datetime,
    status: ProcessingStatus | None = None,
) -> int:
    """Delete articles created before ``cutoff``, optionally limited to one status."""
    if status is None:
        cur = conn.execute("DELETE FROM articles WHERE created_at < ?", (_dt_str(cutoff),))
    else:
        cur = conn.execute(
            "DELETE FROM articles WHERE created_at < ? AND status = ?",
            (_dt_str(cutoff), status.value),
        )
    conn.commit()
    return cur.rowcount


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        content=row["content"],
        image_url=row["image_url"],
        source_name=row["source_name"],
        author=row["author"],
        published_at=_parse_dt(row["published_at"]),
        language=row["language"],
        country=row["country"],
        keyword=row["keyword"],
        status=ProcessingStatus(row["status"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


# --- Insight helpers ---


def insert_insight(conn: sqlite3.Connection, insight: Insight) -> int:
    """Insert an insight, returning its ID."""
    insight_id = _insert_insight_row(conn, insight, _now())
    conn.commit()
    return insight_id


def complete_article(conn: sqlite3.Connection, article: Article, insight: Insight) -> int:
    """Store the insight and mark its article COMPLETED in a single transaction.

    Either both rows change or neither does.
    """
    now = _now()
    try:
        insight_id = _insert_insight_row(conn, insight, now)
        conn.execute(
            "UPDATE articles SET status = ?, updated_at = ? WHERE id = ?",
            (ProcessingStatus.COMPLETED.value, now, article.id),
        )
    except sqlite3.Error:
        conn.rollback()
        raise
    conn.commit()
    article.status = ProcessingStatus.COMPLETED
    article.updated_at = datetime.fromisoformat(now)
    return insight_id


def _insert_insight_row(conn: sqlite3.Connection, insight: Insight, now: str) -> int:
    cur = conn.execute(
        """INSERT INTO insights
           (article_id, is_relevant, category, relevance_reason, suggested_action,
            confidence_score, executive_summary, extracted_keywords, ai_model,
            processing_time_ms, processed_at, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            insight.article_id,
            None if insight.is_relevant is None else int(insight.is_relevant),
            insight.category.value if insight.category else None,
            insight.relevance_reason,
            insight.suggested_action,
            insight.confidence_score,
            insight.executive_summary,
            insight.extracted_keywords,
            insight.ai_model,
            insight.processing_time_ms,
            _dt_str(insight.processed_at),
            _dt_str(insight.created_at) or now,
            now,
        ),
    )
    return cur.lastrowid


def get_insight_for_article(conn: sqlite3.Connection, article_id: int) -> Insight | None:
    row = conn.execute(
        f"{_INSIGHT_SELECT} WHERE i.article_id = ?", (article_id,),
    ).fetchone()
    return _row_to_insight(row) if row else None


def get_insights_between(
    conn: sqlite3.Connection, start: datetime, end: datetime,
) -> list[Insight]:
    """Insights processed inside [start, end], most recent first."""
    rows = conn.execute(
        f"""{_INSIGHT_SELECT}
            WHERE i.processed_at BETWEEN ? AND ?
            ORDER BY i.processed_at DESC, i.id DESC""",
        (_dt_str(start), _dt_str(end)),
    ).fetchall()
    return [_row_to_insight(row) for row in rows]


def find_insights(
    conn: sqlite3.Connection,
    category: Category | None = None,
    relevant: bool | None = None,
    order_by: str = "i.processed_at DESC",
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Insight], int]:
    """Filtered page of insights plus the total match count.

    ``order_by`` is interpolated into the SQL and must come from a whitelist.
    """
    clauses = []
    params: list = []
    if category is not None:
        clauses.append("i.category = ?")
        params.append(category.value)
    if relevant is not None:
        clauses.append("i.is_relevant = ?")
        params.append(int(relevant))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    total = conn.execute(
        f"SELECT COUNT(*) FROM insights i {where}", params,
    ).fetchone()[0]
    rows = conn.execute(
        f"{_INSIGHT_SELECT} {where} ORDER BY {order_by}, i.id DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ).fetchall()
    return [_row_to_insight(row) for row in rows], total


def count_insights(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM insights").fetchone()[0]


def count_insights_grouped(conn: sqlite3.Connection, column: str) -> dict:
    """Insight counts grouped by ``category``, ``ai_model`` or ``is_relevant``."""
    if column not in ("category", "ai_model", "is_relevant"):
        raise ValueError(f"Cannot group insights by {column!r}")
    rows = conn.execute(
        f"SELECT {column} AS key, COUNT(*) AS n FROM insights GROUP BY {column}"
    ).fetchall()
    return {row["key"]: row["n"] for row in rows}


def delete_insights_before(conn: sqlite3.Connection, cutoff: datetime) -> int:
    cur = conn.execute("DELETE FROM insights WHERE created_at < ?", (_dt_str(cutoff),))
    conn.commit()
    return cur.rowcount


_INSIGHT_SELECT = """
SELECT i.*,
       a.title AS article_title,
       a.url AS article_url,
       a.source_name AS article_source
FROM insights i
JOIN articles a ON a.id = i.article_id
"""


def _row_to_insight(row: sqlite3.Row) -> Insight:
    keys = row.keys()
    article = None
    if "article_url" in keys:
        article = Article(
            id=row["article_id"],
            url=row["article_url"],
            title=row["article_title"],
            description="",
            source_name=row["article_source"],
        )
    is_relevant = row["is_relevant"]
    return Insight(
        id=row["id"],
        article_id=row["article_id"],
        is_relevant=None if is_relevant is None else bool(is_relevant),
        category=Category.from_name(row["category"]),
        relevance_reason=row["relevance_reason"],
        suggested_action=row["suggested_action"],
        confidence_score=row["confidence_score"],
        executive_summary=row["executive_summary"],
        extracted_keywords=row["extracted_keywords"],
        ai_model=row["ai_model"],
        processing_time_ms=row["processing_time_ms"],
        processed_at=_parse_dt(row["processed_at"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        article=article,
    )


# --- PipelineRun helpers ---


def insert_run(conn: sqlite3.Connection, run: PipelineRun) -> int:
    cur = conn.execute(
        "INSERT INTO pipeline_runs (trigger, started_at, status) VALUES (?, ?, ?)",
        (run.trigger, _dt_str(run.started_at), run.status),
    )
    conn.commit()
    return cur.lastrowid


def finish_run(conn: sqlite3.Connection, run_id: int, run: PipelineRun) -> None:
    conn.execute(
        """UPDATE pipeline_runs SET
           finished_at = ?, status = ?, collected = ?, processed = ?,
           retried = ?, expired = ?, execution_time_ms = ?,
           llm_tokens_used = ?, error = ?
           WHERE id = ?""",
        (
            _dt_str(run.finished_at),
            run.status,
            run.collected,
            run.processed,
            run.retried,
            run.expired,
            run.execution_time_ms,
            run.llm_tokens_used,
            run.error,
            run_id,
        ),
    )
    conn.commit()


def get_recent_runs(conn: sqlite3.Connection, limit: int = 10) -> list[dict]:
    """Fetch recent pipeline runs for stats display."""
    rows = conn.execute(
        "SELECT * FROM pipeline_runs ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(row) for row in rows]
