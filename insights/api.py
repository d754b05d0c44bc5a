"""HTTP read API over the insight store, plus manual pipeline triggers."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, time as dt_time
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from insights.config import get_db_path, get_pipeline_settings, get_schedule_config
from insights.db import get_connection, init_db
from insights.models import Category, Insight
from insights.pipeline import collect_only, reconcile_stale, run_pipeline
from insights.query import Page, daily_summary, list_insights, system_stats
from insights.scheduler import PipelineScheduler

logger = logging.getLogger(__name__)


def insight_to_dict(insight: Insight) -> dict:
    data = {
        "id": insight.id,
        "article_id": insight.article_id,
        "is_relevant": insight.is_relevant,
        "category": insight.category.value if insight.category else None,
        "category_label": insight.category.display_name if insight.category else None,
        "category_description": insight.category.description if insight.category else None,
        "relevance_reason": insight.relevance_reason,
        "suggested_action": insight.suggested_action,
        "confidence_score": insight.confidence_score,
        "confidence_level": insight.confidence_level,
        "executive_summary": insight.executive_summary,
        "extracted_keywords": insight.extracted_keywords,
        "ai_model": insight.ai_model,
        "processing_time_ms": insight.processing_time_ms,
        "processed_at": insight.processed_at.isoformat() if insight.processed_at else None,
    }
    if insight.article is not None:
        data["article"] = {
            "title": insight.article.title,
            "source": insight.article.source_name,
            "url": insight.article.url,
        }
    return data


def page_to_dict(page: Page) -> dict:
    return {
        "content": [insight_to_dict(i) for i in page.items],
        "page": page.page,
        "size": page.size,
        "total_elements": page.total_elements,
        "total_pages": page.total_pages,
    }


def _parse_category(token: str | None) -> Category | None:
    if token is None:
        return None
    category = Category.from_name(token)
    if category is None:
        raise HTTPException(400, f"Unknown category: {token}")
    return category


def create_app(config: dict, enable_scheduler: bool | None = None) -> FastAPI:
    """Build the API; the scheduler follows ``scheduler.enabled`` unless overridden."""
    db_path = get_db_path(config)
    if enable_scheduler is None:
        enable_scheduler = get_schedule_config(config)["enabled"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(db_path)
        if get_pipeline_settings(config)["reset_stale_on_startup"]:
            conn = get_connection(db_path)
            try:
                reconcile_stale(conn)
            finally:
                conn.close()

        scheduler = None
        if enable_scheduler:
            scheduler = PipelineScheduler(config)
            scheduler.start()
        app.state.scheduler = scheduler
        yield
        if scheduler:
            scheduler.shutdown()

    def get_conn():
        conn = get_connection(db_path)
        try:
            yield conn
        finally:
            conn.close()

    router = APIRouter(prefix="/api/insights")

    @router.get("")
    def get_insights(
        category: Optional[str] = None,
        relevant: Optional[bool] = None,
        page: int = 0,
        size: int = 20,
        sort: str = "processedAt,desc",
        conn=Depends(get_conn),
    ):
        logger.info(
            "Listing insights - category: %s, relevant: %s, page: %d, size: %d",
            category, relevant, page, size,
        )
        result = list_insights(
            conn, _parse_category(category), relevant, page, size, sort,
        )
        return page_to_dict(result)

    @router.get("/relevant")
    def get_relevant_insights(page: int = 0, size: int = 20, conn=Depends(get_conn)):
        return page_to_dict(list_insights(conn, relevant=True, page=page, size=size))

    @router.get("/category/{category}")
    def get_insights_by_category(
        category: str, page: int = 0, size: int = 20, conn=Depends(get_conn),
    ):
        result = list_insights(conn, category=_parse_category(category), page=page, size=size)
        return page_to_dict(result)

    @router.get("/summary/daily")
    def get_daily_summary(conn=Depends(get_conn)):
        today = datetime.now().date()
        start = datetime.combine(today, dt_time.min)
        end = datetime.combine(today, dt_time.max)
        return daily_summary(conn, start, end)

    @router.post("/collect")
    async def trigger_collect():
        logger.info("Manual collection requested")
        collected = await collect_only(config)
        return {"status": "success", "collected": collected}

    @router.post("/pipeline")
    async def trigger_pipeline():
        logger.info("Manual pipeline run requested")
        run = await run_pipeline(config)
        return run.to_dict()

    @router.get("/stats", response_class=PlainTextResponse)
    def get_stats(conn=Depends(get_conn)):
        return system_stats(conn)

    app = FastAPI(title="News Insights", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=512)
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "ts": int(time.time())}

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app
