"""Relevance classification of a single article through the configured LLM."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import datetime

import httpx

from insights.config import get_llm_task_config, is_valid_key
from insights.db import complete_article
from insights.llm import get_provider_for_task
from insights.llm.base import LLMResponseError
from insights.llm.gemini import GEMINI_DEFAULT_MODEL
from insights.llm.prompts import CLASSIFY_ARTICLE
from insights.models import AnalysisResult, Article, Category, Insight

logger = logging.getLogger(__name__)

TASK = "classify"
ERROR_ACTION = "check AI configuration"

# Reply keys, each with the legacy Portuguese spelling still seen in replies
FIELD_ALIASES = {
    "relevant": ("relevant", "relevante"),
    "reason": ("reason", "motivo"),
    "category": ("category", "categoria"),
    "suggested_action": ("suggested_action", "acaoSugerida"),
    "confidence": ("confidence", "scoreConfianca"),
    "summary": ("summary", "resumoExecutivo"),
    "keywords": ("keywords", "palavrasChave"),
}


class ReplyParseError(ValueError):
    """The model reply did not contain a parseable JSON object."""


def build_prompt(article: Article) -> str:
    return CLASSIFY_ARTICLE.format(
        title=article.title,
        description=article.description,
        source=article.source_name,
        url=article.url,
    )


def error_result(message: str) -> AnalysisResult:
    """Degraded result used for every transport or parsing failure."""
    return AnalysisResult(
        relevant=False,
        reason=f"Analysis error: {message}",
        category=None,
        suggested_action=ERROR_ACTION,
        confidence=0.0,
        summary="Analysis error",
        keywords="",
        error=True,
    )


def extract_json(text: str | None) -> dict:
    """Parse the substring between the first '{' and the last '}'."""
    if not text or not text.strip():
        raise ReplyParseError("empty reply")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        raise ReplyParseError("no JSON object in reply")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ReplyParseError(f"malformed JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ReplyParseError("reply JSON is not an object")
    return data


def _field(data: dict, name: str):
    for key in FIELD_ALIASES[name]:
        if key in data:
            return data[key]
    return None


def _as_bool(value) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "sim", "1"):
            return True
        if lowered in ("false", "no", "nao", "não", "0"):
            return False
    return None


def _as_confidence(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(score, 0.0), 1.0)


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def parse_reply(text: str | None) -> AnalysisResult:
    """Turn a model reply into an AnalysisResult; unparseable replies become error results."""
    try:
        data = extract_json(text)
    except ReplyParseError as exc:
        logger.error("Could not parse classifier reply: %s", exc)
        return error_result("could not parse AI response")

    raw_category = _field(data, "category")
    category = Category.from_name(raw_category) if raw_category is not None else None
    if raw_category is not None and category is None:
        logger.warning("Unknown category from classifier: %r", raw_category)

    return AnalysisResult(
        relevant=_as_bool(_field(data, "relevant")),
        reason=_as_text(_field(data, "reason")),
        category=category,
        suggested_action=_as_text(_field(data, "suggested_action")),
        confidence=_as_confidence(_field(data, "confidence")),
        summary=_as_text(_field(data, "summary")),
        keywords=_as_text(_field(data, "keywords")),
    )


async def classify(config: dict, article: Article) -> AnalysisResult:
    """Classify one article. Never raises for provider or parsing failures."""
    logger.info("Classifying article %s - %s", article.id, article.short_title())
    started = time.monotonic()

    task_cfg = get_llm_task_config(config, TASK)
    if not is_valid_key(task_cfg["api_key"]):
        logger.error("LLM API key for task '%s' is not configured", TASK)
        result = error_result("invalid configuration")
    else:
        result = await _classify(config, article)

    result.processing_time_ms = int((time.monotonic() - started) * 1000)
    result.completed_at = datetime.now()

    if result.is_successful:
        logger.info(
            "Article %s classified - relevant: %s, category: %s",
            article.id, result.relevant, result.category.value,
        )
    else:
        logger.warning("Incomplete analysis for article %s - %s", article.id, result.reason)
    return result


async def _classify(config: dict, article: Article) -> AnalysisResult:
    try:
        provider = get_provider_for_task(config, TASK)
        response = await provider.complete(build_prompt(article))
    except httpx.HTTPStatusError as exc:
        logger.error(
            "HTTP error classifying article %s: %d - %s",
            article.id, exc.response.status_code, exc.response.text[:200],
        )
        return error_result(f"HTTP error {exc.response.status_code}")
    except httpx.HTTPError as exc:
        logger.error("Transport error classifying article %s: %s", article.id, exc)
        return error_result(f"transport error: {type(exc).__name__}")
    except LLMResponseError as exc:
        logger.warning("Invalid AI response for article %s: %s", article.id, exc)
        return error_result("invalid AI response")
    except Exception as exc:
        logger.exception("Unexpected error classifying article %s", article.id)
        return error_result(f"unexpected error: {exc}")

    return parse_reply(response.text)


def persist(
    conn: sqlite3.Connection,
    article: Article,
    result: AnalysisResult,
    ai_model: str,
) -> Insight:
    """Store the Insight for a successfully classified article and mark it COMPLETED."""
    insight = Insight(
        article_id=article.id,
        is_relevant=result.relevant,
        category=result.category,
        relevance_reason=result.reason,
        suggested_action=result.suggested_action,
        confidence_score=result.confidence,
        executive_summary=result.summary,
        extracted_keywords=result.keywords,
        ai_model=ai_model,
        processing_time_ms=result.processing_time_ms,
        processed_at=result.completed_at,
        article=article,
    )
    insight.id = complete_article(conn, article, insight)
    logger.info(
        "Insight %d saved for article %s - relevant: %s, category: %s",
        insight.id, article.id, insight.is_relevant,
        insight.category.value if insight.category else None,
    )
    return insight


def model_name(config: dict) -> str:
    """Name recorded on every Insight produced with the current config."""
    task_cfg = get_llm_task_config(config, TASK)
    if task_cfg["model"]:
        return task_cfg["model"]
    if task_cfg["provider_type"] == "gemini":
        return GEMINI_DEFAULT_MODEL
    return task_cfg["provider_name"]
