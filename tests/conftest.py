"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from insights.config import load_config
from insights.db import get_connection, init_db
from insights.llm import clear_provider_cache
from insights.models import Article


@pytest.fixture
def sample_config(tmp_path):
    """Minimal config for testing (no real API keys, no delays)."""
    config_text = """
collector:
  keywords: ["artificial intelligence"]
  keyword_delay_seconds: 0

sources:
  newsdata:
    enabled: true
    api_key: "news-key"
    base_url: "http://localhost:9998/api/1/news"
    max_retries: 0

llm:
  providers:
    mock:
      type: "gemini"
      api_key: "test-key"
      base_url: "http://localhost:9999/v1beta"
      default_model: "gemini-1.5-pro"
      max_retries: 0
  tasks:
    classify: { provider: "mock" }

pipeline:
  item_delay_seconds: 0
  expire_after_days: 7
  reset_stale_on_startup: true

scheduler:
  enabled: false

database:
  path: "DB_PATH_PLACEHOLDER"
"""
    db_path = str(tmp_path / "test.db")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(config_text.replace("DB_PATH_PLACEHOLDER", db_path))
    return load_config(str(cfg_path))


@pytest.fixture
def db_conn(sample_config):
    """Initialized test database connection."""
    db_path = sample_config["database"]["path"]
    init_db(db_path)
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _fresh_providers():
    """Provider instances are cached process-wide; start every test clean."""
    clear_provider_cache()
    yield
    clear_provider_cache()


@pytest.fixture
def sample_articles():
    """List of sample articles for testing."""
    return [
        Article(
            url="https://example.com/vision-sensor",
            title="Startup Launches Edge Vision Sensor",
            description="A new camera module runs object detection on-device "
            "at 30 frames per second.",
            source_name="Tech News",
            published_at=datetime(2024, 5, 2, 9, 0),
            keyword="computer vision",
        ),
        Article(
            url="https://example.com/chip-alliance",
            title="Chipmakers Form AI Inference Alliance",
            description="Three semiconductor firms announced a joint standard "
            "for low-power inference accelerators.",
            source_name="Industry Daily",
            published_at=datetime(2024, 5, 1, 14, 30),
            keyword="artificial intelligence",
        ),
        Article(
            url="https://example.com/local-bakery",
            title="Local Bakery Wins Regional Prize",
            description="The family-run bakery was recognised for its sourdough.",
            source_name="City Paper",
            published_at=datetime(2024, 4, 30, 7, 15),
            keyword="automation",
        ),
    ]


def _gemini_reply(text: str, prompt_tokens: int = 120, output_tokens: int = 80) -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}],
        "usageMetadata": {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": output_tokens,
        },
    }


def _classification(**overrides) -> str:
    data = {
        "relevant": True,
        "reason": "Launch of an AI product",
        "category": "PRODUCT",
        "suggested_action": "Evaluate integration",
        "confidence": 0.9,
        "summary": "New on-device vision sensor.",
        "keywords": "computer vision, edge AI",
    }
    data.update(overrides)
    return json.dumps(data)


def _json_response(data):
    resp = MagicMock()
    resp.json.return_value = data
    resp.raise_for_status = MagicMock()
    return resp


@pytest.fixture
def make_http_client():
    """Build an AsyncMock standing in for ``httpx.AsyncClient()``.

    ``get`` answers with ``get_json`` (NewsData) and ``post`` with
    ``post_json`` (the LLM). Either may be a list to answer successive calls,
    or an exception instance to raise.
    """

    def _side_effect(value):
        values = value if isinstance(value, list) else [value]
        responses = [v if isinstance(v, Exception) else _json_response(v) for v in values]
        if isinstance(value, list):
            return responses
        return lambda *args, **kwargs: _raise_or_return(responses[0])

    def _factory(get_json=None, post_json=None):
        client = AsyncMock()
        if get_json is not None:
            client.get.side_effect = _side_effect(get_json)
        if post_json is not None:
            client.post.side_effect = _side_effect(post_json)
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        return client

    return _factory


def _raise_or_return(value):
    if isinstance(value, Exception):
        raise value
    return value


@pytest.fixture
def gemini_reply():
    """Factory for the body of a successful generateContent call."""
    return _gemini_reply


@pytest.fixture
def classification():
    """Factory for the JSON text of a well-formed classifier reply."""
    return _classification
