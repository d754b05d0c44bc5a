"""Load and validate configuration from YAML with env var substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

DEFAULT_KEYWORDS = [
    "artificial intelligence",
    "computer vision",
    "machine learning",
    "deep learning",
    "automation",
]

NEWSDATA_BASE_URL = "https://newsdata.io/api/1/news"

# Values shipped in example configs that must never reach a provider
PLACEHOLDER_KEYS = {"", "your_newsdata_key_here", "your_gemini_key_here", "changeme"}

DEFAULT_SCHEDULES = {
    "full_pipeline": "0 8 * * *",
    "collect": "0 */6 * * *",
    "process": "0 */2 * * *",
    "cleanup": "0 3 * * *",
    "light_cleanup": "0 */12 * * *",
    "health_check": "0 * * * *",
}


def _load_dotenv(path: str | Path = ".env") -> None:
    """Load a .env file into os.environ (without overwriting existing vars)."""
    env_path = Path(path)
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and key not in os.environ:
                os.environ[key] = value


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} patterns in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}")
        match = pattern.search(value)
        if match:
            if match.group(0) == value:
                return os.environ.get(match.group(1), "")
            return pattern.sub(lambda m: os.environ.get(m.group(1), ""), value)
        return value
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(path: str | Path = "config.yaml") -> dict[str, Any]:
    """Load config from YAML file and resolve environment variables."""
    _load_dotenv()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return _resolve_env_vars(raw)


def is_valid_key(api_key: str | None) -> bool:
    """True when an API key is set and is not an example placeholder."""
    return api_key is not None and api_key.strip() not in PLACEHOLDER_KEYS


def get_active_sources(config: dict) -> list[str]:
    """Return list of enabled source names."""
    sources = config.get("sources", {"newsdata": {"enabled": True}})
    return [name for name, cfg in sources.items() if (cfg or {}).get("enabled", False)]


def get_keywords(config: dict) -> list[str]:
    """Return the search keywords the collector iterates over."""
    return config.get("collector", {}).get("keywords") or list(DEFAULT_KEYWORDS)


def get_keyword_delay(config: dict) -> float:
    return float(config.get("collector", {}).get("keyword_delay_seconds", 1.0))


def get_newsdata_config(config: dict) -> dict:
    """NewsData.io connection settings with defaults filled in."""
    cfg = config.get("sources", {}).get("newsdata", {}) or {}
    return {
        "enabled": cfg.get("enabled", True),
        "api_key": cfg.get("api_key", ""),
        "base_url": cfg.get("base_url", NEWSDATA_BASE_URL),
        "language": cfg.get("language", "en"),
        "country": cfg.get("country", "us"),
        "timeout": cfg.get("timeout", 30),
        "max_retries": cfg.get("max_retries", 2),
    }


def get_llm_task_config(config: dict, task: str) -> dict:
    """Get provider name and model for a given LLM task."""
    tasks = config.get("llm", {}).get("tasks", {})
    task_cfg = tasks.get(task, {})
    provider_name = task_cfg.get("provider", "gemini")
    model_override = task_cfg.get("model")

    providers = config.get("llm", {}).get("providers", {})
    provider_cfg = providers.get(provider_name, {})

    return {
        "provider_name": provider_name,
        "provider_type": provider_cfg.get("type", "gemini"),
        "api_key": provider_cfg.get("api_key", ""),
        "base_url": provider_cfg.get("base_url", ""),
        "model": model_override or provider_cfg.get("default_model", ""),
        "max_retries": provider_cfg.get("max_retries", 3),
        "timeout": provider_cfg.get("timeout", 120),
        "json_mode": provider_cfg.get("json_mode", False),
    }


def get_pipeline_settings(config: dict) -> dict:
    """Orchestrator knobs: rate-limit pause, expiry age, startup reconciliation."""
    cfg = config.get("pipeline", {})
    return {
        "item_delay_seconds": float(cfg.get("item_delay_seconds", 2.0)),
        "expire_after_days": int(cfg.get("expire_after_days", 7)),
        "reset_stale_on_startup": bool(cfg.get("reset_stale_on_startup", True)),
    }


def get_retention_config(config: dict) -> dict:
    """Age thresholds (days) used by the cleanup jobs."""
    cfg = config.get("retention", {})
    return {
        "articles_days": int(cfg.get("articles_days", 30)),
        "failed_days": int(cfg.get("failed_days", 7)),
        "light_failed_days": int(cfg.get("light_failed_days", 3)),
        "insights_days": int(cfg.get("insights_days", 60)),
        "pending_days": int(cfg.get("pending_days", 3)),
    }


def get_schedule_config(config: dict) -> dict:
    """Scheduler switch plus one crontab expression per job."""
    cfg = config.get("scheduler", {})
    jobs = dict(DEFAULT_SCHEDULES)
    jobs.update(cfg.get("jobs", {}) or {})
    return {
        "enabled": cfg.get("enabled", True),
        "timezone": cfg.get("timezone"),
        "jobs": jobs,
    }


def get_api_config(config: dict) -> dict:
    cfg = config.get("api", {})
    return {"host": cfg.get("host", "0.0.0.0"), "port": int(cfg.get("port", 8000))}


def get_db_path(config: dict) -> str:
    """Get database path from config."""
    return config.get("database", {}).get("path", "data/insights.db")
