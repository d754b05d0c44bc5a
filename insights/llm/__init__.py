"""LLM provider registry and task routing."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from insights.llm.base import BaseLLMProvider

PROVIDERS: dict[str, type[BaseLLMProvider]] = {}

_provider_instances: dict[str, BaseLLMProvider] = {}


def register_provider(name: str):
    """Decorator to register an LLM provider."""

    def decorator(cls):
        PROVIDERS[name] = cls
        return cls

    return decorator


def get_provider_for_task(config: dict, task: str) -> BaseLLMProvider:
    """Get the configured LLM provider instance for a given task.

    Instances are cached per provider name; the cache key includes the API key
    and base URL so a reloaded config never reuses stale credentials.
    """
    from insights.config import get_llm_task_config

    task_cfg = get_llm_task_config(config, task)
    provider_type = task_cfg["provider_type"]
    model = task_cfg["model"]

    cache_key = f"{task_cfg['provider_name']}|{task_cfg['base_url']}|{task_cfg['api_key']}"
    if cache_key not in _provider_instances:
        if provider_type not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider type: {provider_type}")
        cls = PROVIDERS[provider_type]
        provider = cls(
            api_key=task_cfg["api_key"],
            base_url=task_cfg["base_url"],
            default_model=model,
            max_retries=task_cfg["max_retries"],
            timeout=task_cfg["timeout"],
        )
        provider.json_mode = task_cfg["json_mode"]
        _provider_instances[cache_key] = provider

    provider = _provider_instances[cache_key]
    provider.active_model = model or provider.default_model
    return provider


def clear_provider_cache() -> None:
    _provider_instances.clear()


# Import implementations to trigger registration
from insights.llm.gemini import GeminiProvider  # noqa: E402, F401
from insights.llm.openai_compat import OpenAICompatibleProvider  # noqa: E402, F401
