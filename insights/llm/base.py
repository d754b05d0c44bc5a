"""Abstract base class for LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class LLMResponseError(ValueError):
    """The provider answered, but with nothing usable (no candidate / empty text)."""


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class BaseLLMProvider(ABC):
    """Base class for LLM providers."""

    json_mode: bool = False

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        max_retries: int = 3,
        timeout: int = 120,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.active_model = default_model
        self.max_retries = max_retries
        self.timeout = timeout

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        """Send a single-turn request and return the response."""
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable provider name."""
        ...

    def _track_usage(self, response: LLMResponse) -> None:
        """Report token usage to the active pipeline run, if any."""
        # Import here to avoid circular import
        from insights.pipeline import get_usage_tracker

        tracker = get_usage_tracker()
        if tracker and (response.input_tokens or response.output_tokens):
            tracker.track(response.input_tokens, response.output_tokens)
