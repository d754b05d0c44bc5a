"""Google Gemini (generativelanguage API) provider."""

from __future__ import annotations

import logging

import httpx

from insights.llm import register_provider
from insights.llm.base import BaseLLMProvider, LLMResponse, LLMResponseError
from insights.retry import retry_async

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MODEL = "gemini-1.5-pro"


@register_provider("gemini")
class GeminiProvider(BaseLLMProvider):
    """Provider for the Gemini ``generateContent`` endpoint."""

    @property
    def provider_name(self) -> str:
        return "gemini"

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        model = model or self.active_model or self.default_model or GEMINI_DEFAULT_MODEL
        response = await retry_async(
            self._do_complete, prompt, model, temperature, max_tokens,
            max_retries=self.max_retries,
        )
        self._track_usage(response)
        return response

    async def _do_complete(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        base_url = (self.base_url or GEMINI_BASE_URL).rstrip("/")
        url = f"{base_url}/models/{model}:generateContent"

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        if self.json_mode:
            payload["generationConfig"]["responseMimeType"] = "application/json"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, params={"key": self.api_key}, json=payload)
            resp.raise_for_status()
            data = resp.json()

        text = extract_candidate_text(data)
        if not text:
            raise LLMResponseError("Gemini returned no usable candidate")

        usage = data.get("usageMetadata") or {}
        return LLMResponse(
            text=text,
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
            model=model,
        )


def extract_candidate_text(data: dict) -> str:
    """Concatenate the text parts of the first candidate ('' if there is none)."""
    candidates = data.get("candidates") or []
    if not candidates or not candidates[0]:
        return ""
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
