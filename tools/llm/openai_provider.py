#!/usr/bin/env python3
"""OpenAI-compatible LLM provider.

Supports any OpenAI-compatible chat completions API: Groq, OpenAI,
Ollama, vLLM, LM Studio, etc. The SDK's own retries are disabled so the
ProviderClient owns the retry/backoff policy.
"""

import logging
import time

import openai
from openai import OpenAI

from tools.llm.provider import LLMProvider, LLMRequest, LLMResponse, ProviderCallError

logger = logging.getLogger("ecoproposal.llm.openai")


def translate_error(exc: Exception, label: str) -> ProviderCallError:
    """Map an openai SDK exception onto ProviderCallError."""
    if isinstance(exc, openai.APIConnectionError):
        # APITimeoutError is a subclass; both are network-level.
        return ProviderCallError(f"{label} connection failed: {exc}", provider=label)
    if isinstance(exc, openai.APIStatusError):
        response = getattr(exc, "response", None)
        headers = dict(response.headers) if response is not None else {}
        return ProviderCallError(
            f"{label} API error: {exc.message}",
            status_code=exc.status_code,
            headers=headers,
            provider=label,
        )
    return ProviderCallError(f"{label} invocation failed: {exc}",
                             provider=label, retryable=False)


class OpenAICompatibleProvider(LLMProvider):
    """Provider for OpenAI-compatible REST APIs."""

    def __init__(self, api_key: str = "ollama", base_url: str = "http://localhost:11434/v1",
                 provider_label: str = "openai_compatible", timeout: float = 60.0,
                 client=None):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._label = provider_label
        self._client = client or OpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return self._label

    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        start = time.time()

        messages = list(request.messages)
        if request.system_prompt and not any(m.get("role") == "system" for m in messages):
            messages = [{"role": "system", "content": request.system_prompt}] + messages

        try:
            resp = self._client.chat.completions.create(
                model=model_id,
                messages=messages,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except openai.OpenAIError as exc:
            logger.debug("%s SDK call failed: %r", self._label, exc)
            raise translate_error(exc, self._label) from exc

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not content:
            raise ProviderCallError(f"{self._label} returned empty content",
                                    status_code=200, provider=self._label,
                                    retryable=False)

        usage = getattr(resp, "usage", None)
        return LLMResponse(
            content=content,
            model_id=getattr(resp, "model", None) or model_id,
            provider=self._label,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.time() - start) * 1000),
            stop_reason=str(resp.choices[0].finish_reason),
        )
