#!/usr/bin/env python3
"""Vendor-agnostic LLM provider base classes and data types.

Defines the universal request/response format, the abstract provider
interface, and the single error type providers raise so the retrying
client can classify failures without knowing the vendor SDK.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class LLMRequest:
    """Vendor-agnostic LLM invocation request."""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 2048
    temperature: float = 0.3


@dataclass
class LLMResponse:
    """Vendor-agnostic LLM invocation response."""
    content: str = ""
    model_id: str = ""
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    stop_reason: str = ""


class ProviderCallError(Exception):
    """One failed physical call to a provider.

    status_code is None for network-level failures (timeout, DNS,
    connection reset). headers/message carry any rate-limit hint.
    ``retryable`` overrides the status-based classification, e.g. for an
    empty completion that arrived with HTTP 200.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 headers: Optional[Mapping[str, str]] = None,
                 provider: str = "", retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.provider = provider
        self._retryable = retryable

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429

    @property
    def is_retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""

    @abstractmethod
    def invoke(self, request: LLMRequest, model_id: str, model_config: dict) -> LLMResponse:
        """Invoke the LLM synchronously. Raises ProviderCallError on failure."""
