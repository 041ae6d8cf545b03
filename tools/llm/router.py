#!/usr/bin/env python3
"""Config-driven LLM router for the proposal generator.

Reads args/llm_config.yaml and resolves a function name (e.g.
"proposal_generation") to a provider + model via its routing chain.
The first chain entry whose provider can be constructed wins; a provider
is skipped when its API key environment variable is unset.
"""

import logging
import os
from typing import Dict, Optional, Tuple

from tools.config import load_llm_config, retry_settings
from tools.llm.client import ProviderClient
from tools.llm.openai_provider import OpenAICompatibleProvider
from tools.llm.provider import LLMProvider
from tools.proposal.errors import PreconditionError

logger = logging.getLogger("ecoproposal.llm.router")


class LLMRouter:
    """Maps pipeline functions to configured LLM providers."""

    def __init__(self, config: Optional[dict] = None, config_path=None):
        self._config = config if config is not None else load_llm_config(config_path)
        self._providers: Dict[str, LLMProvider] = {}

    @property
    def retry(self) -> dict:
        return retry_settings(self._config)

    def _get_provider(self, provider_name: str) -> Optional[LLMProvider]:
        """Get or create a provider instance by name."""
        if provider_name in self._providers:
            return self._providers[provider_name]

        provider_cfg = self._config.get("providers", {}).get(provider_name, {})
        if not provider_cfg:
            return None

        ptype = provider_cfg.get("type", "")
        timeout = self.retry["request_timeout_seconds"]
        instance = None

        if ptype in ("openai", "openai_compatible"):
            api_key = provider_cfg.get("api_key", "")
            if not api_key:
                api_key_env = provider_cfg.get("api_key_env", "")
                api_key = os.environ.get(api_key_env, "") if api_key_env else ""
            if not api_key:
                logger.info("Skipping provider '%s': no API key configured", provider_name)
                return None
            instance = OpenAICompatibleProvider(
                api_key=api_key,
                base_url=provider_cfg.get("base_url", "https://api.openai.com/v1"),
                provider_label=provider_name,
                timeout=timeout,
            )
        elif ptype == "ollama":
            instance = OpenAICompatibleProvider(
                api_key="ollama",
                base_url=provider_cfg.get("base_url", "http://localhost:11434/v1"),
                provider_label=provider_name,
                timeout=timeout,
            )
        else:
            logger.warning("Unknown provider type '%s' for '%s'", ptype, provider_name)

        if instance:
            self._providers[provider_name] = instance
        return instance

    def _get_model_config(self, model_name: str) -> dict:
        return self._config.get("models", {}).get(model_name, {})

    def get_provider_for_function(self, function: str) -> Tuple[Optional[LLMProvider], str, dict]:
        """Resolve function to (provider, model_id, model_config)."""
        routing = self._config.get("routing", {})
        route = routing.get(function, routing.get("default", {}))

        for model_name in route.get("chain", []):
            model_cfg = self._get_model_config(model_name)
            if not model_cfg:
                continue
            provider = self._get_provider(model_cfg.get("provider", ""))
            if provider:
                return provider, model_cfg.get("model_id", ""), model_cfg

        return None, "", {}

    def build_client(self, function: str = "proposal_generation", **overrides) -> ProviderClient:
        """Return a ProviderClient for ``function`` using the retry settings."""
        provider, model_id, model_cfg = self.get_provider_for_function(function)
        if provider is None:
            raise PreconditionError(
                f"No LLM provider configured for function '{function}'. "
                "Check args/llm_config.yaml and provider API keys.")
        retry = self.retry
        kwargs = {
            "max_attempts": retry["max_attempts"],
            "retry_delay_seconds": retry["retry_delay_seconds"],
            "min_cooldown_seconds": retry["rate_limit_min_cooldown_seconds"],
        }
        kwargs.update(overrides)
        logger.info("Routing %s to %s/%s", function, provider.provider_name, model_id)
        return ProviderClient(provider, model_id, model_cfg, **kwargs)


def build_provider_client(function: str = "proposal_generation", config_path=None) -> ProviderClient:
    return LLMRouter(config_path=config_path).build_client(function)
