#!/usr/bin/env python3
"""Provider client: one logical "ask the model" call with retry/backoff.

Retry policy is classification-driven:
  - network failures, HTTP 5xx and HTTP 429 are retried
  - anything else fails immediately

A 429 extends a process-wide cooldown watermark (the point in time before
which no new provider request is issued). Every call, including unrelated
concurrent ones, waits the watermark out before sending. Other retryable
failures back off linearly: retry_delay_seconds * attempt.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping, Optional

from tools.llm.provider import LLMProvider, LLMRequest, ProviderCallError
from tools.proposal.errors import ProviderFailureError, ProviderRateLimitError

logger = logging.getLogger("ecoproposal.llm.client")


class CooldownWatermark:
    """Shared rate-limit window. Updates only ever push the watermark later."""

    def __init__(self):
        self._lock = threading.Lock()
        self._until = 0.0

    def extend(self, until: float) -> float:
        with self._lock:
            self._until = max(self._until, until)
            return self._until

    def remaining(self, now: float) -> float:
        with self._lock:
            return max(0.0, self._until - now)

    def reset(self) -> None:
        with self._lock:
            self._until = 0.0


# Process-wide watermark shared by every ProviderClient unless one is injected.
SHARED_COOLDOWN = CooldownWatermark()


# ---------------------------------------------------------------------------
# Retry hint parsing
# ---------------------------------------------------------------------------

_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_BARE_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")
_MESSAGE_HINTS = [
    re.compile(r"(?:try again|retry)\s+(?:in|after)\s+(\d[\d.hms]*)", re.IGNORECASE),
    re.compile(r"retry[_-]?delay\"?\s*[:=]\s*\"?(\d+(?:\.\d+)?s?)", re.IGNORECASE),
]
_RESET_HEADERS = ("x-ratelimit-reset-requests", "x-ratelimit-reset-tokens")


def parse_duration(text: str) -> Optional[float]:
    """Parse '7.66s', '1m30.5s', '250ms', '2h' or a bare number of seconds."""
    if text is None:
        return None
    text = str(text).strip()
    bare = _BARE_NUMBER.match(text)
    if bare:
        return float(bare.group(1))
    tokens = _DURATION_TOKEN.findall(text)
    if not tokens:
        return None
    scale = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}
    return sum(float(num) * scale[unit] for num, unit in tokens)


def wait_from_headers(headers: Mapping[str, str]) -> Optional[float]:
    """Largest wait (seconds) announced by rate-limit headers, if any."""
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    waits = []

    if "retry-after-ms" in headers:
        ms = parse_duration(headers["retry-after-ms"])
        if ms is not None:
            waits.append(ms / 1000.0)

    if "retry-after" in headers:
        value = headers["retry-after"]
        seconds = parse_duration(value)
        if seconds is None:
            try:
                when = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                if when.tzinfo is None:
                    when = when.replace(tzinfo=timezone.utc)
                seconds = max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
        if seconds is not None:
            waits.append(seconds)

    for name in _RESET_HEADERS:
        if name in headers:
            seconds = parse_duration(headers[name])
            if seconds is not None:
                waits.append(seconds)

    return max(waits) if waits else None


def wait_from_message(message: str) -> Optional[float]:
    """Wait hint embedded in an error message ('Please try again in 5.2s')."""
    for pattern in _MESSAGE_HINTS:
        match = pattern.search(message or "")
        if match:
            seconds = parse_duration(match.group(1).rstrip("."))
            if seconds is not None:
                return seconds
    return None


def rate_limit_wait(error: ProviderCallError, min_cooldown: float) -> float:
    """Header hint, else message hint, else the minimum cooldown (floored at it)."""
    hint = wait_from_headers(error.headers)
    if hint is None:
        hint = wait_from_message(error.message)
    if hint is None:
        return min_cooldown
    return max(hint, min_cooldown)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderResult:
    raw_text: str
    model_id: str
    provider: str = ""


class ProviderClient:
    """Wraps one LLMProvider/model with the retry and cooldown policy."""

    def __init__(self, provider: LLMProvider, model_id: str,
                 model_config: Optional[dict] = None, *,
                 max_attempts: int = 3,
                 retry_delay_seconds: float = 1.0,
                 min_cooldown_seconds: float = 5.0,
                 cooldown: Optional[CooldownWatermark] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.provider = provider
        self.model_id = model_id
        self.model_config = model_config or {}
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.min_cooldown_seconds = min_cooldown_seconds
        self.cooldown = cooldown if cooldown is not None else SHARED_COOLDOWN
        self._sleep = sleep
        self._clock = clock

    @property
    def label(self) -> str:
        return self.provider.provider_name

    def _respect_cooldown(self) -> None:
        while True:
            wait = self.cooldown.remaining(self._clock())
            if wait <= 0:
                return
            logger.info("Provider %s cooling down for %.2fs", self.label, wait)
            self._sleep(wait)

    def _build_request(self, system_prompt: str, user_prompt: str) -> LLMRequest:
        return LLMRequest(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            system_prompt=system_prompt,
            model=self.model_id,
            max_tokens=int(self.model_config.get("max_tokens", 2048)),
            temperature=float(self.model_config.get("temperature", 0.3)),
        )

    def call(self, system_prompt: str, user_prompt: str) -> ProviderResult:
        """Ask the model once, recovering from transient failures."""
        request = self._build_request(system_prompt, user_prompt)
        last_error = None
        last_wait = 0.0

        for attempt in range(1, self.max_attempts + 1):
            self._respect_cooldown()
            try:
                response = self.provider.invoke(request, self.model_id, self.model_config)
            except ProviderCallError as exc:
                last_error = exc
            except Exception as exc:
                logger.error("Provider %s raised unexpectedly: %s", self.label, exc)
                raise ProviderFailureError(
                    f"{self.label} invocation failed: {exc}", provider=self.label) from exc
            else:
                logger.info("Provider %s answered in %dms (tokens in=%d out=%d, stop=%s)",
                            self.label, response.duration_ms, response.input_tokens,
                            response.output_tokens, response.stop_reason or "-")
                return ProviderResult(
                    raw_text=response.content,
                    model_id=response.model_id or self.model_id,
                    provider=response.provider or self.label,
                )

            if not last_error.is_retryable:
                logger.error("Provider %s failed (not retryable): %s",
                             self.label, last_error.message)
                raise ProviderFailureError(
                    f"{self.label} API error: {last_error.message}",
                    provider=self.label) from last_error

            if last_error.is_rate_limit:
                last_wait = rate_limit_wait(last_error, self.min_cooldown_seconds)
                self.cooldown.extend(self._clock() + last_wait)
                logger.warning("Provider %s rate limited (attempt %d/%d); cooldown %.2fs",
                               self.label, attempt, self.max_attempts, last_wait)
                continue

            last_wait = 0.0
            if attempt < self.max_attempts:
                delay = self.retry_delay_seconds * attempt
                logger.warning("Provider %s attempt %d/%d failed: %s; retrying in %.2fs",
                               self.label, attempt, self.max_attempts,
                               last_error.message, delay)
                self._sleep(delay)

        if last_error.is_rate_limit:
            wait = max(last_wait, self.cooldown.remaining(self._clock()))
            logger.error("Provider %s still rate limited after %d attempts",
                         self.label, self.max_attempts)
            raise ProviderRateLimitError(
                f"{self.label} rate limit exceeded after {self.max_attempts} attempts; "
                f"retry after {wait:.1f}s",
                provider=self.label,
                retry_after_seconds=wait,
            ) from last_error

        logger.error("Provider %s failed after %d attempts: %s",
                     self.label, self.max_attempts, last_error.message)
        raise ProviderFailureError(
            f"{self.label} failed after {self.max_attempts} attempts: {last_error.message}",
            provider=self.label,
        ) from last_error
