#!/usr/bin/env python3
"""Provider client tests: retry classification, backoff, shared cooldown, hint parsing.

Everything runs on a fake clock; no test sleeps or touches the network.

Usage:
    pytest tests/test_llm_client.py -v --tb=short
"""

import threading
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from types import SimpleNamespace

import httpx
import openai
import pytest

from tools.llm.client import (
    CooldownWatermark, parse_duration, rate_limit_wait, wait_from_headers, wait_from_message,
)
from tools.llm.provider import LLMRequest, ProviderCallError
from tools.proposal.errors import (
    PROVIDER_FAILURE, PROVIDER_RATE_LIMITED, ProviderFailureError, ProviderRateLimitError,
)


def _rate_limited(retry_after=None, message="Rate limit reached"):
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return ProviderCallError(message, status_code=429, headers=headers)


# =========================================================================
# RETRY CLASSIFICATION AND BACKOFF
# =========================================================================
class TestRetryPolicy:

    def test_success_first_try(self, scripted_provider, make_client, clock):
        provider = scripted_provider(["{}"])
        result = make_client(provider).call("sys", "user")
        assert result.raw_text == "{}"
        assert result.model_id == "fake-model"
        assert result.provider == "fake"
        assert clock.sleeps == []

    def test_server_error_is_retried(self, scripted_provider, make_client, clock):
        provider = scripted_provider([ProviderCallError("boom", status_code=500), "{}"])
        assert make_client(provider).call("sys", "user").raw_text == "{}"
        assert clock.sleeps == [1.0]

    def test_network_errors_back_off_linearly(self, scripted_provider, make_client, clock):
        provider = scripted_provider([
            ProviderCallError("connection reset"),
            ProviderCallError("timed out"),
            "{}",
        ])
        make_client(provider).call("sys", "user")
        assert clock.sleeps == [1.0, 2.0]
        assert len(provider.requests) == 3

    def test_client_error_fails_immediately(self, scripted_provider, make_client, clock):
        provider = scripted_provider([ProviderCallError("bad request", status_code=400), "{}"])
        with pytest.raises(ProviderFailureError) as excinfo:
            make_client(provider).call("sys", "user")
        assert excinfo.value.kind == PROVIDER_FAILURE
        assert len(provider.requests) == 1
        assert clock.sleeps == []

    def test_explicit_non_retryable_fails_immediately(self, scripted_provider, make_client):
        provider = scripted_provider([
            ProviderCallError("empty content", status_code=200, retryable=False), "{}",
        ])
        with pytest.raises(ProviderFailureError):
            make_client(provider).call("sys", "user")
        assert len(provider.requests) == 1

    def test_unexpected_exception_becomes_provider_failure(self, scripted_provider, make_client):
        provider = scripted_provider([RuntimeError("sdk exploded")])
        with pytest.raises(ProviderFailureError) as excinfo:
            make_client(provider).call("sys", "user")
        assert "sdk exploded" in excinfo.value.message

    def test_exhausted_server_errors(self, scripted_provider, make_client, clock):
        provider = scripted_provider([ProviderCallError("down", status_code=503)] * 3)
        with pytest.raises(ProviderFailureError) as excinfo:
            make_client(provider).call("sys", "user")
        assert type(excinfo.value) is ProviderFailureError
        assert excinfo.value.http_status == 502
        assert "after 3 attempts" in excinfo.value.message
        assert clock.sleeps == [1.0, 2.0]

    def test_success_logs_usage(self, make_client, caplog):
        from tools.llm.provider import LLMProvider, LLMResponse

        class _MeteredProvider(LLMProvider):
            provider_name = "metered"

            def invoke(self, request, model_id, model_config):
                return LLMResponse(content="{}", model_id=model_id, provider="metered",
                                   input_tokens=812, output_tokens=164,
                                   duration_ms=950, stop_reason="stop")

        with caplog.at_level("INFO", logger="ecoproposal.llm.client"):
            make_client(_MeteredProvider()).call("sys", "user")
        assert ("Provider metered answered in 950ms (tokens in=812 out=164, stop=stop)"
                in [r.getMessage() for r in caplog.records])

    def test_provider_interface_is_name_and_invoke(self):
        from tools.llm.provider import LLMProvider
        assert LLMProvider.__abstractmethods__ == frozenset({"provider_name", "invoke"})
        assert [m for m in vars(LLMProvider) if not m.startswith("_")] == \
            ["provider_name", "invoke"]

    def test_request_carries_prompts_and_model_settings(self, scripted_provider, make_client):
        provider = scripted_provider(["{}"])
        make_client(provider).call("the system", "the user")
        request = provider.requests[0]
        assert request.messages == [
            {"role": "system", "content": "the system"},
            {"role": "user", "content": "the user"},
        ]
        assert request.max_tokens == 512
        assert request.temperature == 0.2

    def test_max_attempts_must_be_positive(self, scripted_provider, make_client):
        with pytest.raises(ValueError):
            make_client(scripted_provider([]), max_attempts=0)


# =========================================================================
# RATE LIMITS AND THE SHARED COOLDOWN
# =========================================================================
class TestRateLimitCooldown:

    def test_next_attempt_waits_for_retry_after(self, scripted_provider, make_client, clock):
        provider = scripted_provider([_rate_limited("5"), "{}"])
        make_client(provider).call("sys", "user")
        assert provider.call_times == [0.0, 5.0]

    def test_message_hint_used_without_headers(self, scripted_provider, make_client):
        provider = scripted_provider([
            _rate_limited(message="Rate limit reached. Please try again in 7.5s."), "{}",
        ])
        make_client(provider).call("sys", "user")
        assert provider.call_times == [0.0, 7.5]

    def test_minimum_cooldown_without_hint(self, scripted_provider, make_client):
        provider = scripted_provider([_rate_limited(), "{}"])
        make_client(provider, min_cooldown_seconds=2.0).call("sys", "user")
        assert provider.call_times == [0.0, 2.0]

    def test_short_hint_is_floored_at_minimum(self, scripted_provider, make_client):
        provider = scripted_provider([_rate_limited("0.1"), "{}"])
        make_client(provider, min_cooldown_seconds=2.0).call("sys", "user")
        assert provider.call_times == [0.0, 2.0]

    def test_unrelated_client_honours_shared_window(self, scripted_provider, make_client, clock):
        shared = CooldownWatermark()
        first = make_client(scripted_provider([_rate_limited("5")]),
                            cooldown=shared, max_attempts=1)
        with pytest.raises(ProviderRateLimitError):
            first.call("sys", "user")

        other_provider = scripted_provider(["{}"], label="other")
        make_client(other_provider, cooldown=shared).call("sys", "user")
        assert other_provider.call_times == [5.0]

    def test_exhausted_rate_limit_reports_wait(self, scripted_provider, make_client):
        provider = scripted_provider([_rate_limited("5")] * 3)
        with pytest.raises(ProviderRateLimitError) as excinfo:
            make_client(provider).call("sys", "user")
        err = excinfo.value
        assert err.kind == PROVIDER_RATE_LIMITED
        assert err.http_status == 429
        assert err.retry_after_seconds >= 5.0
        assert err.provider == "fake"
        assert provider.call_times == [0.0, 5.0, 10.0]

    def test_rate_limit_is_a_provider_failure(self, scripted_provider, make_client):
        provider = scripted_provider([_rate_limited("1")] * 3)
        with pytest.raises(ProviderFailureError):
            make_client(provider).call("sys", "user")


class TestCooldownWatermark:

    def test_only_moves_later(self):
        wm = CooldownWatermark()
        assert wm.extend(10.0) == 10.0
        assert wm.extend(5.0) == 10.0
        assert wm.remaining(0.0) == 10.0
        assert wm.remaining(12.0) == 0.0

    def test_reset(self):
        wm = CooldownWatermark()
        wm.extend(30.0)
        wm.reset()
        assert wm.remaining(0.0) == 0.0

    def test_concurrent_extends_keep_the_maximum(self):
        wm = CooldownWatermark()
        threads = [threading.Thread(target=wm.extend, args=(float(v),))
                   for v in (3, 97, 12, 99, 40, 1, 64)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert wm.remaining(0.0) == 99.0


# =========================================================================
# HINT PARSING
# =========================================================================
class TestHintParsing:

    @pytest.mark.parametrize("text,expected", [
        ("12", 12.0),
        ("7.66s", 7.66),
        ("1m30.5s", 90.5),
        ("250ms", 0.25),
        ("2h", 7200.0),
    ])
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == pytest.approx(expected)

    def test_parse_duration_unknown(self):
        assert parse_duration("soon") is None
        assert parse_duration(None) is None

    def test_retry_after_ms(self):
        assert wait_from_headers({"Retry-After-Ms": "1500"}) == pytest.approx(1.5)

    def test_largest_header_wins(self):
        headers = {"retry-after": "2", "x-ratelimit-reset-tokens": "1m30.5s",
                   "x-ratelimit-reset-requests": "4s"}
        assert wait_from_headers(headers) == pytest.approx(90.5)

    def test_retry_after_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=60)
        wait = wait_from_headers({"retry-after": format_datetime(when, usegmt=True)})
        assert wait == pytest.approx(60, abs=5)

    def test_no_headers(self):
        assert wait_from_headers({}) is None
        assert wait_from_headers(None) is None

    @pytest.mark.parametrize("message,expected", [
        ("Please try again in 5.2s.", 5.2),
        ("Please retry after 3 seconds", 3.0),
        ('{"retryDelay": "12s"}', 12.0),
        ("Limit reached, try again in 1m2s", 62.0),
    ])
    def test_wait_from_message(self, message, expected):
        assert wait_from_message(message) == pytest.approx(expected)

    def test_message_without_hint(self):
        assert wait_from_message("quota exceeded") is None

    def test_header_preferred_over_message(self):
        err = ProviderCallError("try again in 20s", status_code=429, headers={"retry-after": "3"})
        assert rate_limit_wait(err, 0.5) == 3.0

    def test_fallback_is_minimum(self):
        assert rate_limit_wait(ProviderCallError("slow down", status_code=429), 5.0) == 5.0


# =========================================================================
# OPENAI SDK BOUNDARY
# =========================================================================
_REQ = httpx.Request("POST", "https://api.test/v1/chat/completions")


class _FakeCompletions:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _sdk_client(outcome):
    completions = _FakeCompletions(outcome)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        model="llama-3.3-70b-versatile",
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=7),
    )


class TestOpenAIBoundary:

    def test_rate_limit_error_keeps_status_and_headers(self):
        from tools.llm.openai_provider import translate_error
        exc = openai.RateLimitError(
            "Rate limit reached",
            response=httpx.Response(429, headers={"retry-after": "5"}, request=_REQ),
            body=None,
        )
        err = translate_error(exc, "groq")
        assert err.status_code == 429
        assert err.is_rate_limit and err.is_retryable
        assert err.headers["retry-after"] == "5"
        assert err.provider == "groq"

    def test_server_error_is_retryable(self):
        from tools.llm.openai_provider import translate_error
        exc = openai.InternalServerError(
            "upstream", response=httpx.Response(503, request=_REQ), body=None)
        err = translate_error(exc, "groq")
        assert err.status_code == 503
        assert err.is_retryable and not err.is_rate_limit

    def test_bad_request_is_not_retryable(self):
        from tools.llm.openai_provider import translate_error
        exc = openai.BadRequestError(
            "bad model", response=httpx.Response(400, request=_REQ), body=None)
        assert not translate_error(exc, "groq").is_retryable

    def test_timeout_is_network_failure(self):
        from tools.llm.openai_provider import translate_error
        err = translate_error(openai.APITimeoutError(request=_REQ), "groq")
        assert err.status_code is None
        assert err.is_retryable

    def test_invoke_returns_content(self):
        from tools.llm.openai_provider import OpenAICompatibleProvider
        client, completions = _sdk_client(_completion('  {"ok": true}  '))
        provider = OpenAICompatibleProvider(provider_label="groq", client=client)
        request = LLMRequest(messages=[{"role": "user", "content": "hi"}],
                             system_prompt="sys", max_tokens=100, temperature=0.1)
        response = provider.invoke(request, "llama", {})
        assert response.content == '{"ok": true}'
        assert response.model_id == "llama-3.3-70b-versatile"
        assert response.input_tokens == 12
        sent = completions.calls[0]
        assert sent["messages"][0] == {"role": "system", "content": "sys"}
        assert sent["max_tokens"] == 100

    def test_invoke_translates_sdk_errors(self):
        from tools.llm.openai_provider import OpenAICompatibleProvider
        exc = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=_REQ), body=None)
        client, _ = _sdk_client(exc)
        provider = OpenAICompatibleProvider(provider_label="groq", client=client)
        with pytest.raises(ProviderCallError) as excinfo:
            provider.invoke(LLMRequest(messages=[]), "llama", {})
        assert excinfo.value.is_rate_limit

    def test_empty_content_is_not_retryable(self):
        from tools.llm.openai_provider import OpenAICompatibleProvider
        client, _ = _sdk_client(_completion(""))
        provider = OpenAICompatibleProvider(provider_label="groq", client=client)
        with pytest.raises(ProviderCallError) as excinfo:
            provider.invoke(LLMRequest(messages=[]), "llama", {})
        assert not excinfo.value.is_retryable


# =========================================================================
# ROUTER
# =========================================================================
class TestRouter:

    CONFIG = {
        "providers": {
            "groq": {"type": "openai_compatible", "base_url": "https://api.groq.test/v1",
                     "api_key_env": "TEST_GROQ_KEY"},
            "ollama": {"type": "ollama", "base_url": "http://localhost:11434/v1"},
        },
        "models": {
            "groq-llama": {"provider": "groq", "model_id": "llama-3.3-70b-versatile"},
            "ollama-qwen": {"provider": "ollama", "model_id": "qwen2.5:7b"},
        },
        "routing": {
            "proposal_generation": {"chain": ["groq-llama", "ollama-qwen"]},
            "default": {"chain": ["groq-llama"]},
        },
        "retry": {"max_attempts": "4", "retry_delay_seconds": "0.5",
                  "rate_limit_min_cooldown_seconds": 5, "request_timeout_seconds": 30},
    }

    def test_first_keyed_provider_wins(self, monkeypatch):
        from tools.llm.router import LLMRouter
        monkeypatch.setenv("TEST_GROQ_KEY", "gsk-test")
        client = LLMRouter(config=self.CONFIG).build_client()
        assert client.label == "groq"
        assert client.model_id == "llama-3.3-70b-versatile"
        assert client.max_attempts == 4
        assert client.retry_delay_seconds == 0.5

    def test_missing_key_falls_through_chain(self, monkeypatch):
        from tools.llm.router import LLMRouter
        monkeypatch.delenv("TEST_GROQ_KEY", raising=False)
        client = LLMRouter(config=self.CONFIG).build_client()
        assert client.label == "ollama"
        assert client.model_id == "qwen2.5:7b"

    def test_no_provider_is_precondition_failure(self, monkeypatch):
        from tools.llm.router import LLMRouter
        from tools.proposal.errors import PreconditionError
        monkeypatch.delenv("TEST_GROQ_KEY", raising=False)
        with pytest.raises(PreconditionError):
            LLMRouter(config=self.CONFIG).build_client("summaries")
