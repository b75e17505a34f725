"""Tests for error classification, token estimation and capability rules."""

import pytest

from querychat.capabilities import DEFAULT_THINKING_BUDGET, ModelCapabilities, resolve_capabilities
from querychat.errors import (
    EmptyResponseError,
    MissingCredentialError,
    RateLimitedError,
    TransportError,
    classify_error,
    is_rate_limit_message,
)
from querychat.tokenizer import estimate_chars, estimate_tokens


class TestClassifyError:

    @pytest.mark.parametrize("message", [
        "Rate limit reached", "429 Too Many Requests", "RESOURCE_EXHAUSTED", "quota exceeded",
    ])
    def test_rate_limit_phrases(self, message):
        assert is_rate_limit_message(message)
        assert isinstance(classify_error(RuntimeError(message)), RateLimitedError)

    def test_status_429(self):
        assert isinstance(classify_error(TransportError("x", status=429)), RateLimitedError)

    def test_rate_limit_in_body(self):
        err = TransportError("HTTP 400", status=400, body='{"error": "quota exhausted"}')
        assert isinstance(classify_error(err), RateLimitedError)

    def test_known_errors_pass_through(self):
        empty = EmptyResponseError("gemini")
        missing = MissingCredentialError("portkey")
        plain = TransportError("boom", status=500)
        assert classify_error(empty) is empty
        assert classify_error(missing) is missing
        assert classify_error(plain) is plain

    def test_unknown_exception_wrapped(self):
        class WeirdError(Exception):
            status_code = 503

        err = classify_error(WeirdError("upstream down"))
        assert isinstance(err, TransportError)
        assert err.status == 503
        assert str(err) == "WeirdError: upstream down"

    def test_messages(self):
        assert str(EmptyResponseError()) == "No response"
        assert str(MissingCredentialError("portkey", setting="virtual-key")) == (
            "No virtual-key configured for provider 'portkey'."
        )


class TestTokenizer:

    def test_chars_estimate_rounds_up(self):
        assert estimate_chars("") == 0
        assert estimate_chars("abc") == 1
        assert estimate_chars("abcd") == 1
        assert estimate_chars("abcde") == 2
        assert estimate_tokens("Hello world") == 3

    def test_empty_text_with_any_counter(self):
        assert estimate_tokens("", "tiktoken") == 0


class TestCapabilities:

    def test_provider_defaults(self):
        assert resolve_capabilities("gemini", "gemini-1.5-pro") == ModelCapabilities(streaming=True)
        assert resolve_capabilities("litellm", "openai/gpt-4o").stream_only
        assert resolve_capabilities("unknown", "m") == ModelCapabilities()

    def test_glob_rules(self):
        caps = resolve_capabilities("gemini-sdk", "gemini-2.5-pro")
        assert caps.search_tool and caps.code_execution
        assert caps.thinking_budget == DEFAULT_THINKING_BUDGET
        assert caps.include_thoughts
        assert resolve_capabilities("gemini", "gemini-2.0-flash").search_tool

    def test_overrides_win(self):
        caps = resolve_capabilities("gemini-sdk", "gemini-2.5-flash",
                                    {"search-tool": False, "thinking_budget": 1024, "bogus": 1})
        assert not caps.search_tool
        assert caps.thinking_budget == 1024
