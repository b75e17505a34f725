"""Multi-provider SDK variant via litellm (openai/, anthropic/, gemini/ models)."""

from typing import Any, Dict, Iterator, List, Optional

import litellm

from ..aggregator import Completion, StreamDelta
from ..errors import (
    EmptyResponseError,
    RateLimitedError,
    TransportError,
    UnsupportedProviderError,
    classify_error,
)
from ..logger import get_logger
from .base import ProviderTransport, RequestPayload, field_of

litellm.suppress_debug_info = True

_log = get_logger(__name__)

SUPPORTED_PREFIXES = ("openai", "anthropic", "gemini")


def _usage_total(obj: Any) -> Optional[int]:
    total = field_of(field_of(obj, "usage"), "total_tokens")
    return int(total) if total is not None else None


def _wrap(e: Exception, model: str) -> Exception:
    if isinstance(e, litellm.exceptions.RateLimitError):
        return RateLimitedError(str(e))
    if isinstance(e, litellm.exceptions.AuthenticationError):
        return TransportError(f"Auth failed. Check API key.\n{e}", status=401)
    if isinstance(e, litellm.exceptions.APIConnectionError):
        return TransportError(f"Cannot connect: model={model}\n{e}")
    return classify_error(e)


class LiteLLMTransport(ProviderTransport):
    """Streams through ``litellm.completion``; API keys are passed per call,
    never exported into the environment."""

    name = "litellm"

    def __init__(self, model: str, **kwargs):
        super().__init__(model, **kwargs)
        prefix = model.split("/", 1)[0] if "/" in model else ""
        if prefix not in SUPPORTED_PREFIXES:
            raise UnsupportedProviderError(prefix or "litellm", model)
        self.upstream = prefix

    def tool_declarations(self) -> List[Dict[str, Any]]:
        if self.capabilities.search_tool:
            return [{"googleSearch": {}}]
        return []

    def request_body(self, payload: RequestPayload) -> Dict[str, Any]:
        messages = list(payload.messages)
        if payload.system_prompt:
            messages.insert(0, {"role": "system", "content": payload.system_prompt})
        kwargs: Dict[str, Any] = {"model": payload.model, "messages": messages}
        if payload.temperature is not None:
            kwargs["temperature"] = payload.temperature
        if payload.top_p is not None:
            kwargs["top_p"] = payload.top_p
        if payload.max_output_tokens is not None:
            kwargs["max_tokens"] = payload.max_output_tokens
        if payload.tools:
            kwargs["tools"] = [dict(t) for t in payload.tools]
        if payload.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": payload.thinking_budget}
        if payload.stream:
            kwargs["stream"] = True
            kwargs["stream_options"] = {"include_usage": True}
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs

    def complete(self, payload: RequestPayload) -> Completion:
        try:
            response = litellm.completion(**self.request_body(payload.with_stream(False)))
        except Exception as e:
            raise _wrap(e, self.model) from e

        choices = field_of(response, "choices") or []
        if not choices:
            raise EmptyResponseError(self.name)
        msg = field_of(choices[0], "message")
        return Completion(
            text=field_of(msg, "content") or "",
            thought=field_of(msg, "reasoning_content") or "",
            usage_total=_usage_total(response),
        )

    def stream(self, payload: RequestPayload) -> Iterator[StreamDelta]:
        try:
            response_stream = litellm.completion(**self.request_body(payload.with_stream()))
        except Exception as e:
            raise _wrap(e, self.model) from e

        try:
            for chunk in response_stream:
                delta = self.parse_chunk(chunk)
                if delta is not None:
                    yield delta
        except Exception as e:
            raise _wrap(e, self.model) from e

    def parse_chunk(self, obj: Any) -> Optional[StreamDelta]:
        choices = field_of(obj, "choices")
        usage = _usage_total(obj)
        if not choices:
            # Usage-only final chunk
            return StreamDelta(usage_total=usage) if usage is not None else None
        delta = field_of(choices[0], "delta")
        return StreamDelta(
            text=field_of(delta, "content") or "",
            thought=field_of(delta, "reasoning_content") or "",
            usage_total=usage,
        )
