"""Portkey gateway: OpenAI-style chat completions routed by a virtual key."""

from typing import Any, Dict, Iterator, List, Optional

from ..aggregator import Completion, StreamDelta
from ..errors import EmptyResponseError, MissingCredentialError, TransportError
from .base import HttpTransport, RequestPayload, field_of

PORTKEY_API_BASE = "https://api.portkey.ai/v1"


def _usage_total(obj: Any) -> Optional[int]:
    total = field_of(field_of(obj, "usage"), "total_tokens")
    return int(total) if total is not None else None


def _raise_embedded_error(obj: Dict[str, Any]) -> None:
    err = obj.get("error")
    if not err:
        return
    if isinstance(err, dict):
        code = err.get("code")
        raise TransportError(
            str(err.get("message") or err),
            status=code if isinstance(code, int) else None,
            body=str(err),
        )
    raise TransportError(str(err))


def parse_openai_response(obj: Dict[str, Any], provider: str = "portkey") -> Completion:
    _raise_embedded_error(obj)
    choices = obj.get("choices") or []
    if not choices:
        raise EmptyResponseError(provider)
    message = choices[0].get("message") or {}
    return Completion(
        text=message.get("content") or "",
        thought=message.get("reasoning_content") or "",
        usage_total=_usage_total(obj),
    )


def parse_openai_chunk(obj: Dict[str, Any]) -> Optional[StreamDelta]:
    _raise_embedded_error(obj)
    choices = obj.get("choices")
    usage = _usage_total(obj)
    if choices is None and usage is None:
        return None
    delta = StreamDelta(usage_total=usage)
    if choices:
        part = choices[0].get("delta") or {}
        delta.text = part.get("content") or ""
        delta.thought = part.get("reasoning_content") or ""
    return delta


class PortkeyTransport(HttpTransport):
    name = "portkey"
    default_temperature = 0.95
    default_top_p = 0.9
    default_max_tokens = 32768

    def __init__(self, model: str, *, virtual_key: Optional[str] = None, **kwargs):
        super().__init__(model, **kwargs)
        self.virtual_key = virtual_key

    @classmethod
    def from_preset(cls, preset, **kwargs):
        return super().from_preset(preset, virtual_key=preset.resolve_virtual_key(), **kwargs)

    @property
    def url(self) -> str:
        return f"{(self.api_base or PORTKEY_API_BASE).rstrip('/')}/chat/completions"

    def check_credentials(self) -> None:
        super().check_credentials()
        if not self.virtual_key:
            raise MissingCredentialError(self.name, setting="virtual-key")

    def headers(self) -> Dict[str, str]:
        return {
            **super().headers(),
            "x-portkey-api-key": self.api_key or "",
            "x-portkey-virtual-key": self.virtual_key or "",
        }

    def tool_declarations(self) -> List[Dict[str, Any]]:
        if self.capabilities.search_tool:
            return [{"type": "function", "function": {"name": "google_search"}}]
        return []

    def request_body(self, payload: RequestPayload) -> Dict[str, Any]:
        messages = list(payload.messages)
        if payload.system_prompt:
            messages.insert(0, {"role": "system", "content": payload.system_prompt})
        body: Dict[str, Any] = {
            "model": payload.model,
            "messages": messages,
            "stream": payload.stream,
        }
        if payload.max_output_tokens is not None:
            body["max_tokens"] = payload.max_output_tokens
        if payload.temperature is not None:
            body["temperature"] = payload.temperature
        if payload.top_p is not None:
            body["top_p"] = payload.top_p
        if payload.tools:
            body["tools"] = [dict(t) for t in payload.tools]
        if payload.stream:
            body["stream_options"] = {"include_usage": True}
        return body

    def complete(self, payload: RequestPayload) -> Completion:
        data = self._post_json(self.url, self.request_body(payload.with_stream(False)))
        return parse_openai_response(data, self.name)

    def stream(self, payload: RequestPayload) -> Iterator[str]:
        return self._stream_lines(self.url, self.request_body(payload.with_stream()))

    def parse_chunk(self, obj: Dict[str, Any]) -> Optional[StreamDelta]:
        return parse_openai_chunk(obj)
