"""Gemini REST variant plus the response parsing shared with the SDK variant."""

from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..aggregator import Completion, StreamDelta
from ..conversation import GroundingMetadata, GroundingSource
from ..errors import EmptyResponseError, TransportError
from ..logger import get_logger
from .base import HttpTransport, RequestPayload, field_of

_log = get_logger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
SYSTEM_ACK = "I'll follow those instructions."


def parse_grounding(meta: Any) -> Optional[GroundingMetadata]:
    """Index citation chunks by position; chunks without a web source stay ``None``."""
    if meta is None:
        return None
    sources: List[Optional[GroundingSource]] = []
    for chunk in field_of(meta, "groundingChunks", "grounding_chunks", default=[]):
        web = field_of(chunk, "web")
        if web is None:
            sources.append(None)
            continue
        sources.append(GroundingSource(
            title=field_of(web, "title", default="") or "",
            uri=field_of(web, "uri", default="") or "",
        ))
    queries = field_of(meta, "webSearchQueries", "web_search_queries", default=[]) or []
    return GroundingMetadata(sources=sources, queries=[str(q) for q in queries])


def split_parts(parts: Any) -> Tuple[str, str]:
    """Return (answer, thought) concatenated in part order."""
    answer, thought = [], []
    for part in parts or []:
        text = field_of(part, "text")
        if not text:
            continue
        if field_of(part, "thought"):
            thought.append(text)
        else:
            answer.append(text)
    return "".join(answer), "".join(thought)


def _usage_total(obj: Any) -> Optional[int]:
    usage = field_of(obj, "usageMetadata", "usage_metadata")
    total = field_of(usage, "totalTokenCount", "total_token_count")
    return int(total) if total is not None else None


def _raise_embedded_error(obj: Dict[str, Any]) -> None:
    err = obj.get("error")
    if not err:
        return
    if isinstance(err, dict):
        status = err.get("code")
        raise TransportError(
            str(err.get("message") or err),
            status=status if isinstance(status, int) else None,
            body=str(err),
        )
    raise TransportError(str(err))


def parse_gemini_response(obj: Any, provider: str = "gemini") -> Completion:
    """Full-response mode: only the first candidate is used."""
    if isinstance(obj, dict):
        _raise_embedded_error(obj)
    candidates = field_of(obj, "candidates", default=[]) or []
    if not candidates:
        feedback = field_of(obj, "promptFeedback", "prompt_feedback")
        if feedback is not None:
            _log.info("Gemini returned no candidates; prompt feedback: %s", feedback)
        raise EmptyResponseError(provider)

    candidate = candidates[0]
    content = field_of(candidate, "content")
    text, thought = split_parts(field_of(content, "parts", default=[]))
    return Completion(
        text=text,
        thought=thought,
        grounding=parse_grounding(field_of(candidate, "groundingMetadata", "grounding_metadata")),
        usage_total=_usage_total(obj),
    )


def parse_gemini_chunk(obj: Any) -> Optional[StreamDelta]:
    """One ``streamGenerateContent`` chunk; ``None`` for unrecognized shapes."""
    if isinstance(obj, dict):
        _raise_embedded_error(obj)
    candidates = field_of(obj, "candidates")
    usage = _usage_total(obj)
    if candidates is None and usage is None:
        return None

    delta = StreamDelta(usage_total=usage)
    if candidates:
        candidate = candidates[0]
        content = field_of(candidate, "content")
        delta.text, delta.thought = split_parts(field_of(content, "parts", default=[]))
        delta.grounding = parse_grounding(
            field_of(candidate, "groundingMetadata", "grounding_metadata")
        )
    return delta


class GeminiRestTransport(HttpTransport):
    """``generateContent`` / ``streamGenerateContent`` over plain HTTP."""

    name = "gemini"
    default_temperature = 0.9
    default_top_p = 0.95
    default_max_tokens = 32768

    @property
    def base_url(self) -> str:
        return (self.api_base or GEMINI_API_BASE).rstrip("/")

    def headers(self) -> Dict[str, str]:
        return {**super().headers(), "x-goog-api-key": self.api_key or ""}

    def tool_declarations(self) -> List[Dict[str, Any]]:
        if self.capabilities.search_tool:
            return [{"google_search": {}}]
        return []

    def request_body(self, payload: RequestPayload) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = []
        if payload.system_prompt:
            contents.append({"role": "user", "parts": [{"text": payload.system_prompt}]})
            contents.append({"role": "model", "parts": [{"text": SYSTEM_ACK}]})
        for msg in payload.messages:
            role = "user" if msg["role"] == "user" else "model"
            contents.append({"role": role, "parts": [{"text": msg["content"]}]})

        generation: Dict[str, Any] = {}
        if payload.temperature is not None:
            generation["temperature"] = payload.temperature
        if payload.top_p is not None:
            generation["topP"] = payload.top_p
        if payload.max_output_tokens is not None:
            generation["maxOutputTokens"] = payload.max_output_tokens
        if payload.thinking_budget:
            generation["thinkingConfig"] = {
                "thinkingBudget": payload.thinking_budget,
                "includeThoughts": payload.include_thoughts,
            }

        body: Dict[str, Any] = {"contents": contents, "generationConfig": generation}
        if payload.tools:
            body["tools"] = [dict(t) for t in payload.tools]
        return body

    def complete(self, payload: RequestPayload) -> Completion:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        data = self._post_json(url, self.request_body(payload))
        return parse_gemini_response(data, self.name)

    def stream(self, payload: RequestPayload) -> Iterator[str]:
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        return self._stream_lines(url, self.request_body(payload.with_stream()))

    def parse_chunk(self, obj: Dict[str, Any]) -> Optional[StreamDelta]:
        return parse_gemini_chunk(obj)
