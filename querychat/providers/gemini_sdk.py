"""Gemini through the Google GenAI SDK (thinking traces, search and code tools)."""

from typing import Any, Dict, Iterator, List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..aggregator import Completion, StreamDelta
from ..errors import TransportError
from ..logger import get_logger
from .base import ProviderTransport, RequestPayload
from .gemini_rest import parse_gemini_chunk, parse_gemini_response

_log = get_logger(__name__)


def _tool(decl: Dict[str, Any]) -> Optional[types.Tool]:
    if "google_search" in decl:
        return types.Tool(google_search=types.GoogleSearch())
    if "code_execution" in decl:
        return types.Tool(code_execution=types.ToolCodeExecution())
    _log.debug("Ignoring unknown tool declaration: %s", decl)
    return None


def _wrap_api_error(e: genai_errors.APIError) -> TransportError:
    code = getattr(e, "code", None)
    message = getattr(e, "message", None) or str(e)
    return TransportError(
        f"Gemini SDK error: {message}",
        status=code if isinstance(code, int) else None,
        body=str(getattr(e, "details", "") or ""),
    )


class GeminiSdkTransport(ProviderTransport):
    name = "gemini-sdk"

    def __init__(self, model: str, *, client: Optional[genai.Client] = None, **kwargs):
        super().__init__(model, **kwargs)
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def tool_declarations(self) -> List[Dict[str, Any]]:
        tools: List[Dict[str, Any]] = []
        if self.capabilities.search_tool:
            tools.append({"google_search": {}})
        if self.capabilities.code_execution:
            tools.append({"code_execution": {}})
        return tools

    def request_body(self, payload: RequestPayload) -> Dict[str, Any]:
        contents = [
            types.Content(
                role="user" if msg["role"] == "user" else "model",
                parts=[types.Part(text=msg["content"])],
            )
            for msg in payload.messages
        ]

        config: Dict[str, Any] = {}
        if payload.system_prompt:
            config["system_instruction"] = payload.system_prompt
        if payload.temperature is not None:
            config["temperature"] = payload.temperature
        if payload.top_p is not None:
            config["top_p"] = payload.top_p
        if payload.max_output_tokens is not None:
            config["max_output_tokens"] = payload.max_output_tokens
        tools = [t for t in (_tool(d) for d in payload.tools) if t is not None]
        if tools:
            config["tools"] = tools
        if payload.thinking_budget:
            config["thinking_config"] = types.ThinkingConfig(
                include_thoughts=payload.include_thoughts,
                thinking_budget=payload.thinking_budget,
            )

        return {
            "model": payload.model,
            "contents": contents,
            "config": types.GenerateContentConfig(**config),
        }

    def complete(self, payload: RequestPayload) -> Completion:
        try:
            response = self.client.models.generate_content(**self.request_body(payload))
        except genai_errors.APIError as e:
            raise _wrap_api_error(e) from e
        return parse_gemini_response(response, self.name)

    def stream(self, payload: RequestPayload) -> Iterator[StreamDelta]:
        try:
            for chunk in self.client.models.generate_content_stream(**self.request_body(payload)):
                delta = parse_gemini_chunk(chunk)
                if delta is None:
                    _log.debug("Skipping SDK chunk without candidates or usage")
                    continue
                yield delta
        except genai_errors.APIError as e:
            raise _wrap_api_error(e) from e

    def parse_chunk(self, obj: Dict[str, Any]) -> Optional[StreamDelta]:
        return parse_gemini_chunk(obj)
