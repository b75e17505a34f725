"""Transport base classes shared by every provider variant."""

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Union

import requests

from ..aggregator import Completion, StreamDelta, split_lines
from ..capabilities import ModelCapabilities, resolve_capabilities
from ..config import ModelPreset
from ..conversation import ConversationState
from ..errors import MissingCredentialError, TransportError
from ..logger import get_logger

_log = get_logger(__name__)

DEFAULT_TIMEOUT = 120


def field_of(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present field from a dict or an SDK object.

    Provider payloads arrive either as decoded JSON (camelCase keys) or as
    SDK model objects (snake_case attributes); callers list both spellings.
    """
    if obj is None:
        return default
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return default


@dataclass
class RequestPayload:
    """One turn's request, built fresh from the conversation and then discarded."""

    model: str
    messages: List[Dict[str, str]] = field(default_factory=list)
    system_prompt: str = ""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    tools: List[Dict[str, Any]] = field(default_factory=list)
    thinking_budget: int = 0
    include_thoughts: bool = False
    stream: bool = False

    def with_stream(self, stream: bool = True) -> "RequestPayload":
        return replace(self, stream=stream)

    def to_json(self) -> Dict[str, Any]:
        """Generic wire shape; variants reshape it in ``request_body``."""
        messages = list(self.messages)
        if self.system_prompt:
            messages.insert(0, {"role": "system", "content": self.system_prompt})
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "maxOutputTokens": self.max_output_tokens,
            "temperature": self.temperature,
            "topP": self.top_p,
            "stream": self.stream,
        }
        if self.tools:
            body["tools"] = [dict(t) for t in self.tools]
        return body

    def summary(self) -> Dict[str, Any]:
        data = asdict(self)
        data["messages"] = len(self.messages)
        data["system_prompt"] = bool(self.system_prompt)
        return data


StreamItem = Union[str, StreamDelta]


class ProviderTransport(ABC):
    """One provider variant: request shaping plus response-shape parsing."""

    name = ""
    default_temperature: Optional[float] = None
    default_top_p: Optional[float] = None
    default_max_tokens: Optional[int] = None

    def __init__(
        self,
        model: str,
        *,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        capabilities: Optional[ModelCapabilities] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = self.default_temperature if temperature is None else temperature
        self.top_p = self.default_top_p if top_p is None else top_p
        self.max_tokens = self.default_max_tokens if max_tokens is None else max_tokens
        self.capabilities = capabilities or resolve_capabilities(self.name, model)
        self.timeout = timeout

    @classmethod
    def from_preset(cls, preset: ModelPreset, **kwargs) -> "ProviderTransport":
        return cls(
            preset.model,
            api_key=preset.resolve_api_key(),
            api_base=preset.api_base,
            temperature=preset.temperature,
            top_p=preset.top_p,
            max_tokens=preset.max_tokens,
            capabilities=resolve_capabilities(preset.provider, preset.model, preset.capabilities),
            **kwargs,
        )

    @property
    def label(self) -> str:
        return f"{self.name}/{self.model}"

    @property
    def supports_streaming(self) -> bool:
        return self.capabilities.streaming

    @property
    def stream_only(self) -> bool:
        return self.capabilities.stream_only

    def check_credentials(self) -> None:
        if not self.api_key:
            raise MissingCredentialError(self.name)

    def tool_declarations(self) -> List[Dict[str, Any]]:
        return []

    def build_payload(self, state: ConversationState, system_prompt: str = "") -> RequestPayload:
        caps = self.capabilities
        return RequestPayload(
            model=self.model,
            messages=state.api_messages(),
            system_prompt=(system_prompt or "").strip(),
            temperature=self.temperature,
            top_p=self.top_p,
            max_output_tokens=self.max_tokens,
            tools=self.tool_declarations(),
            thinking_budget=caps.thinking_budget,
            include_thoughts=caps.include_thoughts,
        )

    def request_body(self, payload: RequestPayload) -> Dict[str, Any]:
        return payload.to_json()

    @abstractmethod
    def complete(self, payload: RequestPayload) -> Completion:
        """Issue one non-streaming request and parse the full response."""

    @abstractmethod
    def stream(self, payload: RequestPayload) -> Iterator[StreamItem]:
        """Issue a streaming request; yields raw lines or parsed deltas."""

    def parse_chunk(self, obj: Dict[str, Any]) -> Optional[StreamDelta]:
        """Turn one decoded stream object into a delta; ``None`` if unrecognized."""
        return None

    def close(self) -> None:
        pass


class HttpTransport(ProviderTransport):
    """Variants that talk JSON over HTTP through a shared ``requests.Session``."""

    def __init__(self, model: str, *, session: Optional[requests.Session] = None, **kwargs):
        super().__init__(model, **kwargs)
        self._owns_session = session is None
        self.session = session or requests.Session()

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _post(self, url: str, body: Dict[str, Any], *, stream: bool = False) -> requests.Response:
        _log.debug("POST %s (stream=%s)", url.split("?", 1)[0], stream)
        try:
            resp = self.session.post(
                url, json=body, headers=self.headers(), timeout=self.timeout, stream=stream,
            )
        except requests.RequestException as e:
            raise TransportError(
                f"Cannot connect to {self.name}: {type(e).__name__}: {e}"
            ) from e

        if not 200 <= resp.status_code < 300:
            text = resp.text or ""
            resp.close()
            message = self._error_message(text) or f"API error: {resp.status_code}"
            _log.warning("%s returned HTTP %d: %s", self.name, resp.status_code, message[:200])
            raise TransportError(message, status=resp.status_code, body=text)
        return resp

    def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._post(url, body)
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(
                f"{self.name} returned a non-JSON body", status=resp.status_code, body=resp.text,
            ) from e
        if not isinstance(data, dict):
            raise TransportError(f"{self.name} returned an unexpected body", body=resp.text)
        return data

    def _stream_lines(self, url: str, body: Dict[str, Any]) -> Iterator[str]:
        resp = self._post(url, body, stream=True)
        try:
            yield from split_lines(resp.iter_content(chunk_size=None))
        except requests.RequestException as e:
            raise TransportError(f"Stream interrupted: {type(e).__name__}: {e}") from e
        finally:
            resp.close()

    @staticmethod
    def _error_message(text: str) -> str:
        """Pull ``error.message`` out of a JSON error body, else the raw text."""
        try:
            data = json.loads(text)
        except ValueError:
            return text.strip()
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if isinstance(err, str) and err:
                return err
        return text.strip()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
