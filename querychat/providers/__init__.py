"""Provider transports, selected by the preset's ``provider`` tag."""

from typing import Dict, Optional, Type

import requests

from ..config import ModelPreset
from ..errors import UnsupportedProviderError
from .base import DEFAULT_TIMEOUT, HttpTransport, ProviderTransport, RequestPayload, field_of
from .gemini_rest import GeminiRestTransport
from .gemini_sdk import GeminiSdkTransport
from .litellm_provider import LiteLLMTransport
from .portkey import PortkeyTransport

TRANSPORTS: Dict[str, Type[ProviderTransport]] = {
    GeminiRestTransport.name: GeminiRestTransport,
    GeminiSdkTransport.name: GeminiSdkTransport,
    PortkeyTransport.name: PortkeyTransport,
    LiteLLMTransport.name: LiteLLMTransport,
}


def create_transport(
    preset: ModelPreset,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> ProviderTransport:
    cls = TRANSPORTS.get(preset.provider)
    if cls is None:
        raise UnsupportedProviderError(preset.provider, preset.model)
    kwargs = {"timeout": timeout}
    if issubclass(cls, HttpTransport) and session is not None:
        kwargs["session"] = session
    return cls.from_preset(preset, **kwargs)


__all__ = [
    "TRANSPORTS",
    "create_transport",
    "ProviderTransport",
    "HttpTransport",
    "RequestPayload",
    "field_of",
    "GeminiRestTransport",
    "GeminiSdkTransport",
    "PortkeyTransport",
    "LiteLLMTransport",
]
