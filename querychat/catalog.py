"""Process-wide cache of provider model lists."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import requests

from .config import ModelPreset
from .logger import get_logger
from .providers.gemini_rest import GEMINI_API_BASE
from .providers.portkey import PORTKEY_API_BASE

_log = get_logger(__name__)

DEFAULT_TTL = 3600
OPENAI_API_BASE = "https://api.openai.com/v1"
ANTHROPIC_API_BASE = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    provider: str


Fetcher = Callable[[requests.Session, ModelPreset, int], List[ModelInfo]]


def _get_json(session: requests.Session, url: str, headers: Dict[str, str], timeout: int) -> dict:
    resp = session.get(url, headers=headers, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def fetch_openai_models(session: requests.Session, preset: ModelPreset,
                        timeout: int) -> List[ModelInfo]:
    endpoint = (preset.api_base or OPENAI_API_BASE).rstrip("/")
    data = _get_json(session, f"{endpoint}/models",
                     {"Authorization": f"Bearer {preset.resolve_api_key() or ''}"}, timeout)
    return [ModelInfo(m["id"], m["id"], "openai") for m in data.get("data", [])]


def fetch_anthropic_models(session: requests.Session, preset: ModelPreset,
                           timeout: int) -> List[ModelInfo]:
    endpoint = (preset.api_base or ANTHROPIC_API_BASE).rstrip("/")
    headers = {"x-api-key": preset.resolve_api_key() or "", "anthropic-version": ANTHROPIC_VERSION}
    data = _get_json(session, f"{endpoint}/models", headers, timeout)
    return [
        ModelInfo(m["id"], m.get("display_name") or m["id"], "anthropic")
        for m in data.get("data", [])
    ]


def fetch_gemini_models(session: requests.Session, preset: ModelPreset,
                        timeout: int) -> List[ModelInfo]:
    base = GEMINI_API_BASE if preset.provider == "litellm" else (preset.api_base or GEMINI_API_BASE)
    data = _get_json(session, f"{base.rstrip('/')}/models",
                     {"x-goog-api-key": preset.resolve_api_key() or ""}, timeout)
    models = []
    for m in data.get("models", []):
        model_id = m["name"].split("/", 1)[-1]
        models.append(ModelInfo(model_id, m.get("displayName") or model_id, "google"))
    return models


def fetch_portkey_models(session: requests.Session, preset: ModelPreset,
                         timeout: int) -> List[ModelInfo]:
    endpoint = (preset.api_base or PORTKEY_API_BASE).rstrip("/")
    headers = {
        "x-portkey-api-key": preset.resolve_api_key() or "",
        "x-portkey-virtual-key": preset.resolve_virtual_key() or "",
    }
    data = _get_json(session, f"{endpoint}/models", headers, timeout)
    return [ModelInfo(m["id"], m["id"], "portkey") for m in data.get("data", [])]


_LITELLM_FETCHERS: Dict[str, Fetcher] = {
    "openai": fetch_openai_models,
    "anthropic": fetch_anthropic_models,
    "gemini": fetch_gemini_models,
}


def fetcher_for(preset: ModelPreset) -> Tuple[str, Optional[Fetcher]]:
    """Cache key and fetcher for a preset's provider endpoint."""
    if preset.provider in ("gemini", "gemini-sdk"):
        return f"gemini:{preset.api_base or ''}", fetch_gemini_models
    if preset.provider == "portkey":
        return f"portkey:{preset.api_base or ''}", fetch_portkey_models
    if preset.provider == "litellm":
        prefix = preset.model.split("/", 1)[0]
        return f"{prefix}:{preset.api_base or ''}", _LITELLM_FETCHERS.get(prefix)
    return preset.provider, None


class ModelCatalog:
    """Model lists younger than ``ttl`` are served without a new fetch.

    A failed fetch degrades to an empty list and is not cached, so the next
    call tries again.
    """

    def __init__(self, ttl: int = DEFAULT_TTL, session: Optional[requests.Session] = None,
                 timeout: int = 15, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock
        self._cache: Dict[str, Tuple[float, List[ModelInfo]]] = {}
        self._lock = threading.Lock()

    def get_models(self, preset: ModelPreset, *, refresh: bool = False) -> List[ModelInfo]:
        key, fetcher = fetcher_for(preset)
        if fetcher is None:
            _log.warning("No model list available for provider %s", preset.provider)
            return []

        now = self._clock()
        cached = self._cache.get(key)
        if cached and not refresh and now - cached[0] < self.ttl:
            return list(cached[1])

        try:
            models = fetcher(self.session, preset, self.timeout)
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            _log.warning("Error fetching models for %s: %s", key, e)
            return []

        with self._lock:
            self._cache[key] = (now, models)
        return list(models)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_catalog: Optional[ModelCatalog] = None
_catalog_lock = threading.Lock()


def get_catalog(ttl: int = DEFAULT_TTL) -> ModelCatalog:
    """Process-wide catalog; ``ttl`` only applies when it is first created."""
    global _catalog
    with _catalog_lock:
        if _catalog is None:
            _catalog = ModelCatalog(ttl=ttl)
        return _catalog
