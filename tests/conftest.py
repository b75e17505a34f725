"""Shared fixtures for querychat tests."""

import json
import os
from unittest.mock import MagicMock

import pytest
import yaml

import querychat.config as config_module
import querychat.session as session_module
from querychat.capabilities import ModelCapabilities
from querychat.conversation import ConversationState
from querychat.notifications import RecordingNotifier
from querychat.providers.base import ProviderTransport
from querychat.providers.gemini_rest import parse_gemini_chunk
from querychat.rendering import set_use_unicode

_CREDENTIAL_ENV = (
    "GEMINI_API_KEY",
    "PORTKEY_API_KEY",
    "PORTKEY_VIRTUAL_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "QUERYCHAT_MODEL",
    "QUERYCHAT_VERBOSE",
    "QUERYCHAT_SYSTEM_PROMPT",
)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the global config and exports at a temp dir and drop real keys."""
    home = tmp_path / "home" / ".querychat"
    monkeypatch.setattr(config_module, "CONFIG_DIR", home)
    monkeypatch.setattr(config_module, "CONFIG_FILE", home / "config.yml")
    monkeypatch.setattr(session_module, "EXPORTS_DIR", home / "exports")
    for name in _CREDENTIAL_ENV:
        monkeypatch.delenv(name, raising=False)
    set_use_unicode(True)
    return home


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary project directory and cd into it."""
    project = tmp_path / "project"
    project.mkdir()
    orig = os.getcwd()
    os.chdir(project)
    yield project
    os.chdir(orig)


@pytest.fixture
def sample_config_data():
    """Minimal .querychat.yml data dict."""
    return {
        "active-model": "flash",
        "system-prompt": "Be brief.",
        "verbose": False,
        "token-estimate": "stream",
        "token-counter": "chars",
        "rate-limit-delay": 2,
        "request-timeout": 60,
        "model-cache-ttl": 600,
        "use-unicode": True,
        "stream-profile": "ultra",
        "models": {
            "flash": {
                "provider": "gemini",
                "model": "gemini-2.0-flash",
                "description": "Test flash model",
                "api-key": "gem-key",
            },
            "gateway": {
                "provider": "portkey",
                "model": "gpt-4o",
                "api-key": "pk-key",
                "virtual-key": "vk-key",
                "temperature": 0.5,
                "max-tokens": 1024,
                "capabilities": {"search-tool": False},
            },
        },
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".querychat.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    return c


@pytest.fixture
def state():
    return ConversationState()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ── Fake transports and HTTP plumbing ──


class FakeTransport(ProviderTransport):
    """Scripted transport: each call pops the next result or raises it."""

    name = "gemini"

    def __init__(self, *, completes=(), streams=(), streaming=True, stream_only=False,
                 api_key="test-key", model="gemini-test"):
        super().__init__(
            model,
            api_key=api_key,
            capabilities=ModelCapabilities(streaming=streaming, stream_only=stream_only),
        )
        self.completes = list(completes)
        self.streams = list(streams)
        self.calls = []
        self.payloads = []

    def complete(self, payload):
        self.calls.append("complete")
        self.payloads.append(payload)
        result = self.completes.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def stream(self, payload):
        self.calls.append("stream")
        self.payloads.append(payload)
        events = self.streams.pop(0)
        for event in events:
            if isinstance(event, Exception):
                raise event
            yield event

    def parse_chunk(self, obj):
        return parse_gemini_chunk(obj)


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, chunks=()):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self._chunks = list(chunks)
        self.closed = False

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def iter_content(self, chunk_size=None):
        yield from self._chunks

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f"{self.status_code} error")

    def close(self):
        self.closed = True


class FakeSession:
    """Records requests and replays queued responses (or raises queued errors)."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.requests = []

    def _next(self, record):
        self.requests.append(record)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, json=None, headers=None, timeout=None, stream=False):
        return self._next({"method": "POST", "url": url, "json": json,
                           "headers": headers or {}, "stream": stream})

    def get(self, url, headers=None, timeout=None):
        return self._next({"method": "GET", "url": url, "headers": headers or {}})

    def close(self):
        pass


def sse(*objects, done=False):
    """Encode objects as SSE ``data:`` lines."""
    lines = [f"data: {json.dumps(obj)}" for obj in objects]
    if done:
        lines.append("data: [DONE]")
    return lines


def gemini_chunk(text="", thought=False, usage=None, grounding=None):
    part = {"text": text}
    if thought:
        part["thought"] = True
    candidate = {"content": {"parts": [part], "role": "model"}}
    if grounding is not None:
        candidate["groundingMetadata"] = grounding
    chunk = {"candidates": [candidate]}
    if usage is not None:
        chunk["usageMetadata"] = {"totalTokenCount": usage}
    return chunk
