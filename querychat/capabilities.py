"""Provider/model capability data.

Which models get a search tool, a thinking budget or streaming fallback is
configuration data. Rules are matched with shell-style globs in order; later
matches override earlier ones, and per-preset ``capabilities:`` overrides
from YAML win over everything.
"""

from dataclasses import dataclass, fields, replace
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional, Tuple

__all__ = [
    "ModelCapabilities",
    "PROVIDER_DEFAULTS",
    "CAPABILITY_RULES",
    "resolve_capabilities",
]

DEFAULT_THINKING_BUDGET = 24576


@dataclass(frozen=True)
class ModelCapabilities:
    streaming: bool = False       # eligible for the non-streaming -> streaming fallback
    stream_only: bool = False     # skip the non-streaming request entirely
    search_tool: bool = False
    code_execution: bool = False
    thinking_budget: int = 0      # 0 disables the thinking config
    include_thoughts: bool = False

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "ModelCapabilities":
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        clean = {}
        for key, value in overrides.items():
            name = str(key).replace("-", "_")
            if name in known:
                clean[name] = value
        return replace(self, **clean)


PROVIDER_DEFAULTS: Dict[str, ModelCapabilities] = {
    "gemini": ModelCapabilities(streaming=True),
    "gemini-sdk": ModelCapabilities(streaming=True),
    "portkey": ModelCapabilities(streaming=True, search_tool=True),
    "litellm": ModelCapabilities(streaming=True, stream_only=True),
}

# (provider, model glob, overrides)
CAPABILITY_RULES: List[Tuple[str, str, Dict[str, Any]]] = [
    ("gemini", "gemini-2.0*", {"search_tool": True}),
    ("gemini", "gemini-2.5*", {"search_tool": True}),
    ("gemini-sdk", "gemini-2.*", {"search_tool": True}),
    ("gemini-sdk", "gemini-2.5*", {
        "code_execution": True,
        "thinking_budget": DEFAULT_THINKING_BUDGET,
        "include_thoughts": True,
    }),
    ("litellm", "gemini/*", {"search_tool": True}),
    ("litellm", "gemini/gemini-2.5*", {"thinking_budget": DEFAULT_THINKING_BUDGET}),
]


def resolve_capabilities(
    provider: str,
    model: str,
    overrides: Optional[Dict[str, Any]] = None,
) -> ModelCapabilities:
    caps = PROVIDER_DEFAULTS.get(provider, ModelCapabilities())
    for rule_provider, pattern, rule in CAPABILITY_RULES:
        if rule_provider == provider and fnmatchcase(model, pattern):
            caps = caps.merged(rule)
    return caps.merged(overrides)
