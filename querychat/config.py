"""
Configuration — model presets and chat preferences.

Loading priority:
  1. Project dir .querychat.yml
  2. Git root .querychat.yml
  3. Global ~/.querychat/config.yml

Credentials live on the preset and are handed to the transport at
construction; nothing reads them from ambient process state afterwards.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .aggregator import ESTIMATE_POLICIES as TOKEN_ESTIMATE_MODES
from .logger import get_logger
from .tokenizer import TOKEN_COUNTERS

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".querychat"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
PROJECT_CONFIG_NAME = ".querychat.yml"

STREAM_PROFILES = {"stable", "smooth", "ultra"}

DEFAULT_ACTIVE_MODEL = "gemini-flash"


# ── Configuration metadata and validation ──


@dataclass
class ConfigFieldSpec:
    """Configuration field specification with validation rules."""
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "float", "bool"
    default: Any
    validator: Optional[Callable[[Any], tuple[bool, Any, str]]] = None  # (valid, coerced_value, error_msg)


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    """Validate integer within range."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_float_range(value: Any, min_val: float, max_val: float) -> tuple[bool, float, str]:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return False, 0.0, "Must be a number"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_enum(value: Any, valid_values: set) -> tuple[bool, str, str]:
    """Validate value is in allowed set."""
    val_str = str(value).strip().lower()
    if val_str not in valid_values:
        return False, "", f"Must be one of: {', '.join(sorted(valid_values))}"
    return True, val_str, ""


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {
    "active-model": ConfigFieldSpec(
        key="active-model",
        field_name="active_model",
        description="Currently active model preset name",
        value_type="str",
        default=DEFAULT_ACTIVE_MODEL,
        validator=None,  # Validated against available models separately
    ),
    "system-prompt": ConfigFieldSpec(
        key="system-prompt",
        field_name="system_prompt",
        description="System instruction sent before the conversation",
        value_type="str",
        default="",
        validator=None,
    ),
    "verbose": ConfigFieldSpec(
        key="verbose",
        field_name="verbose",
        description="Enable verbose debug output",
        value_type="bool",
        default=False,
        validator=_validate_bool,
    ),
    "token-estimate": ConfigFieldSpec(
        key="token-estimate",
        field_name="token_estimate",
        description="Estimate tokens when usage is missing: stream, always, or off",
        value_type="str",
        default="stream",
        validator=lambda v: _validate_enum(v, TOKEN_ESTIMATE_MODES),
    ),
    "token-counter": ConfigFieldSpec(
        key="token-counter",
        field_name="token_counter",
        description="Estimator: chars (length / 4) or tiktoken",
        value_type="str",
        default="chars",
        validator=lambda v: _validate_enum(v, TOKEN_COUNTERS),
    ),
    "rate-limit-delay": ConfigFieldSpec(
        key="rate-limit-delay",
        field_name="rate_limit_delay",
        description="Seconds to wait before the single rate-limit retry",
        value_type="float",
        default=5.0,
        validator=lambda v: _validate_float_range(v, 0.0, 120.0),
    ),
    "request-timeout": ConfigFieldSpec(
        key="request-timeout",
        field_name="request_timeout",
        description="HTTP request timeout in seconds",
        value_type="int",
        default=120,
        validator=lambda v: _validate_int_range(v, 5, 600),
    ),
    "model-cache-ttl": ConfigFieldSpec(
        key="model-cache-ttl",
        field_name="model_cache_ttl",
        description="Seconds a fetched model list stays fresh",
        value_type="int",
        default=3600,
        validator=lambda v: _validate_int_range(v, 0, 86400),
    ),
    "use-unicode": ConfigFieldSpec(
        key="use-unicode",
        field_name="use_unicode",
        description="Use Unicode icons (off for ASCII fallback)",
        value_type="bool",
        default=True,
        validator=_validate_bool,
    ),
    "stream-profile": ConfigFieldSpec(
        key="stream-profile",
        field_name="stream_profile",
        description="Live display refresh rate: stable, smooth, or ultra",
        value_type="str",
        default="smooth",
        validator=lambda v: _validate_enum(v, STREAM_PROFILES),
    ),
}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """
    Validate a configuration value.

    Returns:
        (is_valid, coerced_value, error_message)
    """
    if key not in CONFIG_FIELDS:
        return False, value, f"Unknown configuration key: {key}"

    spec = CONFIG_FIELDS[key]
    if key == "active-model":
        return True, str(value), ""
    if spec.validator:
        return spec.validator(value)
    if spec.value_type == "bool":
        return _validate_bool(value)
    return True, str(value), ""


# Provider env vars; litellm presets resolve by model prefix.
_PROVIDER_KEY_ENV = {
    "gemini": "GEMINI_API_KEY",
    "gemini-sdk": "GEMINI_API_KEY",
    "portkey": "PORTKEY_API_KEY",
}
_LITELLM_PREFIX_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


@dataclass
class ModelPreset:
    name: str
    provider: str
    model: str
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    virtual_key: Optional[str] = None
    virtual_key_env: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    description: str = ""
    capabilities: Dict[str, Any] = field(default_factory=dict)

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        if self.provider == "litellm":
            prefix = self.model.split("/", 1)[0]
            env_var = _LITELLM_PREFIX_KEY_ENV.get(prefix)
        else:
            env_var = _PROVIDER_KEY_ENV.get(self.provider)
        return os.environ.get(env_var) if env_var else None

    def resolve_virtual_key(self) -> Optional[str]:
        if self.virtual_key:
            return self.virtual_key
        return os.environ.get(self.virtual_key_env or "PORTKEY_VIRTUAL_KEY")

    def to_yaml(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"provider": self.provider, "model": self.model}
        if self.description:
            entry["description"] = self.description
        optional = {
            "api-base": self.api_base,
            "api-key": self.api_key,
            "api-key-env": self.api_key_env,
            "virtual-key": self.virtual_key,
            "virtual-key-env": self.virtual_key_env,
            "temperature": self.temperature,
            "top-p": self.top_p,
            "max-tokens": self.max_tokens,
        }
        for key, value in optional.items():
            if value is not None:
                entry[key] = value
        if self.capabilities:
            entry["capabilities"] = dict(self.capabilities)
        return entry

    @classmethod
    def from_yaml(cls, name: str, m: Dict[str, Any]) -> "ModelPreset":
        caps = m.get("capabilities") or {}
        return cls(
            name=name,
            provider=str(m.get("provider", "gemini")).strip().lower(),
            model=str(m.get("model", "gemini-2.0-flash")),
            api_base=m.get("api-base"),
            api_key=m.get("api-key"),
            api_key_env=m.get("api-key-env"),
            virtual_key=m.get("virtual-key"),
            virtual_key_env=m.get("virtual-key-env"),
            temperature=m.get("temperature"),
            top_p=m.get("top-p"),
            max_tokens=m.get("max-tokens"),
            description=m.get("description", ""),
            capabilities=dict(caps) if isinstance(caps, dict) else {},
        )


@dataclass
class Config:
    active_model: str = DEFAULT_ACTIVE_MODEL
    models: Dict[str, ModelPreset] = field(default_factory=dict)
    system_prompt: str = ""
    verbose: bool = False
    token_estimate: str = "stream"
    token_counter: str = "chars"
    rate_limit_delay: float = 5.0
    request_timeout: int = 120
    model_cache_ttl: int = 3600
    use_unicode: bool = True
    stream_profile: str = "smooth"
    project_root: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        git_root = cls._find_git_root(project_path)
        config_loaded = False
        for candidate in [
            project_path / PROJECT_CONFIG_NAME,
            (git_root / PROJECT_CONFIG_NAME) if git_root and git_root != project_path else None,
            CONFIG_FILE,
        ]:
            if candidate and candidate.exists():
                config._load_yaml(candidate)
                config._config_source = str(candidate)
                config_loaded = True
                break

        if not config_loaded:
            config._add_default_presets()

        config._apply_env()
        config.project_root = str(project_path)
        return config

    @classmethod
    def get_default_presets(cls) -> Dict[str, ModelPreset]:
        return {
            "gemini-flash": ModelPreset(
                name="gemini-flash", provider="gemini", model="gemini-2.0-flash",
                description="Gemini 2.0 Flash (REST, Google Search grounding)",
            ),
            "gemini-2.5-flash": ModelPreset(
                name="gemini-2.5-flash", provider="gemini-sdk", model="gemini-2.5-flash",
                description="Gemini 2.5 Flash (SDK, thinking + search)",
            ),
            "gemini-2.5-pro": ModelPreset(
                name="gemini-2.5-pro", provider="gemini-sdk", model="gemini-2.5-pro",
                description="Gemini 2.5 Pro (SDK, thinking + search)",
            ),
            "portkey": ModelPreset(
                name="portkey", provider="portkey", model="gpt-4o",
                description="Portkey gateway (virtual key routing)",
            ),
            "gpt-4o": ModelPreset(
                name="gpt-4o", provider="litellm", model="openai/gpt-4o",
                description="OpenAI GPT-4o via litellm",
            ),
            "claude-sonnet": ModelPreset(
                name="claude-sonnet", provider="litellm",
                model="anthropic/claude-3-7-sonnet-latest",
                description="Anthropic Claude Sonnet via litellm",
            ),
            "gemini-litellm": ModelPreset(
                name="gemini-litellm", provider="litellm", model="gemini/gemini-2.5-flash",
                description="Gemini 2.5 Flash via litellm",
            ),
        }

    def _add_default_presets(self):
        self.models = self.get_default_presets()
        self.active_model = DEFAULT_ACTIVE_MODEL

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Could not read %s: %s", filepath, e)
            self._add_default_presets()
            return

        self.active_model = str(data.get("active-model", DEFAULT_ACTIVE_MODEL))
        self.system_prompt = str(data.get("system-prompt") or "")
        self.verbose = self._coerce_bool(data.get("verbose", False), default=False)
        self.token_estimate = self._normalize_enum(
            data.get("token-estimate"), TOKEN_ESTIMATE_MODES, "stream"
        )
        self.token_counter = self._normalize_enum(
            data.get("token-counter"), TOKEN_COUNTERS, "chars"
        )
        self.stream_profile = self._normalize_enum(
            data.get("stream-profile"), STREAM_PROFILES, "smooth"
        )
        self.rate_limit_delay = self._coerce_float(
            data.get("rate-limit-delay", 5.0), default=5.0, min_value=0.0, max_value=120.0
        )
        self.request_timeout = self._coerce_positive_int(
            data.get("request-timeout", 120), default=120, min_value=5, max_value=600
        )
        self.model_cache_ttl = self._coerce_positive_int(
            data.get("model-cache-ttl", 3600), default=3600, min_value=0, max_value=86400
        )
        self.use_unicode = self._coerce_bool(data.get("use-unicode", True), default=True)

        self.models = {}
        for name, m in (data.get("models") or {}).items():
            if isinstance(m, dict):
                self.models[name] = ModelPreset.from_yaml(name, m)
        if not self.models:
            self._add_default_presets()

    def _apply_env(self):
        env_map = {
            "QUERYCHAT_MODEL": ("active_model", str),
            "QUERYCHAT_VERBOSE": ("verbose", lambda v: v.lower() in ("true", "1")),
            "QUERYCHAT_SYSTEM_PROMPT": ("system_prompt", str),
        }
        for env_var, (attr, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val:
                setattr(self, attr, conv(val))

    def save(self, filepath: Optional[str] = None):
        target = Path(filepath) if filepath else (
            Path(self._config_source) if self._config_source else CONFIG_FILE
        )
        target.parent.mkdir(parents=True, exist_ok=True)

        data: Dict[str, Any] = {
            "active-model": self.active_model,
            "system-prompt": self.system_prompt,
            "verbose": self.verbose,
            "token-estimate": self.token_estimate,
            "token-counter": self.token_counter,
            "rate-limit-delay": self.rate_limit_delay,
            "request-timeout": self.request_timeout,
            "model-cache-ttl": self.model_cache_ttl,
            "use-unicode": self.use_unicode,
            "stream-profile": self.stream_profile,
            "models": {name: m.to_yaml() for name, m in self.models.items()},
        }
        with open(target, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        self._config_source = str(target)

    @property
    def config_path(self) -> str:
        return self._config_source or str(CONFIG_FILE)

    def get_active_preset(self) -> ModelPreset:
        if self.active_model in self.models:
            return self.models[self.active_model]
        if self.models:
            return next(iter(self.models.values()))
        return self.get_default_presets()[DEFAULT_ACTIVE_MODEL]

    def set_active_model(self, name: str) -> bool:
        if name in self.models:
            self.active_model = name
            self.save()
            return True
        return False

    def list_models(self) -> List[Dict]:
        from .rendering import get_icon
        return [
            {"name": n, "active": n == self.active_model, "provider": m.provider,
             "model": m.model, "key": get_icon("✓") if m.resolve_api_key() else get_icon("✗"),
             "desc": m.description}
            for n, m in self.models.items()
        ]

    def summary(self) -> dict:
        from .rendering import get_icon
        p = self.get_active_preset()
        check = get_icon("✓")
        cross = get_icon("✗")
        prompt = self.system_prompt.strip()
        return {
            "Active model": f"{self.active_model} → {p.model}",
            "Provider": p.provider,
            "API base": p.api_base or "(provider default)",
            "API key": check if p.resolve_api_key() else f"{cross} not set",
            "System prompt": (prompt[:60] + "…") if len(prompt) > 60 else (prompt or "(none)"),
            "Token estimate": f"{self.token_estimate} ({self.token_counter})",
            "Rate-limit delay": f"{self.rate_limit_delay:g}s",
            "Request timeout": f"{self.request_timeout}s",
            "Model cache TTL": f"{self.model_cache_ttl}s",
            "Stream profile": self.stream_profile,
            "Project": self.project_root,
            "Config": self._config_source or "(defaults)",
        }

    @staticmethod
    def _normalize_enum(value, valid: set, default: str) -> str:
        mode = str(value or default).strip().lower()
        if mode not in valid:
            return default
        return mode

    @staticmethod
    def _coerce_bool(value, default: bool) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in ("1", "true", "yes", "on"):
                return True
            if text in ("0", "false", "no", "off"):
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        return default

    @staticmethod
    def _coerce_positive_int(value, default: int, min_value: int = 1, max_value: int = 100000) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        if parsed < min_value:
            return min_value
        if parsed > max_value:
            return max_value
        return parsed

    @staticmethod
    def _coerce_float(value, default: float, min_value: float, max_value: float) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return default
        return max(min_value, min(max_value, parsed))

    @staticmethod
    def _find_git_root(path: Path) -> Optional[Path]:
        current = path
        while current != current.parent:
            if (current / ".git").exists():
                return current
            current = current.parent
        return None

    def get_config_value(self, key: str) -> Any:
        """Get configuration value by key."""
        if key not in CONFIG_FIELDS:
            return None
        spec = CONFIG_FIELDS[key]
        return getattr(self, spec.field_name, spec.default)

    def set_config_value(self, key: str, value: Any) -> tuple[bool, str]:
        """
        Set configuration value with validation.

        Returns:
            (success, error_message)
        """
        if key == "active-model":
            if value not in self.models:
                return False, f"Model '{value}' not found. Use /model to see available models."
            self.active_model = value
            self.save()
            return True, ""

        is_valid, coerced_value, error_msg = validate_config_value(key, value)
        if not is_valid:
            return False, error_msg

        spec = CONFIG_FIELDS[key]
        setattr(self, spec.field_name, coerced_value)
        self.save()
        return True, ""
