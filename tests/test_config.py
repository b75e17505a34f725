"""Tests for configuration loading, validation and serialization."""

import pytest
import yaml

import querychat.config as config_module
from querychat.config import (
    CONFIG_FIELDS,
    DEFAULT_ACTIVE_MODEL,
    Config,
    ModelPreset,
    _validate_bool,
    _validate_enum,
    _validate_float_range,
    _validate_int_range,
    validate_config_value,
)


class TestConfigLoad:
    """Config.load() from YAML files."""

    def test_load_from_yaml(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        assert config.active_model == "flash"
        assert config.system_prompt == "Be brief."
        assert config.rate_limit_delay == 2.0
        assert config.request_timeout == 60
        assert config.model_cache_ttl == 600
        assert config.stream_profile == "ultra"
        assert config.config_path == str(config_yaml_file.resolve())
        assert config.project_root == str(tmp_dir.resolve())

    def test_load_models(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        assert set(config.models) == {"flash", "gateway"}
        gateway = config.models["gateway"]
        assert isinstance(gateway, ModelPreset)
        assert gateway.provider == "portkey"
        assert gateway.virtual_key == "vk-key"
        assert gateway.temperature == 0.5
        assert gateway.max_tokens == 1024
        assert gateway.capabilities == {"search-tool": False}

    def test_load_defaults_when_no_config(self, tmp_dir):
        config = Config.load(str(tmp_dir))
        assert config.active_model == DEFAULT_ACTIVE_MODEL
        assert {"gemini-flash", "gemini-2.5-pro", "portkey", "gpt-4o"} <= set(config.models)
        assert config.get_active_preset().provider == "gemini"
        assert config.config_path == str(config_module.CONFIG_FILE)

    def test_global_config_used_without_project_file(self, tmp_dir, sample_config_data):
        config_module.CONFIG_DIR.mkdir(parents=True)
        with open(config_module.CONFIG_FILE, "w") as f:
            yaml.dump(sample_config_data, f)
        config = Config.load(str(tmp_dir))
        assert config.active_model == "flash"

    def test_git_root_config(self, tmp_dir, sample_config_data):
        (tmp_dir / ".git").mkdir()
        with open(tmp_dir / ".querychat.yml", "w") as f:
            yaml.dump(sample_config_data, f)
        nested = tmp_dir / "src" / "pkg"
        nested.mkdir(parents=True)
        config = Config.load(str(nested))
        assert config.active_model == "flash"

    def test_invalid_values_normalized(self, tmp_dir, sample_config_data):
        sample_config_data.update({
            "token-estimate": "bogus",
            "stream-profile": "turbo",
            "request-timeout": 9999,
            "rate-limit-delay": "soon",
        })
        with open(tmp_dir / ".querychat.yml", "w") as f:
            yaml.dump(sample_config_data, f)
        config = Config.load(str(tmp_dir))
        assert config.token_estimate == "stream"
        assert config.stream_profile == "smooth"
        assert config.request_timeout == 600
        assert config.rate_limit_delay == 5.0

    def test_unreadable_yaml_falls_back_to_defaults(self, tmp_dir):
        (tmp_dir / ".querychat.yml").write_text("models: [unclosed\n")
        config = Config.load(str(tmp_dir))
        assert DEFAULT_ACTIVE_MODEL in config.models

    def test_env_overrides(self, config_yaml_file, tmp_dir, monkeypatch):
        monkeypatch.setenv("QUERYCHAT_MODEL", "gateway")
        monkeypatch.setenv("QUERYCHAT_VERBOSE", "true")
        monkeypatch.setenv("QUERYCHAT_SYSTEM_PROMPT", "Answer in French.")
        config = Config.load(str(tmp_dir))
        assert config.active_model == "gateway"
        assert config.verbose is True
        assert config.system_prompt == "Answer in French."

    def test_dotenv_does_not_override_environment(self, tmp_dir, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        (tmp_dir / ".env").write_text("GEMINI_API_KEY=from-file\n")
        config = Config.load(str(tmp_dir))
        assert config.get_active_preset().resolve_api_key() == "from-env"


class TestConfigNormalization:
    """Value normalization helpers."""

    def test_normalize_enum(self):
        assert Config._normalize_enum("ALWAYS", {"stream", "always"}, "stream") == "always"
        assert Config._normalize_enum(None, {"stream"}, "stream") == "stream"
        assert Config._normalize_enum("x", {"stream"}, "stream") == "stream"

    def test_coerce_bool(self):
        assert Config._coerce_bool(True, False) is True
        assert Config._coerce_bool("yes", False) is True
        assert Config._coerce_bool("off", True) is False
        assert Config._coerce_bool("garbage", True) is True
        assert Config._coerce_bool(0, True) is False

    def test_coerce_positive_int(self):
        assert Config._coerce_positive_int(5, 10, 1, 100) == 5
        assert Config._coerce_positive_int(-1, 10, 1, 100) == 1
        assert Config._coerce_positive_int(200, 10, 1, 100) == 100
        assert Config._coerce_positive_int("bad", 10, 1, 100) == 10

    def test_coerce_float(self):
        assert Config._coerce_float("2.5", 5.0, 0.0, 10.0) == 2.5
        assert Config._coerce_float(-3, 5.0, 0.0, 10.0) == 0.0
        assert Config._coerce_float(None, 5.0, 0.0, 10.0) == 5.0


class TestModelPreset:
    """ModelPreset key resolution and YAML mapping."""

    def test_resolve_api_key_direct(self):
        preset = ModelPreset(name="t", provider="gemini", model="m", api_key="k-123")
        assert preset.resolve_api_key() == "k-123"

    def test_resolve_api_key_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "k-env")
        preset = ModelPreset(name="t", provider="gemini", model="m", api_key_env="MY_KEY")
        assert preset.resolve_api_key() == "k-env"

    def test_resolve_provider_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gem")
        monkeypatch.setenv("OPENAI_API_KEY", "oai")
        assert ModelPreset(name="a", provider="gemini-sdk", model="m").resolve_api_key() == "gem"
        assert ModelPreset(name="b", provider="litellm", model="openai/gpt-4o").resolve_api_key() == "oai"
        assert ModelPreset(name="c", provider="litellm", model="anthropic/x").resolve_api_key() is None

    def test_resolve_virtual_key(self, monkeypatch):
        preset = ModelPreset(name="p", provider="portkey", model="gpt-4o")
        assert preset.resolve_virtual_key() is None
        monkeypatch.setenv("PORTKEY_VIRTUAL_KEY", "vk")
        assert preset.resolve_virtual_key() == "vk"

    def test_yaml_round_trip(self):
        preset = ModelPreset(
            name="g", provider="portkey", model="gpt-4o", api_key_env="PK",
            virtual_key="vk", top_p=0.8, description="gateway",
            capabilities={"search-tool": False},
        )
        entry = preset.to_yaml()
        assert entry["api-key-env"] == "PK"
        assert "api-key" not in entry
        assert ModelPreset.from_yaml("g", entry) == preset

    def test_from_yaml_normalizes_provider(self):
        preset = ModelPreset.from_yaml("x", {"provider": " Gemini ", "capabilities": "junk"})
        assert preset.provider == "gemini"
        assert preset.model == "gemini-2.0-flash"
        assert preset.capabilities == {}


class TestValidateConfigValue:
    """validate_config_value() for all field types."""

    def test_every_field_is_registered(self):
        assert set(CONFIG_FIELDS) == {
            "active-model", "system-prompt", "verbose", "token-estimate", "token-counter",
            "rate-limit-delay", "request-timeout", "model-cache-ttl", "use-unicode",
            "stream-profile",
        }

    def test_unknown_key(self):
        valid, _, err = validate_config_value("nonexistent-key", "whatever")
        assert not valid
        assert "Unknown" in err

    def test_bool_field(self):
        assert validate_config_value("use-unicode", "off") == (True, False, "")

    def test_int_field(self):
        valid, val, _ = validate_config_value("request-timeout", "60")
        assert valid
        assert val == 60

    def test_int_field_out_of_range(self):
        valid, val, err = validate_config_value("request-timeout", "999")
        assert not valid
        assert "between" in err.lower()
        assert val == 600

    def test_float_field(self):
        valid, val, _ = validate_config_value("rate-limit-delay", "0.5")
        assert valid
        assert val == 0.5

    def test_enum_field(self):
        assert validate_config_value("token-estimate", "ALWAYS")[:2] == (True, "always")
        assert not validate_config_value("token-counter", "words")[0]

    def test_active_model_passthrough(self):
        assert validate_config_value("active-model", "anything") == (True, "anything", "")

    def test_raw_validators(self):
        assert _validate_int_range("x", 1, 2)[0] is False
        assert _validate_float_range("1e9", 0.0, 10.0)[:2] == (False, 10.0)
        assert _validate_enum("a", {"a", "b"}) == (True, "a", "")
        assert _validate_bool("on")[:2] == (True, True)
        assert _validate_bool(1)[0] is False


class TestConfigSave:
    """Config.save() round-trip and mutation helpers."""

    def test_save_and_reload(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        config.system_prompt = "Changed."
        config.save()

        with open(config_yaml_file) as f:
            raw = yaml.safe_load(f)
        assert raw["system-prompt"] == "Changed."
        assert raw["models"]["gateway"]["virtual-key"] == "vk-key"

        reloaded = Config.load(str(tmp_dir))
        assert reloaded.system_prompt == "Changed."
        assert reloaded.models == config.models

    def test_defaults_save_to_global_file(self, tmp_dir):
        config = Config.load(str(tmp_dir))
        config.save()
        assert config_module.CONFIG_FILE.exists()

    def test_set_config_value(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        ok, err = config.set_config_value("token-estimate", "always")
        assert ok and err == ""
        assert config.token_estimate == "always"
        assert yaml.safe_load(config_yaml_file.read_text())["token-estimate"] == "always"

    def test_set_config_value_rejects_invalid(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        ok, err = config.set_config_value("stream-profile", "turbo")
        assert not ok
        assert err.startswith("Must be one of")
        assert config.stream_profile == "ultra"

    def test_set_active_model(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        assert config.set_active_model("gateway")
        assert config.get_active_preset().name == "gateway"
        assert not config.set_active_model("nope")
        ok, err = config.set_config_value("active-model", "nope")
        assert not ok
        assert "not found" in err

    def test_get_config_value(self, config_yaml_file, tmp_dir):
        config = Config.load(str(tmp_dir))
        assert config.get_config_value("model-cache-ttl") == 600
        assert config.get_config_value("nope") is None


def test_list_models_and_summary(config_yaml_file, tmp_dir):
    config = Config.load(str(tmp_dir))
    rows = config.list_models()
    assert [r["name"] for r in rows] == ["flash", "gateway"]
    assert rows[0]["active"] is True
    assert rows[0]["key"] == "✓"

    summary = config.summary()
    assert summary["Active model"] == "flash → gemini-2.0-flash"
    assert summary["System prompt"] == "Be brief."
    assert summary["Stream profile"] == "ultra"


@pytest.mark.parametrize("provider", ["gemini", "gemini-sdk", "portkey", "litellm"])
def test_default_presets_cover_every_provider(provider):
    assert any(p.provider == provider for p in Config.get_default_presets().values())
