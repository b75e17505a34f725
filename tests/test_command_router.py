from rich.markdown import Markdown
from rich.panel import Panel

from querychat.aggregator import Completion
from querychat.catalog import ModelInfo
from querychat.chat import ChatSession
from querychat.command_router import _resolve_command, handle_command
from querychat.config import Config
from querychat.rendering import get_icon

from conftest import FakeTransport


class DummyConsole:
    def __init__(self):
        self.messages = []

    def print(self, *args, **kwargs):
        self.messages.append((args, kwargs))

    def text(self) -> str:
        return "\n".join(str(a) for args, _ in self.messages for a in args if isinstance(a, str))

    def renderables(self, kind):
        return [a for args, _ in self.messages for a in args if isinstance(a, kind)]


class DummyCatalog:
    def __init__(self, models=()):
        self.models = list(models)
        self.calls = []

    def get_models(self, preset, refresh=False):
        self.calls.append((preset.name, refresh))
        return list(self.models)


def _setup(tmp_dir, completes=()):
    config = Config.load(str(tmp_dir))
    transport = FakeTransport(completes=list(completes))
    chat = ChatSession(config, transport_factory=lambda preset: transport)
    return config, chat, DummyConsole(), DummyCatalog()


def _run(command, config, chat, console, catalog):
    return handle_command(command, console=console, chat=chat, config=config, catalog=catalog)


def test_resolve_command_aliases_and_prefixes():
    assert _resolve_command("/q") == "/quit"
    assert _resolve_command("/clear") == "/new"
    assert _resolve_command("/EXP") == "/export"
    assert _resolve_command("/mod") == "/model"
    assert _resolve_command("/") == "/help"
    assert _resolve_command("/zzz") == "/zzz"


def test_quit_returns_quit(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    assert _run("/exit", config, chat, console, catalog) == "quit"
    assert "Goodbye" in console.text()


def test_unknown_command(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    assert _run("/zzz", config, chat, console, catalog) == ""
    assert "Unknown: /zzz" in console.text()


def test_blank_command_is_noop(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    assert _run("   ", config, chat, console, catalog) == ""
    assert console.messages == []


def test_model_switch(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/model gateway", config, chat, console, catalog)
    assert config.active_model == "gateway"
    assert chat.model_name == "gpt-4o"
    assert "Switched" in console.text()
    assert Config.load(str(tmp_dir)).active_model == "gateway"


def test_model_already_active_and_unknown(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/model flash", config, chat, console, catalog)
    _run("/model nope", config, chat, console, catalog)
    text = console.text()
    assert "Already on 'flash'" in text
    assert "Unknown: 'nope'" in text
    assert config.active_model == "flash"


def test_model_without_args_lists_presets(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/model", config, chat, console, catalog)
    assert len(console.renderables(Panel)) == 1


def test_models_uses_catalog(config_yaml_file, tmp_dir):
    config, chat, console, _ = _setup(tmp_dir)
    catalog = DummyCatalog([ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", "google")])
    _run("/models refresh", config, chat, console, catalog)
    assert catalog.calls == [("flash", True)]
    assert len(console.renderables(Panel)) == 1


def test_models_empty_listing_warns(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/models", config, chat, console, catalog)
    assert catalog.calls == [("flash", False)]
    assert "No models available for gemini" in console.text()


def test_new_clears_conversation(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir, [Completion(text="hi", usage_total=3)])
    chat.submit("hello")
    _run("/new", config, chat, console, catalog)
    assert len(chat.state) == 0
    assert chat.state.token_tally == 0
    assert "New conversation" in console.text()


def test_export_empty_and_to_path(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir, [Completion(text="Hi there", usage_total=5)])
    _run("/export", config, chat, console, catalog)
    assert "Nothing to export" in console.text()

    chat.submit("Hello")
    target = tmp_dir / "out" / "chat.md"
    _run(f"/export {target}", config, chat, console, catalog)
    content = target.read_text(encoding="utf-8")
    assert content.startswith("# Conversation with gemini-2.0-flash")
    assert "- **Token Tally**: 5" in content
    assert "### gemini-2.0-flash (Token Tally: 5)\n\nHi there" in content
    assert f"Exported to {target}" in console.text()


def test_export_default_location(config_yaml_file, tmp_dir, isolated_home):
    config, chat, console, catalog = _setup(tmp_dir, [Completion(text="ok")])
    chat.submit("Hello")
    _run("/export", config, chat, console, catalog)
    exported = list((isolated_home / "exports").glob("conversation-*.md"))
    assert len(exported) == 1


def test_last_response(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir, [Completion(text="**bold** answer")])
    _run("/last", config, chat, console, catalog)
    assert "No response yet" in console.text()

    chat.submit("q")
    _run("/last", config, chat, console, catalog)
    assert len(console.renderables(Markdown)) == 1


def test_config_set(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/config set token-estimate always", config, chat, console, catalog)
    assert config.token_estimate == "always"
    assert "token-estimate = [bold]always" in console.text()


def test_config_set_system_prompt_keeps_spaces(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/config set system-prompt Answer in one line.", config, chat, console, catalog)
    assert config.system_prompt == "Answer in one line."


def test_config_set_use_unicode_switches_icons(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    try:
        _run("/config set use-unicode off", config, chat, console, catalog)
        assert get_icon("✓") == "[OK]"
    finally:
        _run("/config set use-unicode on", config, chat, console, catalog)
    assert get_icon("✓") == "✓"


def test_config_set_errors(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/config set nope 1", config, chat, console, catalog)
    _run("/config set request-timeout 1", config, chat, console, catalog)
    _run("/config set", config, chat, console, catalog)
    text = console.text()
    assert "Unknown configuration key: nope" in text
    assert "Must be between 5 and 600" in text
    assert "Usage: /config" in text
    assert config.request_timeout == 60


def test_config_and_stats_panels(config_yaml_file, tmp_dir):
    config, chat, console, catalog = _setup(tmp_dir)
    _run("/config", config, chat, console, catalog)
    _run("/stats", config, chat, console, catalog)
    assert len(console.renderables(Panel)) == 2
