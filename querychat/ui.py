"""Terminal UI primitives: prompt, help text and the slash-command palette."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.styles import Style

from .rendering import get_icon
from .theme import ACCENT as THEME_ACCENT, PROMPT as THEME_PROMPT

PTK_STYLE = Style.from_dict({
    "completion-menu": "bg:default",
    "completion-menu.completion": "bg:default #C8D8EE",
    "completion-menu.completion.current": "bg:#1E2834 #E7EEF8",
    "completion-menu.meta.completion": "bg:default #7AA7E8",
    "completion-menu.meta.completion.current": "bg:#1E2834 #7AA7E8",
    "completion-menu.command": "#57DB9C",
    "completion-menu.args": "#9BB0C9",
    "completion-menu.description": "#7AA7E8",
    "scrollbar.background": "bg:default",
    "scrollbar.button": "bg:default",
})


@dataclass(frozen=True)
class SlashCommandSpec:
    command: str
    usage: str
    description: str
    keywords: tuple[str, ...] = ()


SLASH_COMMAND_SPECS: tuple[SlashCommandSpec, ...] = (
    SlashCommandSpec("/help", "/help", "Show help", ("docs", "usage", "commands")),
    SlashCommandSpec("/new", "/new", "New conversation", ("clear", "reset")),
    SlashCommandSpec("/model", "/model [name]", "Show or switch model", ("llm", "provider", "preset")),
    SlashCommandSpec("/models", "/models [refresh]", "List provider models", ("catalog", "list")),
    SlashCommandSpec("/export", "/export [path]", "Export conversation", ("save", "markdown", "copy")),
    SlashCommandSpec("/last", "/last", "Show last response", ("copy", "answer")),
    SlashCommandSpec("/config", "/config [set <key> <value>]", "Show or change config", ("settings",)),
    SlashCommandSpec("/stats", "/stats", "Session stats", ("tokens", "usage")),
    SlashCommandSpec("/quit", "/quit", "Quit", ("exit",)),
)

SLASH_COMMANDS = [spec.command for spec in SLASH_COMMAND_SPECS]


def build_banner(version: str) -> str:
    return (
        f"[bold {THEME_ACCENT}]querychat[/bold {THEME_ACCENT}] "
        f"[dim]v{version} · terminal chat for Gemini, Portkey and friends[/dim]"
    )


def build_help_text() -> str:
    usage_width = max(len(spec.usage) for spec in SLASH_COMMAND_SPECS)
    lines = ["", f"[bold {THEME_ACCENT}]Commands:[/bold {THEME_ACCENT}]"]
    for spec in SLASH_COMMAND_SPECS:
        lines.append(f"  {spec.usage:<{usage_width}}  {spec.description}")

    lines.extend([
        "",
        f"[bold {THEME_ACCENT}]Tips:[/bold {THEME_ACCENT}]",
        "  Esc → Enter   Multi-line input (or paste multi-line text)",
        "  /              Show command menu",
        "  Ctrl-D ×2      Exit safely",
    ])
    return "\n".join(lines)


def render_help(console) -> None:
    console.print(build_help_text())
    console.print()


def make_prompt_html() -> HTML:
    return HTML(
        f'<style fg="{THEME_PROMPT}">querychat</style>'
        f'<style fg="#66788A"> {get_icon("›")} </style>'
    )


def render_startup(console, config) -> None:
    preset = config.get_active_preset()
    key = preset.resolve_api_key()
    key_status = f"[green]{get_icon('✓')}[/green]" if key else f"[red]{get_icon('✗')}[/red]"

    console.print(
        f"[dim]model[/dim] [bold]{config.active_model}[/bold] [dim]{get_icon('→')}[/dim] {preset.model}"
        f" [dim]· provider[/dim] {preset.provider}"
        f" [dim]· key[/dim] {key_status}"
    )
    if preset.api_base:
        console.print(f"[dim]api[/dim] {preset.api_base}")
    console.print(f"[dim]config[/dim] {config._config_source or '(defaults)'}")
    console.print("[dim]/help · /model · /new · Ctrl-D to exit[/dim]")
    console.print()


class SlashCommandCompleter(Completer):
    """Slash-command palette with prefix, then substring, then keyword matching."""

    def __init__(self, specs: Sequence[SlashCommandSpec] = SLASH_COMMAND_SPECS):
        self.specs = list(specs)
        self.usage_width = max(len(spec.usage) for spec in self.specs)

    def _rank(self, token: str, index: int, spec: SlashCommandSpec):
        query = token.lower().lstrip("/")
        name = spec.command.lstrip("/")
        if name.startswith(query):
            return (0, 0, index)
        pos = name.find(query)
        if pos >= 0:
            return (1, pos, index)
        pos = " ".join((spec.description, *spec.keywords)).lower().find(query)
        if pos >= 0:
            return (2, pos, index)
        return None

    def _display(self, spec: SlashCommandSpec):
        args = spec.usage[len(spec.command):]
        gap = " " * max(2, self.usage_width - len(spec.usage) + 1)
        display = [("class:completion-menu.command", spec.command)]
        if args:
            display.append(("class:completion-menu.args", args))
        display.append(("", gap))
        display.append(("class:completion-menu.description", spec.description))
        return display

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor.lstrip()
        if not text.startswith("/") or " " in text:
            return

        ranked = []
        for index, spec in enumerate(self.specs):
            key = self._rank(text, index, spec)
            if key is not None:
                ranked.append((key, spec))
        ranked.sort(key=lambda item: item[0])

        for _, spec in ranked:
            yield Completion(
                text=spec.command,
                start_position=-len(text),
                display=self._display(spec),
            )
