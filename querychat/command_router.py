"""Slash-command routing and handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .catalog import ModelCatalog
from .chat import ChatSession
from .config import CONFIG_FIELDS, Config
from .rendering import get_icon, set_use_unicode
from .session import export_conversation_markdown
from .theme import (
    ACCENT as THEME_ACCENT,
    BORDER as THEME_BORDER,
    DIM as THEME_DIM,
    ERROR as THEME_ERROR,
    SUCCESS as THEME_SUCCESS,
    WARN as THEME_WARN,
)
from .ui import SLASH_COMMANDS

_SLASH_ALIASES = {"/h": "/help", "/?": "/help", "/exit": "/quit", "/q": "/quit",
                  "/clear": "/new", "/reset": "/new"}


@dataclass
class CommandContext:
    console: Console
    chat: ChatSession
    config: Config
    catalog: ModelCatalog


CommandHandler = Callable[[CommandContext, list[str]], str]


def _resolve_command(raw_cmd: str) -> str:
    """Resolve abbreviated slash commands via exact/alias/prefix matching."""
    cmd = raw_cmd.lower()

    if cmd == "/":
        return SLASH_COMMANDS[0]
    if cmd in SLASH_COMMANDS:
        return cmd
    if cmd in _SLASH_ALIASES:
        return _SLASH_ALIASES[cmd]

    matches = [candidate for candidate in SLASH_COMMANDS if candidate.startswith(cmd)]
    if matches:
        return matches[0]
    return cmd


def handle_command(
    command: str,
    *,
    console: Console,
    chat: ChatSession,
    config: Config,
    catalog: ModelCatalog,
) -> str:
    """Handle one slash command string. Returns "quit" to end the REPL."""
    parts = command.split()
    if not parts:
        return ""

    cmd = _resolve_command(parts[0])
    args = parts[1:]

    ctx = CommandContext(console=console, chat=chat, config=config, catalog=catalog)
    handler = COMMAND_HANDLERS.get(cmd)
    if not handler:
        console.print(f"  [{THEME_WARN}]Unknown: {cmd}. Try /help[/{THEME_WARN}]")
        return ""
    return handler(ctx, args)


def _show_config_panel(console: Console, config: Config) -> None:
    table = Table(show_header=False, border_style=THEME_BORDER, padding=(0, 2), box=None)
    table.add_column("Key", style=f"bold {THEME_ACCENT}", min_width=14)
    table.add_column("Value", style="#E6EDF3")
    for key, value in config.summary().items():
        table.add_row(key, str(value))
    console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Configuration [/bold {THEME_ACCENT}]",
                        title_align="left", border_style=THEME_BORDER, padding=(0, 1)))


def show_config_panel(console: Console, config: Config) -> None:
    _show_config_panel(console, config)


def _show_preset_table(ctx: CommandContext) -> None:
    table = Table(border_style=THEME_BORDER)
    table.add_column("", width=2)
    table.add_column("Name", style=f"bold {THEME_ACCENT}")
    table.add_column("Provider", style=THEME_DIM)
    table.add_column("Model", style="#E6EDF3")
    table.add_column("Key", style=THEME_DIM)
    table.add_column("Description", style="#8B949E")
    for model in ctx.config.list_models():
        marker = f"[{THEME_SUCCESS}]{get_icon('●')}[/{THEME_SUCCESS}]" if model["active"] else " "
        table.add_row(marker, model["name"], model["provider"], model["model"],
                      model["key"], model["desc"])
    ctx.console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Presets [/bold {THEME_ACCENT}]",
                            title_align="left", border_style=THEME_BORDER))


def _cmd_quit(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    ctx.console.print(f"[{THEME_DIM}]Goodbye![/{THEME_DIM}]")
    return "quit"


def _cmd_help(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    from .ui import render_help

    render_help(ctx.console)
    return ""


def _cmd_new(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    ctx.chat.new_conversation()
    ctx.console.print(f"  [{THEME_SUCCESS}]{get_icon('✓')} New conversation[/{THEME_SUCCESS}]")
    return ""


def _cmd_model(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        _show_preset_table(ctx)
        return ""

    name = args[0]
    if name == ctx.config.active_model:
        ctx.console.print(f"  [{THEME_DIM}]Already on '{name}'[/{THEME_DIM}]")
        return ""
    if not ctx.config.set_active_model(name):
        ctx.console.print(f"  [{THEME_WARN}]Unknown: '{name}'. Use /model to list presets.[/{THEME_WARN}]")
        return ""

    preset = ctx.config.get_active_preset()
    ctx.console.print(
        f"  [{THEME_SUCCESS}]{get_icon('✓')}[/{THEME_SUCCESS}] Switched {get_icon('→')} "
        f"[bold]{name}[/bold] [{THEME_DIM}]({preset.provider}/{preset.model})[/{THEME_DIM}]"
    )
    if preset.api_base:
        ctx.console.print(f"    [{THEME_DIM}]{preset.api_base}[/{THEME_DIM}]")
    return ""


def _cmd_models(ctx: CommandContext, args: list[str]) -> str:
    refresh = bool(args) and args[0].lower() in ("refresh", "--refresh", "-r")
    preset = ctx.config.get_active_preset()
    models = ctx.catalog.get_models(preset, refresh=refresh)
    if not models:
        ctx.console.print(f"  [{THEME_WARN}]No models available for {preset.provider} "
                          f"(check the API key or network)[/{THEME_WARN}]")
        return ""

    table = Table(border_style=THEME_BORDER)
    table.add_column("ID", style=f"bold {THEME_ACCENT}")
    table.add_column("Name", style="#E6EDF3")
    table.add_column("Provider", style=THEME_DIM)
    for model in models:
        table.add_row(model.id, model.name, model.provider)
    ctx.console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Models ({len(models)}) [/bold {THEME_ACCENT}]",
                            title_align="left", border_style=THEME_BORDER))
    return ""


def _cmd_export(ctx: CommandContext, args: list[str]) -> str:
    if not ctx.chat.state.messages:
        ctx.console.print(f"  [{THEME_DIM}]Nothing to export (empty conversation)[/{THEME_DIM}]")
        return ""

    path = export_conversation_markdown(
        ctx.chat.render(),
        ctx.chat.model_name,
        ctx.chat.state.token_tally,
        output_path=args[0] if args else None,
    )
    if path:
        ctx.console.print(f"  [{THEME_SUCCESS}]{get_icon('✓')} Exported to {path}[/{THEME_SUCCESS}]")
    else:
        ctx.console.print(f"  [{THEME_ERROR}]Export failed[/{THEME_ERROR}]")
    return ""


def _cmd_last(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    text = ctx.chat.last_response()
    if not text:
        ctx.console.print(f"  [{THEME_DIM}]No response yet[/{THEME_DIM}]")
        return ""
    ctx.console.print(Markdown(text))
    return ""


def _cmd_config(ctx: CommandContext, args: list[str]) -> str:
    if not args:
        _show_config_panel(ctx.console, ctx.config)
        return ""

    if args[0].lower() == "set" and len(args) >= 3:
        key = args[1]
        value = " ".join(args[2:])
        if key not in CONFIG_FIELDS:
            ctx.console.print(f"  [{THEME_ERROR}]Unknown configuration key: {key}[/{THEME_ERROR}]")
            ctx.console.print(f"  [{THEME_DIM}]Keys: {', '.join(CONFIG_FIELDS)}[/{THEME_DIM}]")
            return ""
        ok, error = ctx.config.set_config_value(key, value)
        if not ok:
            ctx.console.print(f"  [{THEME_ERROR}]{error}[/{THEME_ERROR}]")
            return ""
        if key == "use-unicode":
            set_use_unicode(ctx.config.use_unicode)
        ctx.console.print(
            f"  [{THEME_SUCCESS}]{get_icon('✓')}[/{THEME_SUCCESS}] {key} = "
            f"[bold]{ctx.config.get_config_value(key)}[/bold]"
        )
        return ""

    ctx.console.print("  Usage: /config | /config set <key> <value>")
    return ""


def _cmd_stats(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    table = Table(show_header=False, border_style=THEME_BORDER, padding=(0, 2), box=None)
    table.add_column("Metric", style=f"bold {THEME_ACCENT}", min_width=16)
    table.add_column("Value", style="#E6EDF3")
    for key, value in ctx.chat.stats().items():
        table.add_row(key, f"{value:,}" if isinstance(value, int) else str(value))
    ctx.console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Session [/bold {THEME_ACCENT}]",
                            title_align="left", border_style=THEME_BORDER, padding=(0, 1)))
    return ""


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/quit": _cmd_quit,
    "/help": _cmd_help,
    "/new": _cmd_new,
    "/model": _cmd_model,
    "/models": _cmd_models,
    "/export": _cmd_export,
    "/last": _cmd_last,
    "/config": _cmd_config,
    "/stats": _cmd_stats,
}
