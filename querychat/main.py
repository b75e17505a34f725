"""
querychat — chat with Gemini, Portkey and litellm-backed models from the terminal.

Commands: querychat chat | ask | models | config
"""

import os
import sys

import click
from rich.console import Console
from rich.markdown import Markdown

from . import __version__
from .catalog import get_catalog
from .chat import ChatSession
from .config import CONFIG_DIR, HISTORY_FILE, Config
from .display import LiveTranscript
from .logger import setup_logger
from .notifications import ConsoleNotifier
from .rendering import set_use_unicode
from .ui import build_banner

console = Console()


def _load_config(project_dir: str, model, verbose: bool = False) -> Config:
    config = Config.load(project_dir)
    if model:
        if model not in config.models:
            console.print(f"[red]Unknown model preset: {model}[/red]")
            console.print(f"[dim]Available: {', '.join(config.models)}[/dim]")
            sys.exit(1)
        config.active_model = model
    if verbose:
        config.verbose = True
    setup_logger(verbose=config.verbose)
    set_use_unicode(config.use_unicode)
    return config


def _run_turn(chat: ChatSession, text: str, config: Config) -> None:
    try:
        with LiveTranscript(console, chat.model_name, profile=config.stream_profile) as live:
            chat.submit(text, on_update=live.update)
    except KeyboardInterrupt:
        console.print("\n[yellow]  Interrupted.[/yellow]")
    except Exception as error:
        console.print(f"\n[red]  Error: {error}[/red]")
        if config.verbose:
            import traceback

            console.print(f"[dim]{traceback.format_exc()}[/dim]")


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="querychat")
@click.pass_context
def cli(ctx):
    """querychat — terminal chat for Gemini, Portkey and friends."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.option("--model", "-m", default=None, help="Model preset name")
@click.option("--system-prompt", "-s", default=None, help="System prompt override")
@click.option("--project-dir", "-d", default=".", help="Directory to load config from")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def chat(model, system_prompt, project_dir, verbose):
    """Start an interactive session."""
    console.print(build_banner(__version__))
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, model, verbose)
    if system_prompt is not None:
        config.system_prompt = system_prompt

    from .command_router import handle_command
    from .ui import PTK_STYLE, SlashCommandCompleter, make_prompt_html, render_startup

    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.shortcuts import CompleteStyle

    render_startup(console, config)

    session = ChatSession(config, ConsoleNotifier(console, quiet_success=True))
    catalog = get_catalog(config.model_cache_ttl)

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    prompt_session = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        multiline=False,
        completer=SlashCommandCompleter(),
        complete_while_typing=True,
        style=PTK_STYLE,
        complete_style=CompleteStyle.COLUMN,
    )

    repl_kb = KeyBindings()

    @repl_kb.add("escape", "enter")
    def _newline(event):
        event.current_buffer.insert_text("\n")

    pending_ctrl_d_exit = False

    while True:
        try:
            user_input = prompt_session.prompt(make_prompt_html(), key_bindings=repl_kb).strip()
            pending_ctrl_d_exit = False
        except EOFError:
            if pending_ctrl_d_exit:
                console.print("\n[dim]Goodbye![/dim]")
                break
            pending_ctrl_d_exit = True
            console.print("\n[dim]Press Ctrl-D again to exit.[/dim]")
            continue
        except KeyboardInterrupt:
            console.print("\n[dim]Goodbye![/dim]")
            break

        if not user_input:
            continue

        if user_input.startswith("/"):
            result = handle_command(
                user_input,
                console=console,
                chat=session,
                config=config,
                catalog=catalog,
            )
            if result == "quit":
                break
            continue

        _run_turn(session, user_input, config)


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--model", "-m", default=None, help="Model preset name")
@click.option("--project-dir", "-d", default=".")
@click.option("--plain", is_flag=True, help="Print raw markdown instead of rendering it")
def ask(message, model, project_dir, plain):
    """Run a single turn and print the transcript."""
    config = _load_config(project_dir, model)
    session = ChatSession(config, ConsoleNotifier(console, quiet_success=True))
    result = session.submit(" ".join(message))

    transcript = session.render()
    if plain:
        click.echo(transcript)
    else:
        console.print(Markdown(transcript))
    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--model", "-m", default=None, help="Model preset name")
@click.option("--refresh", is_flag=True, help="Ignore the cached list")
@click.option("--project-dir", "-d", default=".")
def models(model, refresh, project_dir):
    """List the models the active provider offers."""
    from .command_router import handle_command

    config = _load_config(project_dir, model)
    handle_command(
        "/models refresh" if refresh else "/models",
        console=console,
        chat=ChatSession(config),
        config=config,
        catalog=get_catalog(config.model_cache_ttl),
    )


@cli.command("config")
@click.option("--project-dir", "-d", default=".")
def config_cmd(project_dir):
    """Show configuration."""
    from .command_router import show_config_panel

    cfg = Config.load(project_dir)
    set_use_unicode(cfg.use_unicode)
    show_config_panel(console, cfg)


if __name__ == "__main__":
    cli()
