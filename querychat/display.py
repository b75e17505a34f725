"""Live terminal display of the turn in progress."""

import time
from typing import Callable, Optional

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown

from .conversation import ConversationState
from .rendering import render_message

STREAM_PROFILES = {
    "stable": {"interval": 0.08, "min_chars": 20, "max_silent_ms": 300},
    "smooth": {"interval": 0.06, "min_chars": 12, "max_silent_ms": 250},
    "ultra": {"interval": 0.04, "min_chars": 4, "max_silent_ms": 200},
}


class LiveTranscript:
    """Re-renders the newest message as state changes, throttled by profile.

    Used as a context manager around one turn; ``update`` is the turn's
    ``on_update`` callback. The final state is always flushed on exit.
    """

    def __init__(self, console: Console, model_name: str, *, profile: str = "smooth",
                 clock: Callable[[], float] = time.monotonic):
        self.console = console
        self.model_name = model_name
        self.settings = STREAM_PROFILES.get(profile, STREAM_PROFILES["smooth"])
        self._clock = clock
        self._live: Optional[Live] = None
        self._state: Optional[ConversationState] = None
        self._last_render_at = 0.0
        self._last_chars = 0
        self.renders = 0

    def __enter__(self) -> "LiveTranscript":
        self.console.print()
        self._live = Live(console=self.console, refresh_per_second=8, auto_refresh=False)
        self._live.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._live is None:
            return
        try:
            if self._state is not None:
                self._render(self._state)
        finally:
            self._live.stop()
            self._live = None

    def _markdown(self, state: ConversationState) -> str:
        if not state.messages:
            return ""
        index = len(state.messages) - 1
        msg = state.messages[index]
        return render_message(state, index, self.model_name, loading=msg.in_progress)

    def _render(self, state: ConversationState) -> None:
        text = self._markdown(state)
        self._live.update(Markdown(text))
        self._live.refresh()
        self._last_render_at = self._clock()
        self._last_chars = len(text)
        self.renders += 1

    def update(self, state: ConversationState) -> None:
        self._state = state
        if self._live is None:
            return
        msg = state.messages[-1] if state.messages else None
        if msg is None or not msg.in_progress:
            self._render(state)
            return

        chars = len(self._markdown(state))
        if chars < self._last_chars:
            self._last_chars = 0
        elapsed = self._clock() - self._last_render_at
        growth = chars - self._last_chars
        silent_ready = elapsed >= self.settings["max_silent_ms"] / 1000.0 and growth > 0
        normal_ready = growth >= self.settings["min_chars"] or elapsed >= self.settings["interval"]
        if silent_ready or normal_ready:
            self._render(state)
