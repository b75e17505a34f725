"""Chat session facade used by the CLI."""

from typing import Any, Callable, Dict, Optional

import requests

from .aggregator import ResponseAggregator, UpdateCallback
from .config import Config, ModelPreset
from .conversation import ConversationState
from .logger import get_logger
from .notifications import Notifier, RecordingNotifier
from .providers import create_transport
from .providers.base import ProviderTransport
from .rendering import render_conversation
from .turn import TurnResult, TurnRunner, TurnState

_log = get_logger(__name__)

PresetTransportFactory = Callable[[ModelPreset], ProviderTransport]


class ChatSession:
    """Owns one conversation and runs its turns against the active preset.

    Credentials and preferences come from ``config`` and are handed to the
    transport when each turn starts.
    """

    def __init__(
        self,
        config: Config,
        notifier: Optional[Notifier] = None,
        *,
        transport_factory: Optional[PresetTransportFactory] = None,
        http_session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.state = ConversationState()
        self.notifier = notifier or RecordingNotifier()
        self._transport_factory = transport_factory
        self._http_session = http_session
        self._runner = TurnRunner(self.state, self._make_transport, self.notifier)
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"turns": 0, "succeeded": 0, "failed": 0, "fallbacks": 0, "retries": 0}

    @property
    def preset(self) -> ModelPreset:
        return self.config.get_active_preset()

    @property
    def model_name(self) -> str:
        return self.preset.model

    @property
    def busy(self) -> bool:
        return self._runner.running

    def _make_transport(self) -> ProviderTransport:
        preset = self.preset
        if self._transport_factory is not None:
            return self._transport_factory(preset)
        return create_transport(preset, self._http_session, timeout=self.config.request_timeout)

    def _sync_runner(self, on_update: Optional[UpdateCallback]) -> None:
        runner = self._runner
        runner.system_prompt = self.config.system_prompt
        runner.rate_limit_delay = self.config.rate_limit_delay
        runner.on_update = on_update
        runner.aggregator = ResponseAggregator(
            self.state, estimate=self.config.token_estimate, counter=self.config.token_counter,
        )

    def submit(self, text: str, on_update: Optional[UpdateCallback] = None) -> TurnResult:
        """Run one turn. Raises ``ValueError`` for blank input and
        ``RuntimeError`` while another turn is still running."""
        if self.busy:
            raise RuntimeError("A turn is already in progress")
        self._sync_runner(on_update)
        result = self._runner.run(text)

        self._stats["turns"] += 1
        self._stats["succeeded" if result.ok else "failed"] += 1
        if TurnState.FALLBACK_STREAMING in result.transitions:
            self._stats["fallbacks"] += 1
        self._stats["retries"] += result.retries
        return result

    def add_message(self, text: str, on_update: Optional[UpdateCallback] = None) -> TurnResult:
        if not self.state.messages:
            raise RuntimeError("No open conversation; submit a first message instead")
        return self.submit(text, on_update)

    def new_conversation(self) -> None:
        self.state.clear()
        self._stats = self._empty_stats()
        _log.info("Started a new conversation")

    def render(self, loading: bool = False) -> str:
        return render_conversation(self.state, self.model_name, loading=loading)

    def last_response(self) -> str:
        msg = self.state.last_assistant()
        return msg.content if msg else ""

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "messages": len(self.state),
            "token_tally": self.state.token_tally,
            "model": f"{self.config.active_model} ({self.preset.provider}/{self.model_name})",
        }
