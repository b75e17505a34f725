"""One turn: request, optional streaming fallback, bounded rate-limit retry.

    IDLE -> REQUESTING -> SUCCEEDED
                       -> FALLBACK_STREAMING -> SUCCEEDED | FAILED
                       -> FAILED

A rate-limited request waits a fixed delay and re-enters REQUESTING once.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .aggregator import Completion, ResponseAggregator, UpdateCallback
from .conversation import ConversationState
from .errors import (
    EmptyResponseError,
    MissingCredentialError,
    QueryChatError,
    RateLimitedError,
    TransportError,
    classify_error,
)
from .logger import get_logger
from .notifications import Notification, NotificationAction, Notifier, RecordingNotifier, Severity
from .providers.base import ProviderTransport, RequestPayload

_log = get_logger(__name__)

PENDING_PLACEHOLDER = "..."
LOADING_PLACEHOLDER = "Loading response..."
MAX_RATE_LIMIT_RETRIES = 1
INTERRUPTED_MESSAGE = "Request interrupted"


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    FALLBACK_STREAMING = "fallback_streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TurnResult:
    handle: Optional[int] = None
    transitions: List[TurnState] = field(default_factory=lambda: [TurnState.IDLE])
    completion: Optional[Completion] = None
    error: Optional[QueryChatError] = None
    fell_back: bool = False
    retries: int = 0

    @property
    def state(self) -> TurnState:
        return self.transitions[-1]

    @property
    def ok(self) -> bool:
        return self.state == TurnState.SUCCEEDED


TransportFactory = Callable[[], ProviderTransport]


class TurnRunner:
    """Drives one turn at a time against a ``ConversationState``.

    The transport is resolved per turn through ``transport_factory`` so that
    configuration errors (unknown provider, missing key) end the turn like
    any other failure instead of escaping to the caller.
    """

    def __init__(
        self,
        state: ConversationState,
        transport_factory: TransportFactory,
        notifier: Optional[Notifier] = None,
        *,
        system_prompt: str = "",
        estimate: str = "stream",
        counter: str = "chars",
        rate_limit_delay: float = 5.0,
        on_update: Optional[UpdateCallback] = None,
    ):
        self.state = state
        self.transport_factory = transport_factory
        self.notifier = notifier or RecordingNotifier()
        self.system_prompt = system_prompt
        self.rate_limit_delay = rate_limit_delay
        self.on_update = on_update
        self.aggregator = ResponseAggregator(state, estimate=estimate, counter=counter)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def run(self, text: str) -> TurnResult:
        text = (text or "").strip()
        if not text:
            raise ValueError("Message cannot be empty")
        if self._running:
            raise RuntimeError("A turn is already in progress")

        self._running = True
        result = TurnResult()
        try:
            self.state.add_user(text)
            result.handle = self.state.begin_assistant(PENDING_PLACEHOLDER)
            self._updated()
            try:
                transport = self.transport_factory()
                transport.check_credentials()
            except QueryChatError as e:
                self._fail(result, e)
                return result
            payload = transport.build_payload(self.state, self.system_prompt)
            _log.debug("Payload for %s: %s", transport.label, payload.summary())
            self._issue(transport, payload, result, MAX_RATE_LIMIT_RETRIES)
            return result
        finally:
            if result.handle is not None and self.state.active_handle == result.handle:
                self._abandon(result)
            self._running = False

    # ── State machine ──

    def _enter(self, result: TurnResult, state: TurnState) -> None:
        _log.info("Turn %s -> %s", result.state.value, state.value)
        result.transitions.append(state)

    def _issue(self, transport: ProviderTransport, payload: RequestPayload,
               result: TurnResult, retries_left: int) -> None:
        self._enter(result, TurnState.REQUESTING)
        self._notify(Severity.ANIMATED, f"Querying {transport.name}",
                     f"Using model: {transport.model}")
        try:
            completion = self._request(transport, payload, result)
        except Exception as e:
            err = classify_error(e)
            if isinstance(err, RateLimitedError) and retries_left > 0:
                self._wait_for_rate_limit(result, err)
                self._issue(transport, payload, result, retries_left - 1)
                return
            self._fail(result, err)
            return
        self._succeed(result, completion)

    def _request(self, transport: ProviderTransport, payload: RequestPayload,
                 result: TurnResult) -> Completion:
        if transport.stream_only:
            return self._stream(transport, payload, result.handle)
        try:
            completion = transport.complete(payload)
        except (TransportError, EmptyResponseError) as e:
            err = classify_error(e)
            if (isinstance(err, RateLimitedError)
                    or not transport.supports_streaming or result.fell_back):
                raise
            _log.warning("Non-streaming request failed (%s); falling back to streaming", err)
            result.fell_back = True
            self._enter(result, TurnState.FALLBACK_STREAMING)
            self._reset(result.handle, LOADING_PLACEHOLDER)
            self._notify(Severity.ANIMATED, "Retrying with streaming", str(err))
            return self._stream(transport, payload, result.handle)
        return self.aggregator.apply(result.handle, completion)

    def _stream(self, transport: ProviderTransport, payload: RequestPayload,
                handle: int) -> Completion:
        stream = self.aggregator.stream(handle, transport.parse_chunk, on_update=self.on_update)
        return stream.consume(transport.stream(payload.with_stream()))

    def _wait_for_rate_limit(self, result: TurnResult, err: RateLimitedError) -> None:
        result.retries += 1
        _log.warning("Rate limited (%s); retrying in %.1fs", err, self.rate_limit_delay)
        self._reset(result.handle, PENDING_PLACEHOLDER)
        self._notify(Severity.ANIMATED, "Rate limited",
                     f"Retrying in {self.rate_limit_delay:g}s")
        time.sleep(self.rate_limit_delay)

    def _reset(self, handle: int, placeholder: str) -> None:
        self.state.update(handle, placeholder)
        self.state.set_thinking(handle, "")
        self._updated()

    def _succeed(self, result: TurnResult, completion: Completion) -> None:
        self.state.finalize(result.handle)
        result.completion = completion
        self._enter(result, TurnState.SUCCEEDED)
        tokens = completion.usage_total
        detail = ""
        if tokens:
            detail = f"{tokens} tokens" + (" (estimated)" if completion.estimated else "")
        self._notify(Severity.SUCCESS, "Response received", detail)
        self._updated()

    def _fail(self, result: TurnResult, err: QueryChatError) -> None:
        self.state.fail(result.handle, f"Error: {err}")
        result.error = err
        self._enter(result, TurnState.FAILED)
        action = None
        if isinstance(err, MissingCredentialError):
            action = NotificationAction(err.action, hint="/config")
        self._notify(Severity.FAILURE, err.title, str(err), action)
        self._updated()

    def _abandon(self, result: TurnResult) -> None:
        # Leaves no message in progress when the turn is cut short.
        _log.warning("Turn interrupted; closing message %d", result.handle)
        self.state.fail(result.handle, f"Error: {INTERRUPTED_MESSAGE}")
        result.error = result.error or QueryChatError(INTERRUPTED_MESSAGE)
        self._enter(result, TurnState.FAILED)

    def _notify(self, severity: Severity, title: str, message: str = "",
                action: Optional[NotificationAction] = None) -> None:
        self.notifier.notify(Notification(severity, title, message, action))

    def _updated(self) -> None:
        if self.on_update is not None:
            self.on_update(self.state)
