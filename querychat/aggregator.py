"""Response aggregation: full payloads and incremental streams into one message.

Provider variants translate their wire shapes into ``Completion`` (one full
response) or ``StreamDelta`` (one incremental update). Everything here is
provider-agnostic: it owns ordering, buffering, metadata retention and the
token-tally fallback.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

from .conversation import ConversationState, GroundingMetadata
from .errors import MalformedChunkError
from .logger import get_logger
from .tokenizer import estimate_tokens

__all__ = [
    "Completion",
    "StreamDelta",
    "ResponseAggregator",
    "StreamAggregator",
    "ESTIMATE_POLICIES",
    "split_lines",
]

_log = get_logger(__name__)

# stream: estimate only when a stream never reports usage
# always: also estimate for full responses without usage
# off:    never estimate
ESTIMATE_POLICIES = {"stream", "always", "off"}

DONE_MARKER = "[DONE]"
_IGNORED_SSE_FIELDS = {"event", "id", "retry"}


@dataclass
class Completion:
    text: str = ""
    thought: str = ""
    grounding: Optional[GroundingMetadata] = None
    usage_total: Optional[int] = None
    estimated: bool = False


@dataclass
class StreamDelta:
    text: str = ""
    thought: str = ""
    grounding: Optional[GroundingMetadata] = None
    usage_total: Optional[int] = None


ChunkParser = Callable[[Dict[str, Any]], Optional[StreamDelta]]
UpdateCallback = Callable[[ConversationState], None]
StreamEvent = Union[str, bytes, StreamDelta]

# Raised by parsers when a decoded object has the wrong field types.
_SHAPE_ERRORS = (TypeError, ValueError, AttributeError, KeyError, IndexError)


def _check_delta(delta: StreamDelta, line: str) -> None:
    if not isinstance(delta.text, str) or not isinstance(delta.thought, str):
        raise MalformedChunkError(line, "non-string text fragment")
    usage = delta.usage_total
    if usage is not None and (isinstance(usage, bool) or not isinstance(usage, int)):
        raise MalformedChunkError(line, "non-integer usage total")
    if delta.grounding is not None and not isinstance(delta.grounding, GroundingMetadata):
        raise MalformedChunkError(line, "unexpected grounding metadata")


def split_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Reassemble text lines from raw byte chunks.

    Chunk boundaries may fall anywhere, including inside a multi-byte UTF-8
    sequence or in the middle of a JSON object; only complete lines are
    yielded. A trailing line without a newline is yielded at the end.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    for chunk in chunks:
        if not chunk:
            continue
        pending += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        while "\n" in pending:
            line, pending = pending.split("\n", 1)
            yield line.rstrip("\r")
    pending += decoder.decode(b"", final=True)
    if pending:
        yield pending.rstrip("\r")


class StreamAggregator:
    """Folds a stream of SSE lines or pre-parsed deltas into one message."""

    def __init__(
        self,
        state: ConversationState,
        handle: int,
        parse_chunk: ChunkParser,
        *,
        estimate: str = "stream",
        counter: str = "chars",
        on_update: Optional[UpdateCallback] = None,
    ):
        self.state = state
        self.handle = handle
        self.parse_chunk = parse_chunk
        self.estimate = estimate
        self.counter = counter
        self.on_update = on_update

        self.buffer = ""
        self.thought = ""
        self.grounding: Optional[GroundingMetadata] = None
        self.usage_total: Optional[int] = None
        self.fragments = 0
        self.skipped = 0
        self.done = False
        self._result: Optional[Completion] = None

    @property
    def finished(self) -> bool:
        return self._result is not None

    def feed_line(self, line: Union[str, bytes]) -> bool:
        """Process one stream line. Returns False once the end marker is seen."""
        if self.done:
            return False
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line or line.startswith(":"):
            return True

        name, sep, value = line.partition(":")
        if sep and name in _IGNORED_SSE_FIELDS:
            return True
        payload = value.strip() if sep and name == "data" else line
        if not payload:
            return True
        if payload == DONE_MARKER:
            self.done = True
            return False

        try:
            delta = self._decode(payload)
        except MalformedChunkError as exc:
            self.skipped += 1
            _log.warning("Skipping malformed stream line (%s)", exc)
            return True
        self.feed_delta(delta)
        return True

    def _decode(self, payload: str) -> StreamDelta:
        try:
            obj = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedChunkError(payload, f"invalid JSON ({exc.msg})")
        if not isinstance(obj, dict):
            raise MalformedChunkError(payload, "expected a JSON object")
        try:
            delta = self.parse_chunk(obj)
        except _SHAPE_ERRORS as exc:
            raise MalformedChunkError(payload, f"unrecognized chunk shape ({exc})")
        if delta is None:
            raise MalformedChunkError(payload, "unrecognized chunk shape")
        _check_delta(delta, payload)
        return delta

    def feed_delta(self, delta: StreamDelta) -> None:
        changed = False
        if delta.thought:
            self.thought += delta.thought
            self.state.set_thinking(self.handle, self.thought)
            changed = True
        if delta.text:
            self.buffer += delta.text
            self.fragments += 1
            self.state.update(self.handle, self.buffer)
            changed = True
        if delta.grounding is not None:
            self.grounding = delta.grounding
        if delta.usage_total is not None:
            self.usage_total = delta.usage_total
        if changed:
            self._notify()

    def consume(self, events: Iterable[StreamEvent]) -> Completion:
        iterator = iter(events)
        try:
            for event in iterator:
                if isinstance(event, StreamDelta):
                    try:
                        _check_delta(event, repr(event))
                    except MalformedChunkError as exc:
                        self.skipped += 1
                        _log.warning("Skipping malformed stream delta (%s)", exc)
                        continue
                    self.feed_delta(event)
                elif not self.feed_line(event):
                    break
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
        return self.finish()

    def finish(self) -> Completion:
        """Apply retained metadata and the token count exactly once."""
        if self._result is not None:
            return self._result

        if not self.fragments:
            _log.warning("Stream ended without any text fragments")
        self.state.update(self.handle, self.buffer)
        self.state.set_thinking(self.handle, self.thought)
        self.state.replace_grounding(self.grounding, owner=self.handle)

        estimated = False
        tokens = self.usage_total
        if tokens is None and self.estimate != "off":
            tokens = estimate_tokens(self.buffer, self.counter)
            estimated = True
            _log.info("No usage reported; estimated %d tokens from %d chars",
                      tokens, len(self.buffer))
        if tokens:
            self.state.add_tokens(tokens)

        if self.skipped:
            _log.info("Stream finished with %d malformed line(s) skipped", self.skipped)
        self._result = Completion(
            text=self.buffer,
            thought=self.thought,
            grounding=self.grounding,
            usage_total=tokens,
            estimated=estimated,
        )
        self._notify()
        return self._result

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self.state)


class ResponseAggregator:
    """Applies provider responses to a ``ConversationState``."""

    def __init__(self, state: ConversationState, *, estimate: str = "stream",
                 counter: str = "chars"):
        if estimate not in ESTIMATE_POLICIES:
            raise ValueError(f"Unknown estimation policy: {estimate}")
        self.state = state
        self.estimate = estimate
        self.counter = counter

    def apply(self, handle: int, completion: Completion) -> Completion:
        """Full-response mode: answer, thought, grounding and usage in one go."""
        state = self.state
        state.update(handle, completion.text)
        state.set_thinking(handle, completion.thought)
        state.replace_grounding(completion.grounding, owner=handle)

        if completion.usage_total is not None:
            state.add_tokens(completion.usage_total)
        elif self.estimate == "always":
            completion.usage_total = estimate_tokens(completion.text, self.counter)
            completion.estimated = True
            state.add_tokens(completion.usage_total)
        return completion

    def stream(
        self,
        handle: int,
        parse_chunk: ChunkParser,
        on_update: Optional[UpdateCallback] = None,
    ) -> StreamAggregator:
        return StreamAggregator(
            self.state,
            handle,
            parse_chunk,
            estimate=self.estimate,
            counter=self.counter,
            on_update=on_update,
        )
