"""Conversation state: the message log plus per-turn display metadata."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

__all__ = [
    "Role",
    "Message",
    "GroundingSource",
    "GroundingMetadata",
    "ConversationState",
]

_last_timestamp = 0


def _next_timestamp() -> int:
    """Millisecond clock that never repeats within a process."""
    global _last_timestamp
    now = int(time.time() * 1000)
    if now <= _last_timestamp:
        now = _last_timestamp + 1
    _last_timestamp = now
    return now


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


@dataclass
class Message:
    role: Role
    content: str
    timestamp: int = field(default_factory=_next_timestamp)
    in_progress: bool = False

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class GroundingSource:
    title: str = ""
    uri: str = ""


@dataclass
class GroundingMetadata:
    """Citation chunks and search queries reported for one answer.

    ``sources`` keeps the provider's chunk order; ``None`` marks a chunk
    without a web source so indices stay aligned with the provider's
    citation indices.
    """

    sources: List[Optional[GroundingSource]] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)


class ConversationState:
    """Ordered message log, token tally and the current turn's metadata.

    Exactly one owner mutates a state at a time. The in-progress assistant
    message is addressed by the index returned from ``begin_assistant``.
    """

    def __init__(self):
        self.messages: List[Message] = []
        self.token_tally: int = 0
        self.grounding_sources: Dict[int, Optional[GroundingSource]] = {}
        self.search_queries: List[str] = []
        self.grounding_owner: Optional[int] = None
        self.thinking_traces: Dict[int, str] = {}
        self._active: Optional[int] = None

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def active_handle(self) -> Optional[int]:
        return self._active

    def add_system(self, text: str) -> int:
        self.messages.append(Message(Role.SYSTEM, text))
        return len(self.messages) - 1

    def add_user(self, text: str) -> int:
        self.messages.append(Message(Role.USER, text))
        return len(self.messages) - 1

    def begin_assistant(self, placeholder: str = "") -> int:
        if self._active is not None:
            raise RuntimeError("An assistant message is already in progress")
        self.messages.append(Message(Role.ASSISTANT, placeholder, in_progress=True))
        self._active = len(self.messages) - 1
        return self._active

    def _in_progress(self, handle: int) -> Message:
        if handle < 0 or handle >= len(self.messages):
            raise IndexError(f"No message at index {handle}")
        msg = self.messages[handle]
        if not msg.in_progress:
            raise ValueError(f"Message {handle} is finalized and cannot be changed")
        return msg

    def update(self, handle: int, content: str) -> None:
        self._in_progress(handle).content = content

    def set_thinking(self, handle: int, text: str) -> None:
        self._in_progress(handle)
        if text:
            self.thinking_traces[handle] = text
        else:
            self.thinking_traces.pop(handle, None)

    def finalize(self, handle: int) -> Message:
        msg = self._in_progress(handle)
        msg.in_progress = False
        if self._active == handle:
            self._active = None
        return msg

    def fail(self, handle: int, text: str) -> Message:
        msg = self._in_progress(handle)
        msg.role = Role.ERROR
        msg.content = text
        self.thinking_traces.pop(handle, None)
        if self.grounding_owner == handle:
            self.replace_grounding(None)
        return self.finalize(handle)

    def add_tokens(self, count: int) -> None:
        if count < 0:
            raise ValueError("Token tally cannot decrease")
        self.token_tally += count

    def replace_grounding(
        self,
        metadata: Optional[GroundingMetadata],
        owner: Optional[int] = None,
    ) -> None:
        """Swap in one turn's grounding wholesale; ``None`` clears it."""
        if metadata is None:
            self.grounding_sources = {}
            self.search_queries = []
            self.grounding_owner = None
            return
        self.grounding_sources = dict(enumerate(metadata.sources))
        self.search_queries = list(metadata.queries)
        self.grounding_owner = owner

    def api_messages(self) -> List[Dict[str, str]]:
        """User/assistant history in order, skipping errors and in-flight replies."""
        return [
            msg.to_dict()
            for msg in self.messages
            if msg.role in (Role.USER, Role.ASSISTANT) and not msg.in_progress
        ]

    def last_assistant(self) -> Optional[Message]:
        for msg in reversed(self.messages):
            if msg.role == Role.ASSISTANT and not msg.in_progress:
                return msg
        return None

    def clear(self) -> None:
        self.messages.clear()
        self.token_tally = 0
        self.thinking_traces.clear()
        self.replace_grounding(None)
        self._active = None
