"""Conversation rendering: state in, markdown transcript out."""

from typing import List

from .conversation import ConversationState, Message, Role

__all__ = [
    "render_conversation",
    "render_message",
    "get_icon",
    "set_use_unicode",
    "THINKING_LINE",
    "PLACEHOLDERS",
]


# ── Icon mapping for Unicode/ASCII fallback ──

# Global flag to control Unicode vs ASCII (set by main.py from config)
_USE_UNICODE = True


def set_use_unicode(enabled: bool):
    """Set whether to use Unicode icons (True) or ASCII fallback (False)."""
    global _USE_UNICODE
    _USE_UNICODE = enabled


# Icon mapping: Unicode → ASCII
_ICON_MAP = {
    "✓": "[OK]",
    "✗": "[X]",
    "⚠️": "[!]",
    "◎": "O",
    "●": "*",
    "›": ">",
    "·": ".",
    "💭": "[THINK]",
    "🔎": "[?]",
    "→": "->",
    "…": "...",
}


def get_icon(unicode_icon: str) -> str:
    """Get icon based on Unicode setting.

    Args:
        unicode_icon: The Unicode icon character

    Returns:
        Either the Unicode icon (if enabled) or ASCII fallback
    """
    if _USE_UNICODE:
        return unicode_icon
    return _ICON_MAP.get(unicode_icon, unicode_icon)


# ── Transcript markdown ──

THINKING_LINE = "*Assistant is thinking...*"
PLACEHOLDERS = ("...", "Loading response...")
NO_RESPONSE = "(No response received or stream format issue)"
EMPTY_RESPONSE = "(Empty response received)"


def _quote(text: str) -> str:
    return "> " + text.strip().replace("\n", "\n> ")


def _grounding_lines(state: ConversationState) -> List[str]:
    lines = []
    if state.search_queries:
        queries = ", ".join(f'"{q}"' for q in state.search_queries)
        lines.append(f"> **Searched for:** {queries}")

    links = []
    for index in sorted(state.grounding_sources):
        source = state.grounding_sources[index]
        if source is None or not source.uri:
            continue
        title = source.title or f"Source {index + 1}"
        links.append(f"[{title}]({source.uri})")
    if links:
        lines.append(f"> **Sources:** {', '.join(links)}")
    return lines


def _assistant_body(msg: Message, loading: bool) -> str:
    content = msg.content
    if msg.in_progress:
        body = content or PLACEHOLDERS[0]
        if loading and (not content.strip() or content in PLACEHOLDERS):
            body += f"\n\n{THINKING_LINE}"
        return body
    if not content:
        return NO_RESPONSE
    if not content.strip():
        return EMPTY_RESPONSE
    return content


def render_message(state: ConversationState, index: int, model_name: str,
                   loading: bool = False) -> str:
    """Render one message; empty string for messages that are never shown."""
    msg = state.messages[index]
    if msg.role == Role.SYSTEM:
        return ""
    if msg.role == Role.USER:
        return f"### User\n\n{msg.content.strip()}\n\n---"
    if msg.role == Role.ERROR:
        return f"### {get_icon('⚠️')} Error\n\n{msg.content.strip()}\n\n---"

    parts = [f"### {model_name} (Token Tally: {state.token_tally})"]
    trace = state.thinking_traces.get(index, "")
    if trace.strip():
        parts.append(_quote(trace))
    parts.append(_assistant_body(msg, loading))
    if state.grounding_owner == index:
        parts.extend(_grounding_lines(state))
    parts.append("---")
    return "\n\n".join(parts)


def render_conversation(state: ConversationState, model_name: str, *,
                        loading: bool = False) -> str:
    """Render the whole transcript. Pure: identical state gives identical text."""
    blocks = []
    for index in range(len(state.messages)):
        block = render_message(state, index, model_name, loading)
        if block:
            blocks.append(block)
    return "\n\n".join(blocks)
