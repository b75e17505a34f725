"""Token estimation for providers that do not report usage."""

import math
from typing import Dict

import tiktoken

TOKEN_COUNTERS = {"chars", "tiktoken"}
CHARS_PER_TOKEN = 4
_DEFAULT_ENCODING = "cl100k_base"

_encoder_cache: Dict[str, "tiktoken.Encoding"] = {}


def _get_encoder(name: str = _DEFAULT_ENCODING):
    """Get tiktoken encoder by name, with caching."""
    if name not in _encoder_cache:
        _encoder_cache[name] = tiktoken.get_encoding(name)
    return _encoder_cache[name]


def estimate_chars(text: str) -> int:
    """Length-based estimate: characters divided by four, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens(text: str, counter: str = "chars") -> int:
    """Estimate the token count of a finished response.

    ``chars`` is the documented fallback used when a stream never reports
    usage; ``tiktoken`` counts with the ``cl100k_base`` encoding instead.
    """
    if not text:
        return 0
    if counter == "tiktoken":
        return len(_get_encoder().encode(text))
    return estimate_chars(text)
