"""Structured error types for provider calls and response handling."""

import re
from typing import Optional

_RATE_LIMIT_RE = re.compile(
    r"rate[\s_-]?limit|too many requests|resource[\s_]exhausted|quota|\b429\b",
    re.IGNORECASE,
)


class QueryChatError(Exception):
    """Base error for all querychat operations."""

    title = "Error"


class EmptyResponseError(QueryChatError):
    """Raised when a provider returns zero candidates or choices."""

    title = "Empty response"

    def __init__(self, provider: str = ""):
        self.provider = provider
        source = f" from {provider}" if provider else ""
        super().__init__(f"No response{source}")


class TransportError(QueryChatError):
    """Non-2xx HTTP status or network failure."""

    title = "Request failed"

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class MalformedChunkError(QueryChatError):
    """A stream data line that is not JSON or lacks the expected shape."""

    title = "Malformed chunk"

    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"{reason}: {line[:120]}")


class RateLimitedError(QueryChatError):
    """Provider refused the request because of rate limiting or quota."""

    title = "Rate limited"


class MissingCredentialError(QueryChatError):
    """No API key configured for the active preset."""

    title = "API key missing"

    def __init__(self, provider: str, setting: str = "api-key", action: str = "Open settings"):
        self.provider = provider
        self.setting = setting
        self.action = action
        super().__init__(f"No {setting} configured for provider '{provider}'.")


class UnsupportedProviderError(QueryChatError):
    """Configuration names a provider/model combination we cannot call."""

    title = "Unsupported provider"

    def __init__(self, provider: str, model: str = ""):
        self.provider = provider
        self.model = model
        suffix = f" (model {model})" if model else ""
        super().__init__(f"Unsupported provider: {provider}{suffix}")


def is_rate_limit_message(text: str) -> bool:
    return bool(text) and _RATE_LIMIT_RE.search(text) is not None


def classify_error(exc: BaseException) -> QueryChatError:
    """Map an arbitrary exception onto the querychat error taxonomy.

    ``TransportError`` and SDK errors whose message matches rate-limit
    phrasing become ``RateLimitedError``; other known errors pass through and
    anything else is wrapped in ``TransportError``.
    """
    if isinstance(exc, RateLimitedError):
        return exc
    if isinstance(exc, TransportError):
        if exc.status == 429 or is_rate_limit_message(f"{exc} {exc.body}"):
            return RateLimitedError(str(exc))
        return exc
    if isinstance(exc, QueryChatError):
        return exc

    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    message = str(exc) or type(exc).__name__
    if status == 429 or is_rate_limit_message(message):
        return RateLimitedError(message)
    return TransportError(
        f"{type(exc).__name__}: {message}",
        status=status if isinstance(status, int) else None,
    )
