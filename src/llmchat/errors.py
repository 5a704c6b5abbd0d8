"""Exception types shared by the decoder, transport and CLI."""

from __future__ import annotations

import httpx


class LLMChatError(Exception):
    """Base exception for llmchat."""


class TransportError(LLMChatError):
    """The request or the response body failed; fatal to the current send."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class FrameParseError(LLMChatError):
    """A single frame could not be parsed. Never escapes the decoder."""


class NameDerivationError(LLMChatError):
    """The engine did not produce a usable conversation name."""


class SendInProgressError(LLMChatError):
    """A generation is already running for this conversation."""

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        super().__init__(f"A message is already being generated for chat {chat_id}")


def to_transport_error(error: httpx.HTTPError, url: str) -> TransportError:
    """Convert an httpx failure into a TransportError with a readable message."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return TransportError(f"HTTP {status} from {url}", status_code=status)

    if isinstance(error, httpx.ConnectError):
        return TransportError(f"Cannot connect to {url}. Is the server running?")

    if isinstance(error, httpx.TimeoutException):
        return TransportError(f"Request to {url} timed out")

    return TransportError(f"Request to {url} failed: {error}")
