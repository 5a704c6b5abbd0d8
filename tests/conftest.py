"""
Shared pytest fixtures for llmchat tests.

Provides:
- A temporary SQLite chat store
- Fake engine/relay responses served through httpx.MockTransport
"""

import json
from typing import Callable, Iterable

import httpx
import pytest

from llmchat.storage import ConversationStore


@pytest.fixture
def store(tmp_path):
    """A fresh ConversationStore in a temporary directory."""
    s = ConversationStore(tmp_path / "chats.db")
    yield s
    s.close()


def stream_response(
    chunks: Iterable[bytes],
    status_code: int = 200,
    fail_with: Exception | None = None,
) -> httpx.Response:
    """A streamed response yielding ``chunks`` one read at a time.

    If ``fail_with`` is given it is raised after the last chunk, like a
    connection dropping mid-stream.
    """

    async def body():
        for chunk in chunks:
            yield chunk
        if fail_with is not None:
            raise fail_with

    return httpx.Response(status_code, content=body())


def generate_lines(*parts: str) -> list[bytes]:
    """Engine /api/generate stream: one JSON line per part, then a done line."""
    lines = [json.dumps({"model": "m", "response": p, "done": False}) + "\n" for p in parts]
    lines.append(json.dumps({"model": "m", "response": "", "done": True}) + "\n")
    return [line.encode() for line in lines]


def event_frames(*parts: str) -> list[bytes]:
    """Relay /chat-stream body: one data frame per part, then [DONE]."""
    frames = [
        "data: "
        + json.dumps({"id": "c1", "choices": [{"index": 0, "delta": {"content": p}}]})
        + "\n\n"
        for p in parts
    ]
    frames.append("data: [DONE]\n\n")
    return [f.encode() for f in frames]


class FakeServer:
    """Routes requests by path and records them for assertions."""

    def __init__(self, routes: dict[str, Callable[[httpx.Request], httpx.Response]]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def payloads(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
