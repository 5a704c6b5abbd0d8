"""
Tests for llmchat/relay.py

The engine is replaced by an httpx.MockTransport-backed client; the relay
app itself is exercised through FastAPI's TestClient.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from llmchat.relay import create_app

from .conftest import FakeServer, event_frames, stream_response

ENGINE = "http://engine"


def refuse(request):
    raise httpx.ConnectError("refused", request=request)


def relay_client(routes):
    engine = FakeServer(routes)
    app = create_app(engine_url=ENGINE, default_model="deepseek-r1:14b", client=engine.client())
    return TestClient(app), engine


class TestChatStream:
    """POST /chat-stream"""

    def test_restreams_engine_bytes(self):
        frames = event_frames("Hel", "lo")
        client, engine = relay_client(
            {"/v1/chat/completions": lambda r: stream_response(frames)}
        )

        response = client.post("/chat-stream", json={"message": "hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.content == b"".join(frames)
        assert engine.payloads("/v1/chat/completions") == [
            {
                "model": "deepseek-r1:14b",
                "stream": True,
                "messages": [{"role": "user", "content": "hi"}],
            }
        ]

    def test_model_override(self):
        client, engine = relay_client(
            {"/v1/chat/completions": lambda r: stream_response(event_frames("x"))}
        )

        client.post("/chat-stream", json={"message": "hi", "model": "qwen3:8b"})

        assert engine.payloads("/v1/chat/completions")[0]["model"] == "qwen3:8b"

    def test_engine_unreachable(self):
        client, _ = relay_client({"/v1/chat/completions": refuse})

        response = client.post("/chat-stream", json={"message": "hi"})

        assert response.status_code == 500
        assert response.text == "Error: refused"

    def test_read_error_is_written_to_body(self):
        frames = event_frames("partial")[:1]
        client, _ = relay_client(
            {
                "/v1/chat/completions": lambda r: stream_response(
                    frames, fail_with=httpx.ReadError("reset by peer")
                )
            }
        )

        response = client.post("/chat-stream", json={"message": "hi"})

        assert response.text.startswith(frames[0].decode())
        assert response.text.endswith("Error reading stream: reset by peer")

    def test_upstream_status_is_passed_on(self):
        client, _ = relay_client(
            {"/v1/chat/completions": lambda r: httpx.Response(404, json={"error": "model not found"})}
        )

        response = client.post("/chat-stream", json={"message": "hi"})

        assert response.status_code == 404

    def test_message_is_required(self):
        client, engine = relay_client({})

        response = client.post("/chat-stream", json={"model": "x"})

        assert response.status_code == 422
        assert engine.requests == []


class TestChat:
    """POST /chat"""

    def test_passes_completion_through(self):
        completion = {"choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi"}}]}
        client, engine = relay_client(
            {"/v1/chat/completions": lambda r: httpx.Response(200, json=completion)}
        )

        response = client.post("/chat", json={"message": "hello"})

        assert response.status_code == 200
        assert response.json() == completion
        assert engine.payloads("/v1/chat/completions")[0]["stream"] is False

    @pytest.mark.parametrize(
        "handler",
        [lambda r: httpx.Response(200, text="not json"), refuse],
        ids=["bad_body", "unreachable"],
    )
    def test_failure_returns_error_json(self, handler):
        client, _ = relay_client({"/v1/chat/completions": handler})

        response = client.post("/chat", json={"message": "hello"})

        assert response.status_code == 500
        assert "error" in response.json()


class TestModels:
    """GET /models"""

    def test_passes_list_through(self):
        models = {"object": "list", "data": [{"id": "llama3:8b", "object": "model"}]}
        client, _ = relay_client({"/v1/models": lambda r: httpx.Response(200, json=models)})

        response = client.get("/models")

        assert response.json() == models

    def test_engine_unreachable(self):
        client, _ = relay_client({"/v1/models": refuse})

        response = client.get("/models")

        assert response.status_code == 500
        assert response.json() == {"error": "refused"}


def test_cors_allows_any_origin():
    client, _ = relay_client({})

    response = client.options(
        "/chat",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers
