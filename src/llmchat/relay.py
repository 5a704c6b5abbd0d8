"""Relay server: forwards chat requests to the engine's OpenAI-compatible API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from .config import DEFAULT_MODEL, ENGINE_URL, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class RelayRequest(BaseModel):
    message: str
    model: str | None = None


def _completion_payload(req: RelayRequest, default_model: str, stream: bool) -> dict:
    return {
        "model": req.model or default_model,
        "stream": stream,
        "messages": [{"role": "user", "content": req.message}],
    }


def create_app(
    engine_url: str = ENGINE_URL,
    default_model: str = DEFAULT_MODEL,
    client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the relay app. ``client`` replaces the upstream HTTP client (tests)."""
    engine_url = engine_url.rstrip("/")
    upstream = client or httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=10.0))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if client is None:
            await upstream.aclose()

    app = FastAPI(title="llmchat relay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/chat-stream")
    async def chat_stream(req: RelayRequest):
        """Stream the engine's completion chunks back unchanged."""
        url = f"{engine_url}/v1/chat/completions"
        request = upstream.build_request(
            "POST", url, json=_completion_payload(req, default_model, stream=True)
        )
        try:
            response = await upstream.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Error contacting engine at %s: %s", url, e)
            return PlainTextResponse(f"Error: {e}", status_code=500)

        async def body():
            try:
                async for data in response.aiter_bytes():
                    yield data
            except httpx.HTTPError as e:
                logger.error("Error reading stream from %s: %s", url, e)
                yield f"Error reading stream: {e}".encode()
            finally:
                await response.aclose()

        return StreamingResponse(
            body(), status_code=response.status_code, media_type="text/plain"
        )

    @app.post("/chat")
    async def chat(req: RelayRequest):
        """Non-streaming completion, passed through as JSON."""
        url = f"{engine_url}/v1/chat/completions"
        try:
            response = await upstream.post(
                url, json=_completion_payload(req, default_model, stream=False)
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error contacting engine at %s: %s", url, e)
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(data, status_code=response.status_code)

    @app.get("/models")
    async def models():
        url = f"{engine_url}/v1/models"
        try:
            response = await upstream.get(url)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error contacting engine at %s: %s", url, e)
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(data, status_code=response.status_code)

    return app


def run(host: str, port: int, engine_url: str = ENGINE_URL, default_model: str = DEFAULT_MODEL):
    import uvicorn

    logger.info("Relay listening on http://%s:%d, forwarding to %s", host, port, engine_url)
    uvicorn.run(create_app(engine_url, default_model), host=host, port=port)
