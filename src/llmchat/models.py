"""Data models for conversations and the engine/relay wire formats."""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class Message(BaseModel):
    role: Literal["user", "bot"]
    content: str
    loading: bool = False


class Conversation(BaseModel):
    id: str
    name: str = ""
    messages: list[Message] = []


def new_chat_id() -> str:
    """Time-based conversation id, in milliseconds like the browser client used."""
    return str(time.time_ns() // 1_000_000)


class StreamChunk(BaseModel):
    """One parsed unit of a streamed response."""

    delta: str
    transcript: str


class WireFormat(str, Enum):
    RAW_GENERATE = "raw_generate"
    DELTA_EVENTS = "delta_events"


class EndpointMode(str, Enum):
    LOCAL = "local"
    RELAY = "relay"

    @property
    def wire_format(self) -> WireFormat:
        if self is EndpointMode.LOCAL:
            return WireFormat.RAW_GENERATE
        return WireFormat.DELTA_EVENTS


# Engine native API (/api/generate, /api/tags)


class GenerateChunk(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: str | None = None
    done: bool = False
    error: str | None = None


class EngineModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class ModelTags(BaseModel):
    models: list[EngineModel] = []


# OpenAI-compatible API (/v1/chat/completions, /v1/models)


class Delta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    delta: Delta = Delta()
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice]


class CompletionMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: str | None = None


class CompletionChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str | None = None
    message: CompletionMessage | None = None

    @property
    def output(self) -> str:
        if self.text is not None:
            return self.text
        if self.message is not None and self.message.content is not None:
            return self.message.content
        return ""


class ChatCompletion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: list[CompletionChoice]


class RelayModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class ModelList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[RelayModel] = []
