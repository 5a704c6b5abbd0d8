"""Send a chat turn to the engine or relay and stream the reply into a conversation."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Coroutine

import httpx
from pydantic import BaseModel, ValidationError

from .config import DEFAULT_MODEL, ENGINE_URL, ERROR_PREFIX, NAME_PROMPT, RELAY_URL, REQUEST_TIMEOUT
from .decoder import assemble
from .errors import NameDerivationError, SendInProgressError, TransportError, to_transport_error
from .models import (
    ChatCompletion,
    Conversation,
    EndpointMode,
    GenerateChunk,
    Message,
    ModelList,
    ModelTags,
    WireFormat,
)
from .storage import ChatStore
from .thoughts import strip_thoughts

logger = logging.getLogger(__name__)

# Receives the trailing message of the conversation every time it changes
MessageSink = Callable[[Message], None]


class SendState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RequestPlan(BaseModel):
    url: str
    payload: dict[str, Any]
    wire_format: WireFormat


class SendResult(BaseModel):
    state: SendState
    conversation: Conversation | None = None

    @property
    def reply(self) -> Message | None:
        if self.conversation is None or not self.conversation.messages:
            return None
        return self.conversation.messages[-1]


def build_request(
    mode: EndpointMode,
    text: str,
    *,
    engine_url: str = ENGINE_URL,
    relay_url: str = RELAY_URL,
    model: str = DEFAULT_MODEL,
    stream: bool = True,
) -> RequestPlan:
    """Pick endpoint, payload and wire format for a prompt."""
    if mode is EndpointMode.LOCAL:
        return RequestPlan(
            url=f"{engine_url.rstrip('/')}/api/generate",
            payload={"model": model, "prompt": text, "stream": stream},
            wire_format=WireFormat.RAW_GENERATE,
        )

    path = "/chat-stream" if stream else "/chat"
    return RequestPlan(
        url=f"{relay_url.rstrip('/')}{path}",
        payload={"message": text},
        wire_format=WireFormat.DELTA_EVENTS,
    )


class ConversationTransport:
    """Drives one generation at a time per conversation.

    The endpoint mode is fixed at construction. Conversations are read from
    and written to ``store``; the store is written when a conversation is
    created and once more when each turn finishes, never per delta.
    A transport that only lists models may be built without a store.
    """

    def __init__(
        self,
        store: ChatStore | None,
        mode: EndpointMode | str,
        *,
        engine_url: str = ENGINE_URL,
        relay_url: str = RELAY_URL,
        model: str = DEFAULT_MODEL,
        client: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.store = store
        self.mode = EndpointMode(mode)
        self.engine_url = engine_url
        self.relay_url = relay_url
        self.model = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        self._active: set[str] = set()
        self._background: set[asyncio.Task] = set()

    async def __aenter__(self) -> ConversationTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def plan(self, text: str, stream: bool = True) -> RequestPlan:
        return build_request(
            self.mode,
            text,
            engine_url=self.engine_url,
            relay_url=self.relay_url,
            model=self.model,
            stream=stream,
        )

    def is_active(self, chat_id: str) -> bool:
        return chat_id in self._active

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        sink: MessageSink | None = None,
        cancel: asyncio.Event | None = None,
    ) -> SendResult:
        """Append a user turn and stream the bot reply into the conversation.

        Whitespace-only text is ignored: nothing is appended and nothing is
        sent. Raises SendInProgressError if this conversation already has a
        generation running. Transport failures do not raise; they end up as
        an error message in place of the reply.
        """
        trimmed = text.strip()
        if not trimmed:
            return SendResult(state=SendState.IDLE, conversation=self.store.get(chat_id))

        if chat_id in self._active:
            raise SendInProgressError(chat_id)

        self._active.add(chat_id)
        try:
            return await self._run_turn(chat_id, trimmed, sink, cancel)
        finally:
            self._active.discard(chat_id)

    async def _run_turn(
        self,
        chat_id: str,
        text: str,
        sink: MessageSink | None,
        cancel: asyncio.Event | None,
    ) -> SendResult:
        chat = self.store.get(chat_id)
        if chat is None:
            chat = Conversation(id=chat_id)
            self.store.upsert(chat)
        first_turn = not chat.messages

        chat.messages.append(Message(role="user", content=text))
        self._set_reply(chat, Message(role="bot", content="", loading=True), sink, append=True)

        plan = self.plan(text)
        try:
            state = await self._stream(chat, plan, sink, cancel)
        except TransportError as e:
            logger.warning("Chat %s: generation failed: %s", chat_id, e)
            self._set_reply(chat, Message(role="bot", content=ERROR_PREFIX + e.message), sink)
            state = SendState.FAILED

        reply = chat.messages[-1]
        if reply.loading:
            self._set_reply(chat, reply.model_copy(update={"loading": False}), sink)

        self._persist(chat)

        if state is SendState.COMPLETED and first_turn:
            self._spawn(self.derive_name(chat_id, text))

        return SendResult(state=state, conversation=chat)

    async def _stream(
        self,
        chat: Conversation,
        plan: RequestPlan,
        sink: MessageSink | None,
        cancel: asyncio.Event | None,
    ) -> SendState:
        logger.debug("Chat %s: POST %s", chat.id, plan.url)
        try:
            async with self._client.stream("POST", plan.url, json=plan.payload) as response:
                response.raise_for_status()
                async for chunk in assemble(response.aiter_bytes(), plan.wire_format, cancel):
                    self._set_reply(chat, Message(role="bot", content=chunk.transcript), sink)
        except httpx.HTTPError as e:
            raise to_transport_error(e, plan.url) from e

        if cancel is not None and cancel.is_set():
            logger.info("Chat %s: generation cancelled", chat.id)
            return SendState.CANCELLED
        return SendState.COMPLETED

    def _set_reply(
        self,
        chat: Conversation,
        message: Message,
        sink: MessageSink | None,
        append: bool = False,
    ):
        if append:
            chat.messages.append(message)
        else:
            chat.messages[-1] = message
        if sink is not None:
            sink(message)

    def _persist(self, chat: Conversation):
        # A name derived in the background while this turn streamed must survive
        if not chat.name:
            stored = self.store.get(chat.id)
            if stored is not None and stored.name:
                chat.name = stored.name
        self.store.upsert(chat)

    async def complete(self, prompt: str) -> str:
        """Non-streaming generation; returns the full model output."""
        plan = self.plan(prompt, stream=False)
        try:
            response = await self._client.post(plan.url, json=plan.payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise to_transport_error(e, plan.url) from e

        try:
            if self.mode is EndpointMode.LOCAL:
                return GenerateChunk.model_validate_json(response.content).response or ""
            completion = ChatCompletion.model_validate_json(response.content)
        except ValidationError as e:
            raise TransportError(f"Unexpected response from {plan.url}") from e

        if not completion.choices:
            raise TransportError(f"No choices in response from {plan.url}")
        return completion.choices[0].output

    async def derive_name(self, chat_id: str, context: str) -> str | None:
        """Ask the model for a short conversation name and store it.

        Best effort: failures are logged and None is returned.
        """
        try:
            name = strip_thoughts(await self.complete(NAME_PROMPT + context))
            if not name:
                raise NameDerivationError("model returned an empty name")
        except (TransportError, NameDerivationError) as e:
            logger.warning("Chat %s: could not derive a name: %s", chat_id, e)
            return None

        chat = self.store.get(chat_id)
        if chat is None:
            logger.info("Chat %s was deleted before it could be named", chat_id)
            return None

        chat.name = name
        self.store.upsert(chat)
        logger.info("Chat %s named %r", chat_id, name)
        return name

    async def list_models(self) -> list[str]:
        """Names of the models the engine (or relay) can serve, sorted."""
        if self.mode is EndpointMode.LOCAL:
            url = f"{self.engine_url.rstrip('/')}/api/tags"
        else:
            url = f"{self.relay_url.rstrip('/')}/models"

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise to_transport_error(e, url) from e

        try:
            if self.mode is EndpointMode.LOCAL:
                names = [m.name for m in ModelTags.model_validate_json(response.content).models]
            else:
                names = [m.id for m in ModelList.model_validate_json(response.content).data]
        except ValidationError as e:
            raise TransportError(f"Unexpected model list from {url}") from e

        return sorted(names)

    def _spawn(self, coro: Coroutine[Any, Any, Any]):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self):
        """Wait for background work such as name derivation to finish."""
        while self._background:
            await asyncio.gather(*self._background)

    async def aclose(self):
        await self.drain()
        if self._owns_client:
            await self._client.aclose()
