"""Incremental decoding of streamed engine and relay responses.

Two wire formats are understood:

* ``WireFormat.RAW_GENERATE``: the engine's native ``/api/generate`` stream,
  one JSON object per line, text in the ``response`` field.
* ``WireFormat.DELTA_EVENTS``: OpenAI-style ``data: {...}`` event lines as
  re-streamed by the relay, text in ``choices[].delta.content``.

Network reads are arbitrary slices of the byte stream: a UTF-8 character or
a line may be split across reads, and one read may hold several lines. The
decoder carries both over, so the transcript does not depend on how the
body was chunked.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import AsyncIterable, AsyncIterator

from pydantic import ValidationError

from .errors import FrameParseError
from .models import ChatCompletionChunk, GenerateChunk, StreamChunk, WireFormat

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data: {"
_EVENT_FIELD = "data:"


def parse_frame(line: str, wire_format: WireFormat) -> str | None:
    """Extract the text delta carried by one frame.

    Returns None when the frame carries nothing to append. Raises
    FrameParseError when the frame looks like data but is malformed.
    """
    if wire_format is WireFormat.RAW_GENERATE:
        try:
            chunk = GenerateChunk.model_validate_json(line)
        except ValidationError as e:
            raise FrameParseError(f"Invalid generate line: {line!r}") from e
        if chunk.error:
            logger.warning("Engine reported an error: %s", chunk.error)
        return chunk.response or None

    if not line.startswith(EVENT_PREFIX):
        # Keep-alives, comments and the closing "data: [DONE]"
        return None

    try:
        chunk = ChatCompletionChunk.model_validate_json(line[len(_EVENT_FIELD) :].strip())
    except ValidationError as e:
        raise FrameParseError(f"Invalid event frame: {line!r}") from e
    return "".join(choice.delta.content or "" for choice in chunk.choices)


class StreamDecoder:
    """Folds raw body bytes into a running transcript."""

    def __init__(self, wire_format: WireFormat):
        self.wire_format = wire_format
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: list[str] = []
        self._transcript = ""

    @property
    def transcript(self) -> str:
        return self._transcript

    def feed(self, data: bytes) -> list[StreamChunk]:
        """Decode one network read and return a chunk per complete frame in it."""
        text = self._utf8.decode(data)
        if not text:
            return []

        # Only the new text is split; the carried-over partial line is joined once it ends
        head, *rest = text.split("\n")
        self._pending.append(head)
        if not rest:
            return []

        lines = ["".join(self._pending), *rest[:-1]]
        self._pending = [rest[-1]]
        return self._apply(lines)

    def flush(self) -> list[StreamChunk]:
        """Parse whatever is left once the body has ended.

        An unterminated last line is still parsed. Bytes of an incomplete
        UTF-8 character cannot be completed any more and are dropped.
        """
        leftover, _ = self._utf8.getstate()
        if leftover:
            logger.warning("Dropping %d undecodable bytes at end of stream", len(leftover))
        self._utf8.reset()

        line = "".join(self._pending)
        self._pending = []
        return self._apply([line])

    def _apply(self, lines: list[str]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for raw in lines:
            line = raw.rstrip("\r")
            if not line.strip():
                continue

            try:
                delta = parse_frame(line, self.wire_format)
            except FrameParseError as e:
                logger.warning("Skipping frame: %s", e)
                continue

            if delta is None:
                continue

            self._transcript += delta
            chunks.append(StreamChunk(delta=delta, transcript=self.transcript))
        return chunks


async def _next_read(reads: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(reads)
    except StopAsyncIteration:
        return None


async def assemble(
    body: AsyncIterable[bytes],
    wire_format: WireFormat,
    cancel: asyncio.Event | None = None,
) -> AsyncIterator[StreamChunk]:
    """Yield a StreamChunk for every parsed frame of a streamed body.

    Errors raised while reading ``body`` propagate to the caller. Each read
    is raced against ``cancel``: once it is set the pending read is
    abandoned, even when the body has gone quiet, and nothing buffered is
    flushed.
    """
    decoder = StreamDecoder(wire_format)
    reads = aiter(body)
    cancelled = asyncio.ensure_future(cancel.wait()) if cancel is not None else None

    try:
        while True:
            if cancelled is None:
                data = await _next_read(reads)
            else:
                if cancel.is_set():
                    logger.info("Stream cancelled after %d characters", len(decoder.transcript))
                    return
                read = asyncio.ensure_future(_next_read(reads))
                await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                if not read.done():
                    read.cancel()
                    await asyncio.wait({read})
                    logger.info("Stream cancelled while waiting for data")
                    return
                data = read.result()

            if data is None:
                break
            for chunk in decoder.feed(data):
                yield chunk
    finally:
        if cancelled is not None:
            cancelled.cancel()

    for chunk in decoder.flush():
        yield chunk
