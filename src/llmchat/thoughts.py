"""Handling of <think>...</think> sections emitted by reasoning models."""

from __future__ import annotations

import re
from typing import Iterator, Literal

THOUGHT_RE = re.compile(r"<think>([\s\S]*?)</think>")
_THOUGHT_STRIP_RE = re.compile(r"<think>[\s\S]*?</think>\s*")

SegmentKind = Literal["text", "thought"]


def strip_thoughts(text: str) -> str:
    """Remove every closed thought section and trim the result."""
    return _THOUGHT_STRIP_RE.sub("", text).strip()


def split_thoughts(text: str) -> Iterator[tuple[SegmentKind, str]]:
    """Split model output into plain text and thought segments, in order.

    An unclosed ``<think>`` (still streaming) stays part of the text.
    Empty text segments are not yielded; thought segments always are,
    even when the model did not think at all.
    """
    last = 0
    for match in THOUGHT_RE.finditer(text):
        if match.start() > last:
            yield "text", text[last : match.start()]
        yield "thought", match.group(1).strip()
        last = match.end()

    if last < len(text):
        yield "text", text[last:]
