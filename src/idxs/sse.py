"""Incremental decoder for ``text/event-stream`` bodies."""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterator
from typing import Any

from loguru import logger

from idxs.errors import FrameDecodeError

FRAME_SEPARATOR = "\n\n"
DATA_PREFIX = "data:"


class SseDecoder:
    """Buffer byte chunks and hand out complete frames.

    Chunks may split frames, lines or multi-byte characters anywhere; only
    text up to the last frame separator is ever released.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)

    def next_frame(self) -> str | None:
        index = self._buffer.find(FRAME_SEPARATOR)
        if index == -1:
            return None
        frame = self._buffer[:index]
        self._buffer = self._buffer[index + len(FRAME_SEPARATOR) :]
        return frame

    @property
    def pending(self) -> str:
        return self._buffer

    @staticmethod
    def payloads(frame: str) -> Iterator[Any]:
        """Yield the decoded JSON of each ``data:`` line in ``frame``."""

        for line in frame.split("\n"):
            if not line.startswith(DATA_PREFIX):
                continue
            text = line[len(DATA_PREFIX) :].strip()
            try:
                yield json.loads(text)
            except json.JSONDecodeError as exc:
                raise FrameDecodeError(f"Invalid JSON in data line: {exc.msg}") from exc


async def read_events(
    chunks: AsyncIterable[bytes],
    close: Callable[[], Awaitable[None]],
) -> AsyncIterator[Any]:
    """Decode ``chunks`` into a lazy sequence of JSON payloads.

    ``close`` releases the underlying transport and is awaited on every exit
    path, including when the consumer stops early.
    """

    decoder = SseDecoder()
    try:
        async for chunk in chunks:
            decoder.feed(chunk)
            while (frame := decoder.next_frame()) is not None:
                for payload in decoder.payloads(frame):
                    yield payload
        if decoder.pending.strip():
            logger.debug("idxs.sse.discard_partial bytes={}", len(decoder.pending))
    finally:
        await close()
