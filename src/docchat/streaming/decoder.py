"""Decoding of newline-delimited chat streams into render updates."""

from __future__ import annotations

import codecs
import json
import logging
import time
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator, List, Optional

from docchat.exceptions import DecodeError, TransportError
from docchat.models import StreamEvent, StreamMetrics, StreamUpdate
from docchat.streaming.buffer import WordBoundaryBuffer
from docchat.utils.text import to_british_spelling

LOGGER = logging.getLogger(__name__)


def parse_event(line: str) -> StreamEvent:
    """Parse one wire line into a StreamEvent.

    Raises DecodeError when the line is not a JSON object of the chat shape.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise DecodeError(line, "invalid JSON") from exc

    if not isinstance(data, dict):
        raise DecodeError(line, "expected a JSON object")
    if "message" not in data and "done" not in data:
        raise DecodeError(line, "missing message and done fields")

    message = data.get("message") or {}
    if not isinstance(message, dict):
        raise DecodeError(line, "message is not an object")
    content = message.get("content") or ""
    if not isinstance(content, str):
        raise DecodeError(line, "message content is not a string")

    done = data.get("done", False)
    if not isinstance(done, bool):
        raise DecodeError(line, "done is not a boolean")

    metrics = StreamMetrics.from_wire(data) if done else None
    return StreamEvent(delta_text=content, is_final=done, metrics=metrics)


class StreamDecoder:
    """Turns raw response bytes into progressively renderable text.

    One decoder serves exactly one stream. Feed it byte chunks as they arrive
    and call ``finish`` when the byte stream ends; the remaining buffered tail
    is flushed exactly once, either on the final event or on ``finish``.
    """

    def __init__(
        self,
        transformer: Callable[[str], str] = to_british_spelling,
        *,
        buffer: Optional[WordBoundaryBuffer] = None,
    ) -> None:
        self.buffer = buffer or WordBoundaryBuffer(transformer)
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._line_tail = ""
        self._rendered = ""
        self._finished = False
        self._cancelled = False
        self._started_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None
        self.metrics: Optional[StreamMetrics] = None
        self.skipped_lines = 0

    @property
    def text(self) -> str:
        """Current render string: committed text plus the provisional raw tail."""
        if self._finished:
            return self._rendered
        return self._rendered + self.buffer.pending_tail

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def feed(self, chunk: bytes) -> List[StreamUpdate]:
        """Decode one chunk of bytes; returns one update per parsed event."""
        if self._finished or self._cancelled:
            return []
        if self._started_at is None:
            self._started_at = time.perf_counter()

        decoded = self._line_tail + self._utf8.decode(chunk)
        lines = decoded.split("\n")
        self._line_tail = lines.pop()
        return self._handle_lines(lines)

    def finish(self) -> List[StreamUpdate]:
        """Signal the end of the byte stream."""
        if self._finished or self._cancelled:
            return []
        remainder = self._line_tail + self._utf8.decode(b"", final=True)
        self._line_tail = ""
        updates = self._handle_lines([remainder])
        if not self._finished:
            updates.append(self._complete(None))
        return updates

    def cancel(self) -> None:
        """Abandon the stream; the pending tail is dropped, never flushed."""
        if self._finished:
            return
        self._cancelled = True
        dropped = self.buffer.discard()
        self._line_tail = ""
        if dropped:
            LOGGER.debug("Discarded %d buffered characters on cancel", len(dropped))

    def _handle_lines(self, lines: Iterable[str]) -> List[StreamUpdate]:
        updates: List[StreamUpdate] = []
        for line in lines:
            if self._finished:
                LOGGER.debug("Ignoring line received after final event")
                break
            if not line.strip():
                continue
            try:
                event = parse_event(line)
            except DecodeError as exc:
                self.skipped_lines += 1
                LOGGER.debug("Skipping stream line: %s", exc)
                continue
            update = self._apply(event)
            if update is not None:
                updates.append(update)
        return updates

    def _apply(self, event: StreamEvent) -> Optional[StreamUpdate]:
        delta = self.buffer.push(event.delta_text) if event.delta_text else ""
        self._rendered += delta
        if event.is_final:
            return self._complete(event.metrics, delta)
        if not event.delta_text:
            return None
        return StreamUpdate(
            text=self._rendered + self.buffer.pending_tail,
            delta=delta,
            pending=self.buffer.pending_tail,
        )

    def _complete(self, metrics: Optional[StreamMetrics], delta: str = "") -> StreamUpdate:
        tail = self.buffer.flush()
        self._rendered += tail
        self._finished = True
        self.metrics = metrics
        if self._started_at is not None:
            self.elapsed_ms = (time.perf_counter() - self._started_at) * 1000
        LOGGER.debug("Stream finished: %d chars, %d skipped lines", len(self._rendered), self.skipped_lines)
        return StreamUpdate(text=self._rendered, delta=delta + tail, done=True, metrics=metrics)

    def decode(self, chunks: Optional[Iterable[bytes]]) -> Iterator[StreamUpdate]:
        """Drive the decoder over a synchronous byte source.

        Raises TransportError at call time when there is no source.
        """
        if chunks is None:
            raise TransportError("No readable stream")
        return self._decode(chunks)

    def adecode(self, chunks: Optional[AsyncIterable[bytes]]) -> AsyncIterator[StreamUpdate]:
        """Drive the decoder over an asynchronous byte source.

        Raises TransportError at call time when there is no source.
        """
        if chunks is None:
            raise TransportError("No readable stream")
        return self._adecode(chunks)

    def _decode(self, chunks: Iterable[bytes]) -> Iterator[StreamUpdate]:
        for chunk in chunks:
            yield from self.feed(chunk)
            if self._finished:
                return
        yield from self.finish()

    async def _adecode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamUpdate]:
        async for chunk in chunks:
            for update in self.feed(chunk):
                yield update
            if self._finished:
                return
        for update in self.finish():
            yield update
