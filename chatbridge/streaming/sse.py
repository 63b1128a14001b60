"""Incremental server-sent-events decoding for chat completion streams.

Upstream bytes arrive in arbitrary chunks: a chunk may end mid-line or even
mid-character. SSEDecoder buffers text until a newline completes a line and
hands back only whole lines; iter_deltas() turns those lines into text
deltas.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_logger = logging.getLogger("chatbridge.streaming")


class SSEDecoder:
    """Line framing over a byte stream.

    ``feed()`` returns the complete lines found so far and keeps the trailing
    partial line buffered for the next call.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Buffered text that has not yet been terminated by a newline."""
        return self._buffer

    def feed(self, data: bytes) -> list[str]:
        self._buffer += self._decoder.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return lines

    def close(self) -> None:
        """Drop any incomplete trailing line; it can never be completed."""
        self._decoder.reset()
        self._buffer = ""


def parse_data_line(line: str) -> dict | None:
    """Return the JSON payload of a ``data:`` line, or None if the line carries none.

    Raises:
        json.JSONDecodeError: the payload is not valid JSON.
    """
    line = line.strip()
    if not line or not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return None
    chunk = json.loads(payload)
    return chunk if isinstance(chunk, dict) else None


def extract_delta(chunk: dict) -> str:
    """Text of ``choices[0].delta.content``; empty when absent (role-only chunks)."""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


async def iter_deltas(
    chunks: AsyncIterable[bytes],
    logger: logging.Logger | None = None,
) -> AsyncIterator[str]:
    """Yield non-empty text deltas from an SSE byte stream.

    A malformed line is logged and skipped; decoding continues with the next
    line. Exceptions from ``chunks`` propagate unchanged.
    """
    logger = logger or _logger
    decoder = SSEDecoder()
    try:
        async for data in chunks:
            for line in decoder.feed(data):
                try:
                    chunk = parse_data_line(line)
                except json.JSONDecodeError as e:
                    logger.warning(
                        "Skipping malformed stream chunk",
                        extra={"log_data": {"error": str(e), "line": line[:200]}},
                    )
                    continue
                if chunk is None:
                    continue
                text = extract_delta(chunk)
                if text:
                    yield text
    finally:
        decoder.close()
