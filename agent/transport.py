"""Transport reader — split a streaming HTTP body into NDJSON lines."""

from __future__ import annotations

import codecs
from typing import AsyncIterator, Protocol

from agent.cancellation import CancellationToken


class ChunkSource(Protocol):
    """The part of aiohttp.StreamReader the reader relies on."""

    async def readany(self) -> bytes:
        ...


async def iter_lines(
    content: ChunkSource,
    token: CancellationToken | None = None,
    release=None,
) -> AsyncIterator[str]:
    """
    Yield non-empty text lines from `content` as chunks arrive.

    Lines split across chunks are reassembled. Whatever remains after the
    last newline at end of stream is yielded once; the caller decides
    whether it is usable. When `token` fires while a chunk is awaited,
    `release` (if given) is called and ChatCancelled propagates.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    try:
        while True:
            if token is not None:
                chunk = await token.run(content.readany())
            else:
                chunk = await content.readany()
            if not chunk:
                break

            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            for line in lines:
                if line.strip():
                    yield line.strip()

        buffer += decoder.decode(b"", final=True)
        if buffer.strip():
            yield buffer.strip()
    finally:
        if release is not None:
            release()
