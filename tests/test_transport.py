import asyncio
import unittest

from agent.cancellation import CancellationToken
from agent.exceptions import ChatCancelled
from agent.transport import iter_lines


class FakeContent:
    """Hands out pre-recorded chunks, then b"" (end of stream)."""

    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.reads = 0

    async def readany(self):
        self.reads += 1
        if not self._chunks:
            return b""
        return self._chunks.pop(0)


class StalledContent(FakeContent):
    """Hands out its chunks, then never returns."""

    async def readany(self):
        if self._chunks:
            return self._chunks.pop(0)
        await asyncio.Event().wait()


async def collect(lines):
    return [line async for line in lines]


class TestIterLines(unittest.IsolatedAsyncioTestCase):
    async def test_reassembles_lines_split_across_chunks(self):
        content = FakeContent([b'{"a":', b'1}\n{"b"', b':2}\n'])
        self.assertEqual(await collect(iter_lines(content)), ['{"a":1}', '{"b":2}'])

    async def test_skips_empty_lines(self):
        content = FakeContent([b'{"a":1}\n\n   \n{"b":2}\n\n'])
        self.assertEqual(await collect(iter_lines(content)), ['{"a":1}', '{"b":2}'])

    async def test_trailing_partial_line_is_yielded_once(self):
        content = FakeContent([b'{"a":1}\n{"b":'])
        self.assertEqual(await collect(iter_lines(content)), ['{"a":1}', '{"b":'])

    async def test_multibyte_character_split_across_chunks(self):
        encoded = '{"content":"café"}\n'.encode("utf-8")
        split = encoded.index(b"\xc3") + 1
        content = FakeContent([encoded[:split], encoded[split:]])
        self.assertEqual(await collect(iter_lines(content)), ['{"content":"café"}'])

    async def test_release_called_when_stream_ends(self):
        released = []
        content = FakeContent([b'{"a":1}\n'])
        await collect(iter_lines(content, release=lambda: released.append(True)))
        self.assertEqual(released, [True])

    async def test_abort_stops_read_and_releases(self):
        token = CancellationToken()
        released = []
        seen = []
        content = StalledContent([b'{"a":1}\n'])

        async def consume():
            async for line in iter_lines(content, token, release=lambda: released.append(True)):
                seen.append(line)
                token.cancel()

        with self.assertRaises(ChatCancelled):
            await asyncio.wait_for(consume(), timeout=2)
        self.assertEqual(seen, ['{"a":1}'])
        self.assertEqual(released, [True])

    async def test_already_cancelled_token_reads_nothing(self):
        token = CancellationToken()
        token.cancel()
        content = FakeContent([b'{"a":1}\n'])
        with self.assertRaises(ChatCancelled):
            await collect(iter_lines(content, token))
        self.assertEqual(content.reads, 0)
