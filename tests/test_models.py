import asyncio
import json
import unittest
from unittest import mock

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from agent.cancellation import CancellationToken
from agent.exceptions import (
    ChatCancelled,
    OllamaConnectionError,
    OllamaModelError,
    RequestFailed,
    StreamUnavailable,
)
from agent.models import ConnectionStatus, OllamaClient

UNREACHABLE = "http://127.0.0.1:1"


def ndjson(*records) -> list[bytes]:
    return [(json.dumps(r) + "\n").encode() for r in records]


class FakeOllama:
    """Minimal /api surface of an Ollama server."""

    def __init__(self):
        self.requests: list[dict] = []
        self.chat_chunks = ndjson(
            {"message": {"role": "assistant", "content": "Hel"}, "done": False},
            {"message": {"role": "assistant", "content": "lo"}, "done": True},
        )
        self.chat_error: web.Response | None = None
        self.stall_after_first = False
        self.release = asyncio.Event()

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/tags", self.tags)
        app.router.add_post("/api/show", self.show)
        app.router.add_post("/api/chat", self.chat)
        app.router.add_post("/api/generate", self.generate)
        return app

    async def tags(self, request):
        return web.json_response({"models": [
            {"name": "llama3.2:1b", "size": 1300000000, "digest": "abc",
             "details": {"family": "llama", "parameter_size": "1.2B", "quantization_level": "Q8_0"}},
            {"name": "gemma:2b", "details": {"family": "gemma"}},
        ]})

    async def show(self, request):
        body = await request.json()
        if body["model"] == "missing":
            return web.json_response({"error": "model 'missing' not found"}, status=404)
        return web.json_response({"template": "{{ .Prompt }}", "capabilities": ["completion"]})

    async def generate(self, request):
        body = await request.json()
        self.requests.append(body)
        return web.json_response({"response": "  A Title  ", "done": True})

    async def chat(self, request):
        self.requests.append(await request.json())
        if self.chat_error is not None:
            return self.chat_error

        resp = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
        await resp.prepare(request)
        for i, chunk in enumerate(self.chat_chunks):
            await resp.write(chunk)
            if i == 0 and self.stall_after_first:
                await self.release.wait()
                return resp
        await resp.write_eof()
        return resp


class FakeServerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = FakeOllama()
        self.server = TestServer(self.fake.app())
        await self.server.start_server()
        self.client = OllamaClient(base_url=f"http://{self.server.host}:{self.server.port}")

    async def asyncTearDown(self):
        self.fake.release.set()
        await self.server.close()


class TestChat(FakeServerTestCase):
    async def test_streams_deltas_and_returns_result(self):
        deltas = []
        result = await self.client.chat(
            "llama3.2:1b", [{"role": "user", "content": "Hi"}], on_content=deltas.append
        )
        self.assertEqual(deltas, ["Hel", "lo"])
        self.assertEqual(result.content, "Hello")
        self.assertIsNone(result.tool_calls)

    async def test_payload_shape(self):
        tools = [{"type": "function", "function": {"name": "sleep_agent"}}]
        await self.client.chat(
            "llama3.2:1b",
            [{"role": "user", "content": "Hi"}],
            tools=tools,
            options={"temperature": 0.2},
            keep_alive="5m",
        )
        sent = self.fake.requests[-1]
        self.assertEqual(sent["model"], "llama3.2:1b")
        self.assertTrue(sent["stream"])
        self.assertEqual(sent["tools"], tools)
        self.assertEqual(sent["options"], {"temperature": 0.2})
        self.assertEqual(sent["keep_alive"], "5m")

    async def test_tools_omitted_when_not_given(self):
        await self.client.chat("llama3.2:1b", [{"role": "user", "content": "Hi"}])
        self.assertNotIn("tools", self.fake.requests[-1])

    async def test_tool_calls_decoded(self):
        self.fake.chat_chunks = ndjson({
            "message": {"role": "assistant", "content": "", "tool_calls": [
                {"function": {"name": "search_web", "arguments": {"query": "ollama"}}},
            ]},
            "done": True,
        })
        result = await self.client.chat("llama3.2:1b", [])
        self.assertEqual(result.tool_calls[0].name, "search_web")
        self.assertEqual(json.loads(result.tool_calls[0].arguments), {"query": "ollama"})

    async def test_server_error_message_is_surfaced(self):
        self.fake.chat_error = web.json_response({"error": "model not found"}, status=500)
        with self.assertRaises(RequestFailed) as ctx:
            await self.client.chat("nope", [])
        self.assertEqual(str(ctx.exception), "model not found")
        self.assertEqual(ctx.exception.status, 500)

    async def test_error_without_json_body(self):
        self.fake.chat_error = web.Response(text="oops", status=500)
        with self.assertRaises(RequestFailed) as ctx:
            await self.client.chat("llama3.2:1b", [])
        self.assertEqual(str(ctx.exception), "Chat request failed (HTTP 500)")

    async def test_empty_body_is_stream_unavailable(self):
        self.fake.chat_error = web.Response(body=b"", status=200)
        with self.assertRaises(StreamUnavailable):
            await self.client.chat("llama3.2:1b", [])

    async def test_cancel_mid_stream(self):
        self.fake.stall_after_first = True
        token = CancellationToken()
        deltas = []
        asyncio.get_running_loop().call_later(0.2, token.cancel)

        with self.assertRaises(ChatCancelled):
            await self.client.chat(
                "llama3.2:1b", [], on_content=deltas.append, token=token
            )
        self.assertEqual(deltas, ["Hel"])

    async def test_unreachable_server_is_request_failed(self):
        client = OllamaClient(base_url=UNREACHABLE, connect_timeout=0.5)
        with self.assertRaises(RequestFailed):
            await client.chat("llama3.2:1b", [])


class TestModelEndpoints(FakeServerTestCase):
    async def test_probe_connected(self):
        self.assertEqual(await self.client.probe(), ConnectionStatus.CONNECTED)
        self.assertTrue(await self.client.health_check())

    async def test_probe_unreachable_is_error(self):
        client = OllamaClient(base_url=UNREACHABLE, probe_timeout=0.5)
        self.assertEqual(await client.probe(), ConnectionStatus.ERROR)

    async def test_list_models(self):
        models = await self.client.list_models()
        self.assertEqual([m["name"] for m in models], ["llama3.2:1b", "gemma:2b"])

    async def test_show_missing_model(self):
        with self.assertRaises(OllamaModelError):
            await self.client.show_model("missing")

    async def test_generate(self):
        text = await self.client.generate("llama3.2:1b", "Title please", temperature=0.5)
        self.assertEqual(text, "  A Title  ")
        sent = self.fake.requests[-1]
        self.assertFalse(sent["stream"])
        self.assertEqual(sent["options"]["temperature"], 0.5)


class TestOllamaClient(unittest.IsolatedAsyncioTestCase):
    async def test_with_retry_succeeds_after_failures(self):
        client = OllamaClient(max_retries=3)
        attempts = 0

        async def operation():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise aiohttp.ClientError("boom")
            return "ok"

        with mock.patch("agent.models.asyncio.sleep", new=mock.AsyncMock()) as sleep_mock:
            result = await client._with_retry("test", operation)

        self.assertEqual(result, "ok")
        self.assertEqual(attempts, 3)
        self.assertEqual([c.args[0] for c in sleep_mock.await_args_list], [1.0, 2.0])

    async def test_with_retry_raises_after_exhausted(self):
        client = OllamaClient(max_retries=2)

        async def operation():
            raise aiohttp.ClientError("boom")

        with mock.patch("agent.models.asyncio.sleep", new=mock.AsyncMock()):
            with self.assertRaises(OllamaConnectionError):
                await client._with_retry("test", operation)

    async def test_default_is_a_single_attempt(self):
        client = OllamaClient()
        attempts = 0

        async def operation():
            nonlocal attempts
            attempts += 1
            raise aiohttp.ClientError("boom")

        with self.assertRaises(OllamaConnectionError):
            await client._with_retry("test", operation)
        self.assertEqual(attempts, 1)

    def test_filter_missing_models_prefix_match(self):
        available = ["llama3.2:latest", "phi3:mini"]
        missing = OllamaClient.filter_missing_models(["llama3.2", "codellama"], available)
        self.assertEqual(missing, ["codellama"])
