import logging
import unittest

from agent.capabilities import (
    ChainedProbe,
    DeclaredCapabilityProbe,
    TemplateToolProbe,
    discover_models,
)
from agent.exceptions import OllamaConnectionError, OllamaModelError
from agent.models import ModelInfo


class StubClient:
    def __init__(self, tags, shows, list_error=None):
        self.tags = tags
        self.shows = shows
        self.list_error = list_error

    async def list_models(self):
        if self.list_error:
            raise self.list_error
        return self.tags

    async def show_model(self, name):
        show = self.shows[name]
        if isinstance(show, Exception):
            raise show
        return show


class TestProbes(unittest.TestCase):
    def test_declared_capabilities(self):
        probe = DeclaredCapabilityProbe()
        model = ModelInfo(name="qwen3:4b")
        self.assertTrue(probe.supports_tools(model, {"capabilities": ["completion", "tools"]}))
        self.assertFalse(probe.supports_tools(model, {"capabilities": ["completion"]}))

    def test_template_markers(self):
        probe = TemplateToolProbe()
        model = ModelInfo(name="custom:latest")
        self.assertTrue(probe.supports_tools(model, {"template": "{{- if .Tools }}..."}))
        self.assertTrue(probe.supports_tools(model, {"template": "<tool_call>{{ .Name }}"}))
        self.assertFalse(probe.supports_tools(model, {"template": "{{ .Prompt }}"}))

    def test_family_fallback(self):
        probe = TemplateToolProbe()
        self.assertTrue(probe.supports_tools(ModelInfo(name="x", family="qwen2"), {}))
        self.assertTrue(probe.supports_tools(ModelInfo(name="llama3.2:1b"), {}))
        self.assertFalse(probe.supports_tools(ModelInfo(name="gemma:2b", family="gemma"), {}))

    def test_chained_prefers_declared(self):
        probe = ChainedProbe()
        model = ModelInfo(name="llama3.2:1b")
        self.assertFalse(probe.supports_tools(model, {"capabilities": ["completion"]}))
        self.assertTrue(probe.supports_tools(model, {"template": ""}))


class TestDiscoverModels(unittest.IsolatedAsyncioTestCase):
    async def test_classifies_each_model(self):
        client = StubClient(
            tags=[
                {"name": "qwen3:4b", "details": {"family": "qwen3"}},
                {"name": "gemma:2b", "details": {"family": "gemma"}},
            ],
            shows={
                "qwen3:4b": {"capabilities": ["completion", "tools"]},
                "gemma:2b": {"template": "{{ .Prompt }}"},
            },
        )
        models = await discover_models(client)
        self.assertEqual([(m.name, m.has_tools) for m in models], [("qwen3:4b", True), ("gemma:2b", False)])
        self.assertEqual(models[0].family, "qwen3")

    async def test_show_failure_degrades_to_no_tools(self):
        client = StubClient(
            tags=[{"name": "llama3.2:1b"}, {"name": "qwen3:4b"}],
            shows={
                "llama3.2:1b": OllamaModelError("gone"),
                "qwen3:4b": {"capabilities": ["tools"]},
            },
        )
        with self.assertLogs("test_capabilities", level="WARNING"):
            models = await discover_models(client, logger=logging.getLogger("test_capabilities"))
        self.assertEqual([m.has_tools for m in models], [False, True])

    async def test_listing_failure_propagates(self):
        client = StubClient([], {}, list_error=OllamaConnectionError("down"))
        with self.assertRaises(OllamaConnectionError):
            await discover_models(client)
