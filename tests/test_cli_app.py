import tempfile
import unittest
from unittest import mock

from agent.config import AgentConfig, ModelConfig
from cli.cli_app import CLIApp


class TestCLIApp(unittest.IsolatedAsyncioTestCase):
    async def test_optimize_uses_utility_endpoint(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = AgentConfig(
                chat_model=ModelConfig(model_name="llama3.2:1b", base_url="http://chat-host:11434"),
                utility_model=ModelConfig(model_name="qwen3:0.6b", base_url="http://utility-host:11434"),
                log_dir=tmpdir,
            )
            app = CLIApp(config)

            with mock.patch(
                "cli.cli_app.optimize_prompt", new=mock.AsyncMock(return_value="Better prompt")
            ) as optimize_mock:
                result = await app._optimize("rough prompt")

        self.assertEqual(result, "Better prompt")
        client, model, text = optimize_mock.await_args.args
        self.assertEqual(client.base_url, "http://utility-host:11434")
        self.assertEqual(model, "qwen3:0.6b")
        self.assertEqual(text, "rough prompt")
        self.assertEqual(app.client.base_url, "http://chat-host:11434")
