import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from agent.config import AgentConfig, ModelConfig, load_config
from agent.exceptions import ConfigError


class TestConfig(unittest.TestCase):
    def test_load_config_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            data_dir = Path(tmpdir) / "data"
            config_path.write_text(json.dumps({"data_dir": str(data_dir)}))

            config = load_config(str(config_path))

            self.assertEqual(config.chat_model.model_name, "llama3.2:1b")
            self.assertEqual(config.chat_model.temperature, 0.2)
            self.assertEqual(config.chat_model.keep_alive, "5m")
            self.assertEqual(config.utility_model.num_predict, 256)
            self.assertEqual(config.ollama.connect_timeout, 5.0)
            self.assertEqual(config.ollama.read_timeout, 120.0)
            self.assertEqual(config.ollama.probe_timeout, 1.5)
            self.assertEqual(config.ollama.max_retries, 1)
            self.assertTrue(config.tools.search_enabled)
            self.assertEqual(config.max_passes, 5)
            self.assertEqual(config.title_history_limit, 4)
            self.assertEqual(config.active_personality, "default")
            self.assertEqual(config.log_dir, str(data_dir / "logs"))
            self.assertTrue((data_dir / "logs").is_dir())

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config(str(Path(tmpdir) / "absent.json"))
        self.assertEqual(config.max_passes, 5)

    def test_options_omit_unset_num_thread(self):
        self.assertNotIn("num_thread", ModelConfig().options())
        options = ModelConfig(num_thread=4, ctx_length=4096).options()
        self.assertEqual(options["num_thread"], 4)
        self.assertEqual(options["num_ctx"], 4096)

    def test_invalid_ollama_timeout_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text(json.dumps({
                "data_dir": str(Path(tmpdir) / "data"),
                "ollama": {"connect_timeout": -1},
            }))

            with self.assertRaises(ConfigError):
                load_config(str(config_path))

    def test_invalid_max_passes_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text(json.dumps({
                "data_dir": str(Path(tmpdir) / "data"),
                "max_passes": 0,
            }))

            with self.assertRaises(ConfigError):
                load_config(str(config_path))

    def test_custom_personality_selected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text(json.dumps({
                "data_dir": str(Path(tmpdir) / "data"),
                "personalities": {"pirate": "Talk like a pirate."},
                "active_personality": "pirate",
            }))

            config = load_config(str(config_path))
            self.assertEqual(config.system_instruction, "Talk like a pirate.")
            self.assertIn("chill", config.personalities)

    def test_unknown_personality_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text(json.dumps({
                "data_dir": str(Path(tmpdir) / "data"),
                "active_personality": "grumpy",
            }))

            with self.assertRaises(ConfigError):
                load_config(str(config_path))

    def test_system_instruction_falls_back_to_default(self):
        config = AgentConfig(active_personality="nobody")
        self.assertEqual(config.system_instruction, config.personalities["default"])

    def test_env_overrides_ollama_base_url(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text(json.dumps({"data_dir": str(Path(tmpdir) / "data")}))

            with mock.patch.dict(os.environ, {"OLLAMA_BASE_URL": "http://ollama:11434"}):
                config = load_config(str(config_path))
            self.assertEqual(config.chat_model.base_url, "http://ollama:11434")
            self.assertEqual(config.utility_model.base_url, "http://ollama:11434")
