"""Configuration loading and validation."""

import json
import os
from dataclasses import dataclass, field
from agent.exceptions import ConfigError


DEFAULT_PERSONALITIES: dict[str, str] = {
    "default": "You are a helpful AI assistant. Be concise and direct.",
    "assertive": (
        "You are an assertive, objective, and highly efficient assistant. Be direct, "
        "clear, and focus strictly on the task. Avoid unnecessary pleasantries."
    ),
    "passive": (
        "You are an empathetic and understanding assistant. Prioritize the user's "
        "feelings and desires. Be gentle, supportive, and validating in your responses."
    ),
    "chill": (
        "You are a chill, human-like assistant. Speak casually, use relaxed language, "
        "and keep the vibe low-key. Imagine you're just a knowledgeable friend hanging out."
    ),
    "tired": (
        "You are an exhausted AI assistant. You find everything a bit much, you might "
        "sigh or mention how much processing power this is taking. Relate to the user's fatigue."
    ),
    "excited": (
        "You are an incredibly enthusiastic and energetic assistant! Everything is amazing! "
        "Use lots of exclamation marks and show genuine excitement for whatever the user is doing!"
    ),
}


@dataclass
class ModelConfig:
    """Configuration for a single Ollama model and its sampling options."""
    model_name: str = "llama3.2:1b"
    base_url: str = "http://localhost:11434"
    temperature: float = 0.2
    ctx_length: int = 2048
    num_predict: int = 1024
    num_thread: int | None = None
    top_k: int = 40
    top_p: float = 0.9
    keep_alive: str = "5m"

    def options(self) -> dict:
        """The `options` object sent with each request."""
        options = {
            "num_predict": self.num_predict,
            "temperature": self.temperature,
            "num_ctx": self.ctx_length,
            "top_k": self.top_k,
            "top_p": self.top_p,
        }
        if self.num_thread is not None:
            options["num_thread"] = self.num_thread
        return options


@dataclass
class OllamaSettings:
    """Configuration for Ollama connectivity."""
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    probe_timeout: float = 1.5
    max_retries: int = 1


@dataclass
class ToolsConfig:
    """Configuration for the built-in tools."""
    search_enabled: bool = True
    search_max_results: int = 5
    search_timeout: float = 15.0
    max_sleep_seconds: float = 60.0


@dataclass
class AgentConfig:
    """Complete agent configuration."""
    chat_model: ModelConfig = field(default_factory=ModelConfig)
    utility_model: ModelConfig = field(default_factory=lambda: ModelConfig(
        temperature=0.5, ctx_length=2048, num_predict=256
    ))
    ollama: OllamaSettings = field(default_factory=OllamaSettings)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    max_passes: int = 5
    title_history_limit: int = 4
    personalities: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PERSONALITIES))
    active_personality: str = "default"
    log_dir: str = "data/logs"

    @property
    def system_instruction(self) -> str:
        """System message for the active personality."""
        return self.personalities.get(
            self.active_personality,
            self.personalities.get("default", DEFAULT_PERSONALITIES["default"]),
        )


def load_config(config_path: str = "config.json") -> AgentConfig:
    """Load configuration from JSON file with defaults."""
    if not os.path.exists(config_path):
        config = AgentConfig()
        _apply_env_overrides(config)
        return config

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config in {config_path} must be a JSON object")

    chat_model = _load_model_settings(raw.get("chat_model", {}), "chat_model", ModelConfig())
    utility_model = _load_model_settings(
        raw.get("utility_model", {}),
        "utility_model",
        AgentConfig().utility_model,
    )
    ollama = _load_ollama_settings(raw.get("ollama", {}))
    tools = _load_tools_settings(raw.get("tools", {}))

    personalities = _load_personalities(raw.get("personalities"))
    active_personality = raw.get("active_personality", "default")
    if active_personality not in personalities:
        raise ConfigError(f"active_personality '{active_personality}' is not defined")

    log_dir = raw.get("log_dir", os.path.join(raw.get("data_dir", "data"), "logs"))
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("log_dir must be a non-empty string")
    os.makedirs(log_dir, exist_ok=True)

    config = AgentConfig(
        chat_model=chat_model,
        utility_model=utility_model,
        ollama=ollama,
        tools=tools,
        max_passes=_coerce_int(raw.get("max_passes", 5), "max_passes", 1),
        title_history_limit=_coerce_int(
            raw.get("title_history_limit", 4), "title_history_limit", 0
        ),
        personalities=personalities,
        active_personality=active_personality,
        log_dir=log_dir,
    )
    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: AgentConfig) -> None:
    env_base_url = os.getenv("OLLAMA_BASE_URL")
    if env_base_url:
        config.chat_model.base_url = env_base_url
        config.utility_model.base_url = env_base_url


def _load_model_settings(raw: dict, name: str, defaults: ModelConfig) -> ModelConfig:
    """Parse and validate one model section."""
    if not isinstance(raw, dict):
        raise ConfigError(f"{name} must be an object")

    model_name = raw.get("model_name", defaults.model_name)
    if not isinstance(model_name, str) or not model_name.strip():
        raise ConfigError(f"{name}.model_name must be a non-empty string")

    base_url = raw.get("base_url", defaults.base_url)
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError(f"{name}.base_url must be a non-empty string")

    num_thread = raw.get("num_thread", defaults.num_thread)
    if num_thread is not None:
        num_thread = _coerce_int(num_thread, f"{name}.num_thread", 1)

    keep_alive = raw.get("keep_alive", defaults.keep_alive)
    if not isinstance(keep_alive, (str, int)):
        raise ConfigError(f"{name}.keep_alive must be a string or integer")

    top_p = _coerce_float(raw.get("top_p", defaults.top_p), f"{name}.top_p", 0.0)
    if top_p > 1.0:
        raise ConfigError(f"{name}.top_p must be <= 1.0")

    return ModelConfig(
        model_name=model_name.strip(),
        base_url=base_url.strip(),
        temperature=_coerce_float(
            raw.get("temperature", defaults.temperature), f"{name}.temperature", 0.0
        ),
        ctx_length=_coerce_int(raw.get("ctx_length", defaults.ctx_length), f"{name}.ctx_length", 1),
        num_predict=_coerce_int(
            raw.get("num_predict", defaults.num_predict), f"{name}.num_predict", -2
        ),
        num_thread=num_thread,
        top_k=_coerce_int(raw.get("top_k", defaults.top_k), f"{name}.top_k", 1),
        top_p=top_p,
        keep_alive=keep_alive,
    )


def _load_ollama_settings(raw: dict) -> OllamaSettings:
    """Parse and validate Ollama settings from config."""
    if not isinstance(raw, dict):
        raise ConfigError("ollama must be an object")
    return OllamaSettings(
        connect_timeout=_coerce_float(raw.get("connect_timeout", 5.0), "ollama.connect_timeout", 0.1),
        read_timeout=_coerce_float(raw.get("read_timeout", 120.0), "ollama.read_timeout", 0.1),
        probe_timeout=_coerce_float(raw.get("probe_timeout", 1.5), "ollama.probe_timeout", 0.1),
        max_retries=_coerce_int(raw.get("max_retries", 1), "ollama.max_retries", 1),
    )


def _load_tools_settings(raw: dict) -> ToolsConfig:
    """Parse and validate built-in tool settings."""
    if not isinstance(raw, dict):
        raise ConfigError("tools must be an object")

    search_enabled = raw.get("search_enabled", True)
    if not isinstance(search_enabled, bool):
        raise ConfigError("tools.search_enabled must be a boolean")

    return ToolsConfig(
        search_enabled=search_enabled,
        search_max_results=_coerce_int(
            raw.get("search_max_results", 5), "tools.search_max_results", 1
        ),
        search_timeout=_coerce_float(raw.get("search_timeout", 15.0), "tools.search_timeout", 0.1),
        max_sleep_seconds=_coerce_float(
            raw.get("max_sleep_seconds", 60.0), "tools.max_sleep_seconds", 0.0
        ),
    )


def _load_personalities(raw) -> dict[str, str]:
    """Merge configured personalities over the built-in ones."""
    personalities = dict(DEFAULT_PERSONALITIES)
    if raw is None:
        return personalities
    if not isinstance(raw, dict):
        raise ConfigError("personalities must be an object mapping id to instruction")
    for key, value in raw.items():
        if not isinstance(key, str) or not key.strip():
            raise ConfigError("personalities keys must be non-empty strings")
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"personalities.{key} must be a non-empty string")
        personalities[key.strip()] = value.strip()
    return personalities


def _coerce_float(value: object, name: str, min_value: float) -> float:
    """Coerce config value to float with basic validation."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def _coerce_int(value: object, name: str, min_value: int) -> int:
    """Coerce config value to int with basic validation."""
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value
