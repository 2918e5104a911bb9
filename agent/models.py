"""OllamaClient - Direct HTTP communication with the Ollama REST API."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, TypeVar

import aiohttp
from agent.cancellation import CancellationToken
from agent.decoder import ChatStreamDecoder, ContentCallback, StatusCallback
from agent.exceptions import (
    ChatCancelled,
    OllamaConnectionError,
    OllamaModelError,
    RequestFailed,
    StreamUnavailable,
)
from agent.response import ChatResult
from agent.transport import iter_lines


T = TypeVar("T")


class ConnectionStatus(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


@dataclass
class ModelInfo:
    """A locally available model as reported by /api/tags."""
    name: str
    size: int = 0
    digest: str = ""
    family: str = ""
    parameter_size: str = ""
    quantization_level: str = ""
    has_tools: bool = False

    @classmethod
    def from_tags(cls, raw: dict) -> "ModelInfo":
        details = raw.get("details") or {}
        return cls(
            name=raw.get("name", ""),
            size=raw.get("size", 0) or 0,
            digest=raw.get("digest", ""),
            family=details.get("family", "") or "",
            parameter_size=details.get("parameter_size", "") or "",
            quantization_level=details.get("quantization_level", "") or "",
        )


class OllamaClient:
    """Direct async HTTP client for the Ollama API."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        probe_timeout: float = 1.5,
        max_retries: int = 1,
        logger: logging.Logger | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.probe_timeout = probe_timeout
        self.max_retries = max_retries
        self._logger = logger or logging.getLogger(__name__)
        self._decoder = ChatStreamDecoder(self._logger)

    @classmethod
    def from_config(cls, config, base_url: str | None = None, logger=None) -> "OllamaClient":
        """Build a client from an AgentConfig."""
        return cls(
            base_url=base_url or config.chat_model.base_url,
            connect_timeout=config.ollama.connect_timeout,
            read_timeout=config.ollama.read_timeout,
            probe_timeout=config.ollama.probe_timeout,
            max_retries=config.ollama.max_retries,
            logger=logger,
        )

    async def probe(self) -> ConnectionStatus:
        """Classify reachability with a short GET /api/tags. Never raises."""
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}/api/tags") as resp:
                    if resp.status == 200:
                        return ConnectionStatus.CONNECTED
                    self._logger.warning("Probe of %s returned HTTP %s", self.base_url, resp.status)
                    return ConnectionStatus.ERROR
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning("Probe of %s failed: %s", self.base_url, e)
            return ConnectionStatus.ERROR

    async def health_check(self) -> bool:
        """Check if Ollama is running."""
        return await self.probe() == ConnectionStatus.CONNECTED

    async def list_models(self) -> list[dict]:
        """Locally installed models. GET /api/tags"""
        data = await self._with_retry(
            "list models", lambda: self._request_json("GET", "/api/tags")
        )
        return data.get("models", []) or []

    async def show_model(self, model: str) -> dict:
        """Template, details and capabilities of one model. POST /api/show"""
        return await self._with_retry(
            "show model",
            lambda: self._request_json("POST", "/api/show", {"model": model}, model=model),
        )

    @staticmethod
    def filter_missing_models(
        required_models: Iterable[str],
        available_models: Iterable[str],
    ) -> list[str]:
        """Filter required models against a list of available model names."""
        available = [m for m in available_models if m]
        missing: list[str] = []
        for required in required_models:
            if not required:
                continue
            if not OllamaClient._model_available(required, available):
                missing.append(required)
        return missing

    @staticmethod
    def _model_available(required: str, available: Iterable[str]) -> bool:
        """Check whether a model name is available, accounting for tags."""
        if required in available:
            return True
        tag_prefix = f"{required}:"
        return any(name.startswith(tag_prefix) for name in available)

    async def chat(
        self,
        model: str,
        messages: list[dict],
        on_content: ContentCallback | None = None,
        on_status: StatusCallback | None = None,
        tools: list[dict] | None = None,
        options: dict | None = None,
        keep_alive: str | int | None = None,
        token: CancellationToken | None = None,
    ) -> ChatResult:
        """
        Run one streamed chat pass. POST /api/chat

        Content deltas and server status lines are reported through the
        callbacks as they arrive; the accumulated result is returned once
        the terminal record is seen. No retry: a failed pass is reported
        to the caller.
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "options": dict(options or {}),
        }
        if keep_alive is not None:
            payload["keep_alive"] = keep_alive
        if tools:
            payload["tools"] = tools

        token = token or CancellationToken()
        token.raise_if_cancelled()

        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            try:
                resp = await token.run(session.post(f"{self.base_url}/api/chat", json=payload))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if token.cancelled:
                    raise ChatCancelled("Run cancelled") from e
                raise RequestFailed(self._connection_error_message("chat", e)) from e

            try:
                if resp.status != 200:
                    raise RequestFailed(await self._error_message(resp), status=resp.status)
                if resp.content is None or resp.content_length == 0:
                    raise StreamUnavailable()

                lines = iter_lines(resp.content, token, release=resp.release)
                return await self._decoder.decode(lines, on_content, on_status)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if token.cancelled:
                    raise ChatCancelled("Run cancelled") from e
                raise RequestFailed(f"Connection lost: {e}") from e
            finally:
                resp.release()

    async def generate(
        self,
        model: str,
        prompt: str,
        temperature: float = 0.3,
        options: dict | None = None,
    ) -> str:
        """
        One-shot text generation. POST /api/generate
        Used for utility tasks (titles, prompt rewriting).
        """
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, **(options or {})},
        }
        data = await self._with_retry(
            "generate", lambda: self._request_json("POST", "/api/generate", payload, model=model)
        )
        return data.get("response", "")

    async def _request_json(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        model: str | None = None,
    ) -> dict:
        """Non-streaming request; 404 on a model endpoint means the model is missing."""
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.request(method, f"{self.base_url}{path}", json=payload) as resp:
                if resp.status == 404 and model is not None:
                    raise OllamaModelError(
                        f"Model '{model}' not found. Pull it with: ollama pull {model}"
                    )
                if resp.status != 200:
                    body = await resp.text()
                    raise OllamaConnectionError(f"{method} {path} failed (HTTP {resp.status}): {body}")
                data = await resp.json(content_type=None)
                return data if isinstance(data, dict) else {}

    @staticmethod
    async def _error_message(resp: aiohttp.ClientResponse) -> str:
        """Server-provided error text, or a status-coded fallback."""
        try:
            data = await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError):
            data = None
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"Chat request failed (HTTP {resp.status})"

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Build a client timeout configuration from settings."""
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation with exponential backoff retries."""
        delay = 1.0
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await func()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(delay)
                delay *= 2

        raise OllamaConnectionError(self._connection_error_message(operation, last_error))

    def _connection_error_message(self, operation: str, error: Exception | None) -> str:
        """Create a user-friendly connection error message."""
        details = f"{error}" if error else "unknown error"
        return (
            f"Cannot connect to Ollama at {self.base_url} during {operation}: {details}"
        )
