"""Message, ToolCall, ChatResult and Response dataclasses."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field

ROLES = ("user", "assistant", "system", "tool")


def generate_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ToolCall:
    """A model-issued request to run a named tool. `arguments` is raw text."""
    id: str
    name: str
    arguments: str = ""

    def to_wire(self) -> dict:
        # Ollama expects an object here; keep the raw text when it is not JSON.
        try:
            arguments = json.loads(self.arguments) if self.arguments.strip() else {}
        except ValueError:
            arguments = self.arguments
        return {
            "id": self.id,
            "function": {"name": self.name, "arguments": arguments},
        }


@dataclass
class Message:
    """One entry of a conversation."""
    role: str
    content: str = ""
    id: str = field(default_factory=generate_id)
    timestamp: float = field(default_factory=time.time)
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.role == "tool" and (not self.tool_call_id or not self.name):
            raise ValueError("Tool messages require tool_call_id and name")

    @classmethod
    def tool_result(cls, call: ToolCall, content: str) -> "Message":
        """Build the tool-role message answering `call`."""
        return cls(role="tool", content=content, tool_call_id=call.id, name=call.name)

    def to_wire(self) -> dict:
        """Shape used in the /api/chat `messages` array."""
        wire: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            wire["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            wire["tool_call_id"] = self.tool_call_id
        return wire


@dataclass
class ChatResult:
    """Outcome of one streamed chat pass."""
    content: str
    tool_calls: list[ToolCall] | None = None


@dataclass
class Response:
    """Text produced by a tool dispatch."""
    message: str
    is_error: bool = False
