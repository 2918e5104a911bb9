"""Abstract base class for all tools."""

from abc import ABC, abstractmethod


class Tool(ABC):
    """Base class for all agent tools. Subclass this to create new tools."""

    name: str = ""
    description: str = ""
    properties: dict[str, dict] = {}
    required_args: list[str] = []

    def __init__(self, config):
        self.config = config

    @classmethod
    def is_enabled(cls, config) -> bool:
        """Whether discovery should register this tool for `config`."""
        return True

    @abstractmethod
    async def execute(self, **kwargs) -> str:
        """Run the tool and return its textual output."""
        ...

    def schema(self) -> dict:
        """Ollama function-tool schema advertised to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": list(self.required_args),
                },
            },
        }
