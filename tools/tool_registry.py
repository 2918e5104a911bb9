"""Tool discovery and dispatch registry."""

import importlib
import inspect
import logging
import os

from agent.response import Response, ToolCall
from tools.arguments import parse_tool_arguments
from tools.base_tool import Tool

_NOT_TOOLS = ("base_tool.py", "tool_registry.py", "arguments.py", "research.py", "__init__.py")


class ToolRegistry:
    """
    Maps tool names to capabilities and runs them.

    `dispatch` is the error boundary: whatever a tool raises comes back as
    a Response flagged `is_error`, ready to be fed to the model.
    """

    def __init__(self, config, logger: logging.Logger | None = None):
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._tools: dict[str, Tool] = {}

    def discover_tools(self, tools_dir: str = None):
        """Scan the tools/ directory and register all enabled Tool subclasses."""
        if tools_dir is None:
            tools_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)))

        for filename in sorted(os.listdir(tools_dir)):
            if not filename.endswith(".py") or filename.startswith("_") or filename in _NOT_TOOLS:
                continue

            module_name = f"tools.{filename[:-3]}"
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                self._logger.warning("Failed to load %s: %s", module_name, e)
                continue
            for _, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, Tool) and obj is not Tool and obj.name:
                    if obj.is_enabled(self.config) and obj.name not in self._tools:
                        self.register(obj(self.config))
        return self

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        """List all registered tool names."""
        return sorted(self._tools.keys())

    def schemas(self) -> list[dict]:
        """Tool schema array for the /api/chat `tools` field."""
        return [self._tools[name].schema() for name in self.tool_names]

    async def dispatch(self, call: ToolCall) -> Response:
        """Normalise the call's arguments and run the tool. Never raises Exception."""
        parsed = parse_tool_arguments(call.arguments)
        if parsed.degraded:
            self._logger.info(
                "Arguments for %s (%s) normalised via %s: %r",
                call.name, call.id, parsed.strategy, call.arguments[:200],
            )

        tool = self.get_tool(call.name)
        if tool is None:
            return Response(
                message=f"Tool Error: Unknown tool '{call.name}'. "
                f"Available tools: {', '.join(self.tool_names)}",
                is_error=True,
            )

        try:
            result = await tool.execute(**parsed.args)
        except Exception as e:
            self._logger.warning("Tool %s failed: %s", call.name, e)
            return Response(message=f"Tool Error: {str(e) or type(e).__name__}", is_error=True)

        self._logger.info("Tool %s finished (%d chars)", call.name, len(str(result)))
        return Response(message=str(result))
