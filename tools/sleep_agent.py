"""Sleep tool — pauses the agent for a requested number of seconds."""

import asyncio

from tools.base_tool import Tool


class SleepAgentTool(Tool):
    name = "sleep_agent"
    description = "Pause for the given number of seconds before continuing."
    properties = {
        "seconds": {"type": "number", "description": "How long to wait, in seconds."},
    }
    required_args = ["seconds"]

    async def execute(self, **kwargs) -> str:
        try:
            seconds = float(kwargs.get("seconds") or 1)
        except (TypeError, ValueError):
            seconds = 1.0
        seconds = min(max(seconds, 0.0), self.config.tools.max_sleep_seconds)
        await asyncio.sleep(seconds)
        return f"Ready after {seconds:g}s wait."
