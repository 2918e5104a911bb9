"""Web search tool — delegates research to an external backend."""

import json

from agent.exceptions import ToolExecutionError
from tools.base_tool import Tool
from tools.research import DuckDuckGoResearch, ResearchBackend


class SearchWebTool(Tool):
    name = "search_web"
    description = "Search the web for up-to-date information and return a summary with sources."
    properties = {
        "query": {"type": "string", "description": "What to search for."},
    }
    required_args = ["query"]

    def __init__(self, config, backend: ResearchBackend | None = None):
        super().__init__(config)
        self.backend = backend or DuckDuckGoResearch(
            max_results=config.tools.search_max_results,
            timeout=config.tools.search_timeout,
        )

    @classmethod
    def is_enabled(cls, config) -> bool:
        return config.tools.search_enabled

    async def execute(self, **kwargs) -> str:
        query = kwargs.get("query")
        if not query:
            # Models sometimes put the query under another key.
            query = json.dumps(kwargs) if kwargs else ""
        query = str(query).strip()
        if not query:
            raise ToolExecutionError("search_web needs a non-empty query")

        result = await self.backend.research(query)
        text = result.summary or "No results found."
        return (
            f'Search results for "{query}":\n\n{text}\n\n'
            f"Sources:\n" + "\n".join(result.sources)
        )
