"""Research backends used by the search_web tool."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

import aiohttp
from bs4 import BeautifulSoup

from agent.exceptions import ToolExecutionError

_SEARCH_URL = "https://html.duckduckgo.com/html/"
_MAX_SNIPPET_CHARS = 300


@dataclass
class ResearchResult:
    """A summary of findings plus the URLs they came from."""
    summary: str
    sources: list[str] = field(default_factory=list)


class ResearchBackend(ABC):
    """External capability that researches a query."""

    @abstractmethod
    async def research(self, query: str) -> ResearchResult:
        ...


class DuckDuckGoResearch(ResearchBackend):
    """Scrapes DuckDuckGo's HTML endpoint (no API key required)."""

    def __init__(self, max_results: int = 5, timeout: float = 15.0):
        self.max_results = max_results
        self.timeout = timeout

    async def research(self, query: str) -> ResearchResult:
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(
                    _SEARCH_URL,
                    data={"q": query},
                    headers={"User-Agent": "Mozilla/5.0 (compatible; ollama-agent-loop/0.1)"},
                ) as resp:
                    if resp.status != 200:
                        raise ToolExecutionError(f"Search backend returned HTTP {resp.status}")
                    html = await resp.text()
        except aiohttp.ClientError as e:
            raise ToolExecutionError(f"Search backend unreachable: {e}") from e

        results = parse_results(html, self.max_results)
        if not results:
            return ResearchResult(summary="No results found.")

        summary = "\n".join(
            f"- {r['title']}: {r['snippet']}" if r["snippet"] else f"- {r['title']}"
            for r in results
        )
        return ResearchResult(summary=summary, sources=[r["url"] for r in results])


def parse_results(html: str, max_results: int) -> list[dict[str, str]]:
    """Extract title, url and snippet triples from a DuckDuckGo result page."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[dict[str, str]] = []
    for link in soup.select("a.result__a"):
        if len(results) >= max_results:
            break
        url = _unwrap_redirect(link.get("href", ""))
        title = link.get_text(" ", strip=True)
        snippet_tag = link.find_next(class_="result__snippet")
        snippet = " ".join(snippet_tag.get_text().split()) if snippet_tag else ""
        if url and title:
            results.append({"url": url, "title": title, "snippet": snippet[:_MAX_SNIPPET_CHARS]})
    return results


def _unwrap_redirect(url: str) -> str:
    """DuckDuckGo wraps targets as //duckduckgo.com/l/?uddg=<url>."""
    parsed = urlparse(url)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return url
