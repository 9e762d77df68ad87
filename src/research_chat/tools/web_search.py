"""
Web search tool backed by a SearXNG instance.
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .base import BaseTool, ToolResult

logger = structlog.get_logger()


@dataclass
class SearchResult:
    """A single ranked search hit."""

    url: str
    title: str
    content: str
    score: float = 0.0

    def to_text(self) -> str:
        return f"{self.title}: {self.content}\n[score: {self.score}] [source: {self.url}]"


def parse_results(data: dict[str, Any]) -> list[SearchResult]:
    """Pull ranked results out of a SearXNG JSON response."""
    results = []
    for item in data.get("results") or []:
        if not isinstance(item, dict) or not item.get("url"):
            continue
        try:
            score = float(item.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        results.append(SearchResult(
            url=item["url"],
            title=item.get("title") or "",
            content=item.get("content") or "",
            score=score,
        ))
    return results


class SearchWebTool(BaseTool):
    """Tool for searching the web."""

    def __init__(
        self,
        search_url: str = "http://localhost:8080/search",
        timeout: float = 15.0,
        max_results: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.search_url = search_url
        self.timeout = timeout
        self.max_results = max_results
        self._transport = transport

    @property
    def name(self) -> str:
        return "search_web"

    @property
    def description(self) -> str:
        return "search the web for a specified query string"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search terms to look for",
                },
            },
            "required": ["query"],
        }

    async def search(self, query: str) -> list[SearchResult]:
        """Run a query and return ranked results."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                self.search_url,
                params={"q": query, "format": "json"},
            )
            response.raise_for_status()
            data = response.json()

        return parse_results(data)[:self.max_results]

    async def execute(self, query: str) -> ToolResult:
        """Execute web search."""
        try:
            results = await self.search(query)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Web search error", query=query, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=f"Search failed: {str(e)}",
            )

        logger.debug("Web search complete", query=query, result_count=len(results))
        output = "\n\n".join(r.to_text() for r in results) if results else "No results found."

        return ToolResult(
            success=True,
            output=output,
            data=results,
        )
