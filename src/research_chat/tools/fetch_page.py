"""
Page fetch tool: downloads a web page and reduces it to readable text.
"""

import re
from typing import Any
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .base import BaseTool, ToolResult

logger = structlog.get_logger()

# Non-content and boilerplate elements dropped before extracting text
STRIPPED_TAGS = [
    "head", "img", "script", "style", "link", "noscript", "iframe", "svg", "nav",
    "footer", "header", "form", "input", "button", "select", "option", "label",
    "canvas", "figure", "figcaption", "object", "embed", "video", "audio", "source",
    "track", "picture", "map", "area", "meta", "base", "col", "colgroup", "frame",
    "frameset", "param", "dialog", "template", "menu", "menuitem", "output", "progress",
]

BLOCK_TAGS = {"p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "br"}

FAILED_FETCH_MESSAGE = "Failed to fetch URL"


def html_to_text(html: str, base_url: str) -> str:
    """Extract body text, rendering links as markdown with absolute URLs."""
    soup = BeautifulSoup(html, "html.parser")

    for element in soup(STRIPPED_TAGS):
        element.decompose()

    parts: list[str] = []

    def traverse(node: Tag) -> None:
        for child in node.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                text = str(child).strip()
                if text:
                    parts.append(f"{text} ")
            elif isinstance(child, Tag):
                if child.name == "a":
                    link_text = child.get_text(" ", strip=True)
                    href = child.get("href")
                    if link_text and isinstance(href, str) and href.strip():
                        try:
                            parts.append(f"[{link_text}]({urljoin(base_url, href.strip())}) ")
                        except ValueError:
                            parts.append(f"{link_text} ")
                    continue

                traverse(child)
                if child.name in BLOCK_TAGS:
                    parts.append("\n\n")

    root = soup.body or soup
    traverse(root)

    text = "".join(parts)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()


class FetchPageTool(BaseTool):
    """Tool for reading the contents of a web page."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_chars: int = 20_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.max_chars = max_chars
        self._transport = transport

    @property
    def name(self) -> str:
        return "fetch_page_contents"

    @property
    def description(self) -> str:
        return "fetch the contents of a web page"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "description": "The URL to fetch",
                },
            },
            "required": ["url"],
        }

    async def execute(self, url: str) -> ToolResult:
        """Fetch a page and return its cleaned text."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "User-Agent": "Mozilla/5.0 (compatible; LLMFetcher/1.0)",
                    "Accept": "text/html",
                },
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error("Page fetch error", url=url, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=f"{FAILED_FETCH_MESSAGE}: {str(e) or type(e).__name__}",
            )

        if not response.is_success:
            logger.warning("Page fetch failed", url=url, status=response.status_code)
            return ToolResult(success=False, output="", error=FAILED_FETCH_MESSAGE)

        text = html_to_text(response.text, str(response.url))
        if len(text) > self.max_chars:
            text = text[:self.max_chars]

        return ToolResult(
            success=True,
            output=text,
            data={"url": str(response.url), "length": len(text)},
        )
