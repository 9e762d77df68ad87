"""
Tools module for agent capabilities.
"""

from .base import BaseTool, ToolResult
from .registry import ToolRegistry, create_default_registry, get_tool_registry
from .web_search import SearchResult, SearchWebTool
from .fetch_page import FetchPageTool, html_to_text

__all__ = [
    "BaseTool",
    "ToolResult",
    "ToolRegistry",
    "create_default_registry",
    "get_tool_registry",
    "SearchResult",
    "SearchWebTool",
    "FetchPageTool",
    "html_to_text",
]
