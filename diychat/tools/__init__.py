from typing import Optional

import httpx

from .registry import Tool, ToolRegistry
from .calendar_events import calendar_tools
from .clock import datetime_tool
from .todo import todo_tools
from .web import web_tools

# Every built-in tool name, in registry order; seeds the Default project
BUILTIN_TOOL_NAMES = [
    "get_datetime",
    "web_search",
    "web_fetch",
    "todo_list",
    "todo_create",
    "todo_update",
    "todo_delete",
    "calendar_list",
    "calendar_create",
    "calendar_update",
    "calendar_delete",
]


def build_registry(
    store,
    tavily_api_key: Optional[str] = None,
    searxng_base_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolRegistry:
    """
    Build the registry with every built-in tool.

    Args:
        store: The Store backing the todo and calendar tools.
        tavily_api_key: Enables Tavily for ``web_search``.
        searxng_base_url: Enables SearXNG for ``web_search`` (if no Tavily key).
        transport: Optional httpx transport for the network tools.
    """
    return ToolRegistry([
        datetime_tool(),
        *web_tools(tavily_api_key, searxng_base_url, transport=transport),
        *todo_tools(store),
        *calendar_tools(store),
    ])


__all__ = ["Tool", "ToolRegistry", "build_registry", "BUILTIN_TOOL_NAMES"]
