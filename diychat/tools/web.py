import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from .registry import Tool

logger = logging.getLogger(__name__)

TOOL_TIMEOUT_SECONDS = 10.0
MAX_FETCH_CHARS = 5000
MAX_REDIRECTS = 5
TAVILY_URL = "https://api.tavily.com/search"

USER_AGENT = "Mozilla/5.0 (compatible; diychat/1.0)"


def html_to_text(markup: str, limit: int = MAX_FETCH_CHARS) -> str:
    """
    Reduce an HTML page to plain text.

    Script, style and noscript elements are dropped, comments and attributes
    never reach the text, and whitespace is collapsed. The result is
    truncated to ``limit`` characters.
    """
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = " ".join(soup.get_text(" ").split())
    if len(text) > limit:
        text = text[:limit] + "... [truncated]"
    return text


class WebTools:
    """
    ``web_search`` and ``web_fetch``.

    Every request is bounded by a 10 second timeout and every failure is
    returned as a descriptive string, so a slow site cannot stall a turn.
    """

    def __init__(
        self,
        tavily_api_key: Optional[str] = None,
        searxng_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.tavily_api_key = tavily_api_key
        self.searxng_base_url = searxng_base_url
        self.transport = transport

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=TOOL_TIMEOUT_SECONDS,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT},
            **kwargs,
        )

    # ==========================================================================
    # web_search
    # ==========================================================================

    async def search(self, args: Dict[str, Any]) -> str:
        query = args.get("query") or ""
        max_results = int(args.get("max_results") or 5)

        if self.tavily_api_key:
            return await self._search_tavily(query, max_results)
        if self.searxng_base_url:
            return await self._search_searxng(query, max_results)
        return json.dumps({
            "results": [
                {
                    "title": f"Search results for: {query}",
                    "url": "https://example.com",
                    "snippet": "No search API configured. Set TAVILY_API_KEY or SEARXNG_BASE_URL to enable web search.",
                },
            ],
            "note": "Configure TAVILY_API_KEY or SEARXNG_BASE_URL for real search results.",
        })

    async def _search_tavily(self, query: str, max_results: int) -> str:
        payload = {
            "api_key": self.tavily_api_key,
            "query": query,
            "max_results": max_results,
            "search_depth": "basic",
        }
        try:
            async with self._client() as client:
                response = await client.post(TAVILY_URL, json=payload)
                data = response.json()
        except httpx.TimeoutException:
            return json.dumps({"error": "Search request timed out"})
        except httpx.HTTPError as e:
            return json.dumps({"error": str(e)})
        except ValueError:
            return json.dumps({"error": "Failed to parse Tavily response"})

        results = [
            {"title": r.get("title"), "url": r.get("url"), "snippet": r.get("content") or r.get("snippet") or ""}
            for r in data.get("results") or []
        ]
        return json.dumps({"results": results})

    async def _search_searxng(self, query: str, max_results: int) -> str:
        url = self.searxng_base_url.rstrip("/") + "/search"
        params = {"q": query, "format": "json", "count": str(max_results)}
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
                data = response.json()
        except httpx.TimeoutException:
            return json.dumps({"error": "Search request timed out"})
        except httpx.HTTPError as e:
            return json.dumps({"error": str(e)})
        except ValueError:
            return json.dumps({"error": "Failed to parse SearXNG response"})

        results = [
            {"title": r.get("title"), "url": r.get("url"), "snippet": r.get("content") or ""}
            for r in (data.get("results") or [])[:max_results]
        ]
        return json.dumps({"results": results})

    # ==========================================================================
    # web_fetch
    # ==========================================================================

    async def fetch(self, args: Dict[str, Any]) -> str:
        url = args.get("url") or ""
        if not url.startswith(("http://", "https://")):
            return f"Error: invalid URL: {url}"

        headers = {"Accept": "text/html,application/xhtml+xml,text/plain"}
        try:
            async with self._client(follow_redirects=True, max_redirects=MAX_REDIRECTS) as client:
                response = await client.get(url, headers=headers)
        except httpx.TooManyRedirects:
            return "Error: too many redirects"
        except httpx.TimeoutException:
            return "Error: request timed out"
        except httpx.HTTPError as e:
            return f"Error fetching URL: {e}"

        logger.debug("Fetched %s (%d, %d bytes)", url, response.status_code, len(response.content))
        return html_to_text(response.text)


def web_tools(
    tavily_api_key: Optional[str] = None,
    searxng_base_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Tool]:
    web = WebTools(tavily_api_key, searxng_base_url, transport=transport)
    return [
        Tool(
            name="web_search",
            description="Search the web for information. Returns a list of results with title, url, and snippet.",
            parameters={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "max_results": {"type": "number", "description": "Maximum number of results to return (default: 5)"},
                },
                "required": ["query"],
            },
            execute=web.search,
        ),
        Tool(
            name="web_fetch",
            description="Fetch the content of a web page and return it as plain text.",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to fetch"},
                },
                "required": ["url"],
            },
            execute=web.fetch,
        ),
    ]
