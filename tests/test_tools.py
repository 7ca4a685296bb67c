import json
import re

import httpx
import pytest

from diychat.tools import BUILTIN_TOOL_NAMES, Tool, ToolRegistry, build_registry
from diychat.tools.clock import current_datetime
from diychat.tools.web import html_to_text


def registry_with(store, handler=None, **kwargs):
    transport = httpx.MockTransport(handler) if handler else None
    return build_registry(store, transport=transport, **kwargs)


class TestToolRegistry:
    def test_builtin_names(self, store):
        assert registry_with(store).names == BUILTIN_TOOL_NAMES

    def test_definitions_skip_unknown_and_duplicates(self, store):
        registry = registry_with(store)
        definitions = registry.definitions_for(["web_fetch", "nope", "get_datetime", "web_fetch"])
        assert [d["name"] for d in definitions] == ["web_fetch", "get_datetime"]
        assert set(definitions[0]) == {"name", "description", "parameters"}

    def test_definitions_for_none(self, store):
        assert registry_with(store).definitions_for(None) == []

    @pytest.mark.asyncio
    async def test_execute_unknown(self):
        result = await ToolRegistry([]).execute("missing", {})
        assert json.loads(result) == {"error": "Unknown tool: missing"}

    @pytest.mark.asyncio
    async def test_execute_contains_exceptions(self):
        def boom(args):
            raise ValueError("bad input")

        registry = ToolRegistry([Tool("boom", "fails", {"type": "object"}, boom)])
        assert json.loads(await registry.execute("boom", {})) == {"error": "bad input"}

    @pytest.mark.asyncio
    async def test_execute_awaits_async_tools(self):
        async def greet(args):
            return f"hello {args['name']}"

        registry = ToolRegistry([Tool("greet", "greets", {"type": "object"}, greet)])
        assert await registry.execute("greet", {"name": "ada"}) == "hello ada"


class TestDatetime:
    def test_iso_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", current_datetime())


class TestWebSearch:
    @pytest.mark.asyncio
    async def test_placeholder_without_configuration(self, store):
        result = json.loads(await registry_with(store).execute("web_search", {"query": "python"}))
        assert result["results"][0]["title"] == "Search results for: python"
        assert "TAVILY_API_KEY" in result["note"]

    @pytest.mark.asyncio
    async def test_tavily(self, store):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"results": [
                {"title": "Python", "url": "https://python.org", "content": "Official site"},
            ]})

        registry = registry_with(store, handler, tavily_api_key="tvly-key")
        result = json.loads(await registry.execute("web_search", {"query": "python", "max_results": 3}))

        assert result == {"results": [{"title": "Python", "url": "https://python.org", "snippet": "Official site"}]}
        assert seen[0].url == "https://api.tavily.com/search"
        body = json.loads(seen[0].content)
        assert body == {"api_key": "tvly-key", "query": "python", "max_results": 3, "search_depth": "basic"}

    @pytest.mark.asyncio
    async def test_searxng(self, store):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"results": [
                {"title": f"r{i}", "url": f"https://e.com/{i}", "content": "c"} for i in range(10)
            ]})

        registry = registry_with(store, handler, searxng_base_url="http://searx.local/")
        result = json.loads(await registry.execute("web_search", {"query": "python", "max_results": 2}))

        assert [r["title"] for r in result["results"]] == ["r0", "r1"]
        assert seen[0].url.path == "/search"
        assert seen[0].url.params["format"] == "json"
        assert seen[0].url.params["q"] == "python"

    @pytest.mark.asyncio
    async def test_timeout_returns_error(self, store):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        registry = registry_with(store, handler, tavily_api_key="tvly-key")
        result = json.loads(await registry.execute("web_search", {"query": "python"}))
        assert result == {"error": "Search request timed out"}


class TestWebFetch:
    def test_html_to_text(self):
        html = (
            "<html><head><style>body { color: red; }</style><script>alert('x')</script></head>"
            "<body><h1>Title</h1>\n\n<p>Fish &amp; chips</p></body></html>"
        )
        assert html_to_text(html) == "Title Fish & chips"

    def test_html_to_text_ignores_attributes_and_comments(self):
        html = '<a title="a>b" href="/x">link</a><!-- <b>hidden</b> --><noscript>enable js</noscript>'
        assert html_to_text(html) == "link"

    def test_html_to_text_truncates(self):
        text = html_to_text("a" * 6000)
        assert text == "a" * 5000 + "... [truncated]"

    @pytest.mark.asyncio
    async def test_fetch_follows_redirect(self, store):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/new"})
            return httpx.Response(200, text="<p>New page</p>")

        result = await registry_with(store, handler).execute("web_fetch", {"url": "https://example.com/old"})
        assert result == "New page"

    @pytest.mark.asyncio
    async def test_fetch_redirect_loop(self, store):
        def handler(request):
            return httpx.Response(302, headers={"location": str(request.url)})

        result = await registry_with(store, handler).execute("web_fetch", {"url": "https://example.com/loop"})
        assert result == "Error: too many redirects"

    @pytest.mark.asyncio
    async def test_fetch_timeout(self, store):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        result = await registry_with(store, handler).execute("web_fetch", {"url": "https://example.com"})
        assert result == "Error: request timed out"

    @pytest.mark.asyncio
    async def test_fetch_invalid_url(self, store):
        result = await registry_with(store).execute("web_fetch", {"url": "ftp://example.com"})
        assert result.startswith("Error: invalid URL")


class TestTodoTools:
    @pytest.mark.asyncio
    async def test_crud(self, store):
        registry = registry_with(store)

        created = json.loads(await registry.execute("todo_create", {"title": "Write tests"}))
        assert created["title"] == "Write tests"
        assert created["done"] is False

        updated = json.loads(await registry.execute("todo_update", {"id": created["id"], "done": True}))
        assert updated["done"] is True
        assert updated["title"] == "Write tests"

        listed = json.loads(await registry.execute("todo_list", {}))
        assert [t["id"] for t in listed] == [created["id"]]

        deleted = json.loads(await registry.execute("todo_delete", {"id": created["id"]}))
        assert deleted == {"success": True, "id": created["id"]}
        assert json.loads(await registry.execute("todo_list", {})) == []

    @pytest.mark.asyncio
    async def test_missing_todo(self, store):
        registry = registry_with(store)
        assert "error" in json.loads(await registry.execute("todo_update", {"id": "missing", "done": True}))
        assert "error" in json.loads(await registry.execute("todo_delete", {"id": "missing"}))


class TestCalendarTools:
    @pytest.mark.asyncio
    async def test_create_list_update_delete(self, store):
        registry = registry_with(store)

        event = json.loads(await registry.execute("calendar_create", {
            "title": "Standup", "start_time": "2025-02-03T09:00:00Z", "end_time": "2025-02-03T09:15:00Z",
        }))
        assert event["title"] == "Standup"

        in_range = json.loads(await registry.execute("calendar_list", {
            "start": "2025-02-01T00:00:00Z", "end": "2025-02-28T00:00:00Z",
        }))
        assert [e["id"] for e in in_range] == [event["id"]]
        out_of_range = json.loads(await registry.execute("calendar_list", {
            "start": "2025-03-01T00:00:00Z", "end": "2025-03-31T00:00:00Z",
        }))
        assert out_of_range == []

        moved = json.loads(await registry.execute("calendar_update", {
            "id": event["id"], "start_time": "2025-02-03T10:00:00Z",
        }))
        assert moved["start_time"] == "2025-02-03T10:00:00Z"
        assert moved["end_time"] == "2025-02-03T09:15:00Z"

        deleted = json.loads(await registry.execute("calendar_delete", {"id": event["id"]}))
        assert deleted == {"success": True, "id": event["id"]}

    @pytest.mark.asyncio
    async def test_create_requires_start_time(self, store):
        result = json.loads(await registry_with(store).execute("calendar_create", {"title": "No time"}))
        assert "error" in result
