import json

import httpx
import pytest

from diychat.errors import ConfigurationError, ProviderError
from diychat.providers import AnthropicProvider, OpenAIProvider, create_provider

TOOLS = [{
    "name": "get_weather",
    "description": "Get weather",
    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
}]


async def collect(agen):
    return [event async for event in agen]


def stream_response(body: bytes) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_stream_text_chunks_in_order(self, mock_http, sse):
        body = sse(
            {"choices": [{"delta": {"content": "He"}}]},
            {"choices": [{"delta": {"content": "llo"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
            "[DONE]",
        )
        client, _ = mock_http(lambda request: stream_response(body))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}]))

        assert [e["text"] for e in events if e["type"] == "token"] == ["He", "llo"]
        assert events[-1] == {"type": "done", "finish_reason": "stop", "tool_calls": [], "text": "Hello"}

    @pytest.mark.asyncio
    async def test_stream_request_shape(self, mock_http, sse):
        client, requests = mock_http(lambda request: stream_response(sse("[DONE]")))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream/", http_client=client)

        await collect(provider.stream(
            "gpt-4o", [{"role": "user", "content": "hi"}], system_prompt="Be brief", tools=TOOLS,
        ))

        request = requests[0]
        assert request.url == "http://upstream/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["stream"] is True
        assert body["messages"][0] == {"role": "system", "content": "Be brief"}
        assert body["tool_choice"] == "auto"
        assert body["tools"][0]["function"]["name"] == "get_weather"

    @pytest.mark.asyncio
    async def test_no_tools_omits_tool_fields(self, mock_http, sse):
        client, requests = mock_http(lambda request: stream_response(sse("[DONE]")))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}], tools=[]))

        body = json.loads(requests[0].content)
        assert "tools" not in body
        assert "tool_choice" not in body

    @pytest.mark.asyncio
    async def test_tool_call_fragments_reassembled_by_index(self, mock_http, sse):
        body = sse(
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": "{\"a\":1"}},
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": ",\"b\":2}"}}]}}]},
            "[DONE]",
        )
        client, _ = mock_http(lambda request: stream_response(body))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}], tools=TOOLS))

        done = events[-1]
        assert done["finish_reason"] == "tool_calls"
        assert len(done["tool_calls"]) == 1
        call = done["tool_calls"][0]
        assert call["id"] == "call_1"
        assert call["name"] == "get_weather"
        assert json.loads(call["arguments"]) == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_malformed_frames_skipped(self, mock_http, sse):
        body = sse(
            "{not json",
            {"choices": [{"delta": {"content": "ok"}}]},
            "[DONE]",
            {"choices": [{"delta": {"content": "after done"}}]},
        )
        client, _ = mock_http(lambda request: stream_response(body))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}]))

        assert [e["type"] for e in events] == ["token", "done"]
        assert events[-1]["text"] == "ok"

    @pytest.mark.asyncio
    async def test_non_2xx_yields_single_error(self, mock_http):
        client, _ = mock_http(lambda request: httpx.Response(401, json={"error": {"message": "bad key"}}))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}]))

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["status_code"] == 401
        assert "401" in events[0]["error"]
        assert "bad key" in events[0]["error"]

    @pytest.mark.asyncio
    async def test_connection_failure_yields_error(self, mock_http):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = mock_http(handler)
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("gpt-4o", [{"role": "user", "content": "hi"}]))

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["status_code"] is None

    @pytest.mark.asyncio
    async def test_get_models_sorted(self, mock_http):
        payload = {"object": "list", "data": [
            {"id": "gpt-4o", "object": "model", "created": 0, "owned_by": "openai"},
            {"id": "gpt-3.5-turbo", "object": "model", "created": 0, "owned_by": "openai"},
        ]}
        client, requests = mock_http(lambda request: httpx.Response(200, json=payload))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        assert await provider.get_models() == ["gpt-3.5-turbo", "gpt-4o"]
        assert requests[0].url == "http://upstream/v1/models"

    @pytest.mark.asyncio
    async def test_get_models_error_raises(self, mock_http):
        client, _ = mock_http(lambda request: httpx.Response(500, text="boom"))
        provider = OpenAIProvider(api_key="sk-test", base_url="http://upstream", http_client=client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_models()
        assert exc_info.value.status_code == 500


class TestAnthropicProvider:
    def test_build_request_filters_system(self):
        provider = AnthropicProvider(api_key="sk-ant")
        request = provider.build_request(
            "claude-3-5-sonnet-20241022",
            [{"role": "system", "content": "ignored"}, {"role": "user", "content": "hi"}],
            system_prompt="Be brief",
            tools=TOOLS,
        )
        assert request["system"] == "Be brief"
        assert request["max_tokens"] == 4096
        assert request["messages"] == [{"role": "user", "content": "hi"}]
        assert request["tools"][0]["input_schema"] == TOOLS[0]["parameters"]

    def test_build_request_omits_empty_system_and_tools(self):
        provider = AnthropicProvider(api_key="sk-ant")
        request = provider.build_request("claude-3-5-sonnet-20241022", [{"role": "user", "content": "hi"}])
        assert "system" not in request
        assert "tools" not in request

    @pytest.mark.asyncio
    async def test_stream_text_and_tool_use(self, mock_http, sse):
        body = sse(
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me check"}},
            {"type": "content_block_start", "index": 1,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather"}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": "{\"a\":1"}},
            "{broken",
            {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ",\"b\":2}"}},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
            event_names=[
                "message_start", "content_block_start", "content_block_delta", "content_block_start",
                "content_block_delta", "content_block_delta", "content_block_delta", "message_delta",
                "message_stop",
            ],
        )
        client, requests = mock_http(lambda request: stream_response(body))
        provider = AnthropicProvider(api_key="sk-ant", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream(
            "claude-3-5-sonnet-20241022", [{"role": "user", "content": "weather?"}], tools=TOOLS,
        ))

        assert events[0] == {"type": "token", "text": "Let me check"}
        done = events[-1]
        assert done["type"] == "done"
        assert done["finish_reason"] == "tool_use"
        assert done["tool_calls"][0]["id"] == "toolu_1"
        assert json.loads(done["tool_calls"][0]["arguments"]) == {"a": 1, "b": 2}

        request = requests[0]
        assert request.url == "http://upstream/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert json.loads(request.content)["stream"] is True

    @pytest.mark.asyncio
    async def test_invalid_tool_json_becomes_empty_object(self, mock_http, sse):
        body = sse(
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_datetime"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": "{\"a\":"}},
        )
        client, _ = mock_http(lambda request: stream_response(body))
        provider = AnthropicProvider(api_key="sk-ant", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("claude-3-5-sonnet-20241022", [{"role": "user", "content": "hi"}]))

        done = events[-1]
        assert done["finish_reason"] == "end_turn"
        assert done["tool_calls"][0]["arguments"] == "{}"

    @pytest.mark.asyncio
    async def test_non_2xx_yields_single_error(self, mock_http):
        error_body = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
        client, _ = mock_http(lambda request: httpx.Response(529, json=error_body))
        provider = AnthropicProvider(api_key="sk-ant", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("claude-3-5-sonnet-20241022", [{"role": "user", "content": "hi"}]))

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["status_code"] == 529
        assert "Overloaded" in events[0]["error"]

    @pytest.mark.asyncio
    async def test_missing_api_key_yields_error(self, mock_http):
        client, requests = mock_http(lambda request: httpx.Response(200))
        provider = AnthropicProvider(api_key="", base_url="http://upstream", http_client=client)

        events = await collect(provider.stream("claude-3-5-sonnet-20241022", [{"role": "user", "content": "hi"}]))

        assert [e["type"] for e in events] == ["error"]
        assert requests == []


class TestCreateProvider:
    def test_decrypts_key(self, cipher):
        backend = {
            "provider_type": "openai",
            "base_url": "http://upstream",
            "api_key_encrypted": cipher.encrypt("sk-secret"),
        }
        provider = create_provider(backend, cipher)
        assert isinstance(provider, OpenAIProvider)
        assert provider.api_key == "sk-secret"

    def test_unknown_type(self, cipher):
        with pytest.raises(ConfigurationError):
            create_provider({"provider_type": "gemini", "base_url": "x", "api_key_encrypted": ""}, cipher)
