import logging
from typing import Dict, Any, List, AsyncIterator, Optional

import httpx
import openai
from openai import AsyncOpenAI

from .base import BaseLLMProvider
from ..errors import ProviderError
from ..types import Message, ToolCall, ToolDefinition
from ..utils import to_openai_messages

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """
    Provider for OpenAI-compatible chat-completions APIs.

    Talks to ``{base_url}/v1/chat/completions`` with bearer auth and decodes
    the ``data: {...}`` / ``data: [DONE]`` stream itself.
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url)
        self.client = AsyncOpenAI(
            api_key=api_key or "",
            base_url=f"{self.base_url}/v1",
            max_retries=0,
            http_client=http_client,
        )

    @staticmethod
    def _convert_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
                },
            }
            for tool in tools
        ]

    def build_request(
        self,
        model: str,
        messages: List[Message],
        system_prompt: str = "",
        tools: Optional[List[ToolDefinition]] = None,
    ) -> Dict[str, Any]:
        """
        Build the chat-completions request body.

        ``tools`` and ``tool_choice`` are only present when there are tools.
        """
        request_kwargs: Dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(messages, system_prompt),
            "stream": True,
        }
        if tools:
            request_kwargs["tools"] = self._convert_tools(tools)
            request_kwargs["tool_choice"] = "auto"
        return request_kwargs

    async def stream(
        self,
        model: str,
        messages: List[Message],
        *,
        system_prompt: str = "",
        tools: Optional[List[ToolDefinition]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream a chat response using the OpenAI-compatible API.

        Tool call fragments are accumulated by their ``index``; ``id``,
        ``function.name`` and ``function.arguments`` are concatenated across
        frames, since a single call's arguments often span many frames.

        Yields:
            Dict[str, Any]: Stream events:
                - {'type': 'token', 'text': '...'}
                - {'type': 'done', 'finish_reason': ..., 'tool_calls': [...], 'text': '...'}
                - {'type': 'error', 'error': '...', 'status_code': ...}
        """
        request_kwargs = self.build_request(model, messages, system_prompt, tools)

        full_text = ""
        # index -> {"id", "name", "arguments"}; lives for this call only
        tool_call_map: Dict[int, Dict[str, str]] = {}

        try:
            async with self.client.chat.completions.with_streaming_response.create(**request_kwargs) as response:
                async for data in self.iter_sse_data(response.iter_lines()):
                    if data == "[DONE]":
                        break
                    frame = self.decode_frame(data)
                    if not frame:
                        continue
                    choices = frame.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}

                    piece = delta.get("content")
                    if piece:
                        full_text += piece
                        yield self.token_event(piece)

                    for tc in delta.get("tool_calls") or []:
                        idx = tc.get("index", 0)
                        slot = tool_call_map.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                        if tc.get("id"):
                            slot["id"] += tc["id"]
                        function = tc.get("function") or {}
                        if function.get("name"):
                            slot["name"] += function["name"]
                        if function.get("arguments"):
                            slot["arguments"] += function["arguments"]
        except openai.APIStatusError as e:
            yield self.error_event(
                f"OpenAI API error {e.status_code}: {e.response.text}", e.status_code
            )
            return
        except (openai.APIError, httpx.HTTPError) as e:
            yield self.error_event(f"OpenAI connection error: {e}")
            return

        tool_calls: List[ToolCall] = [
            {"id": slot["id"], "name": slot["name"], "arguments": slot["arguments"]}
            for _, slot in sorted(tool_call_map.items())
            if slot["name"]
        ]
        finish_reason = "tool_calls" if tool_calls else "stop"
        yield self.done_event(finish_reason, tool_calls, full_text)

    async def get_models(self) -> List[str]:
        """
        Get the sorted list of model ids from ``{base_url}/v1/models``.

        Returns:
            List[str]: Model ids, sorted.

        Raises:
            ProviderError: If the backend cannot be reached or answers non-2xx.
        """
        try:
            page = await self.client.models.list()
        except openai.APIStatusError as e:
            raise ProviderError(
                f"OpenAI API error {e.status_code}: {e.response.text}",
                status_code=e.status_code,
                body=e.response.text,
            ) from e
        except (openai.APIError, httpx.HTTPError) as e:
            raise ProviderError(f"OpenAI connection error: {e}") from e
        return sorted(m.id for m in page.data)
