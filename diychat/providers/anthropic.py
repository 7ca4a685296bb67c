import json
import logging
from typing import Dict, Any, List, AsyncIterator, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from .base import BaseLLMProvider
from ..types import Message, ToolCall, ToolDefinition
from ..utils import to_anthropic_messages

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(BaseLLMProvider):
    """
    Provider for Anthropic-compatible Messages APIs.

    Talks to ``{base_url}/v1/messages`` with ``x-api-key`` and decodes the
    named-event stream (``message_delta``, ``content_block_start``,
    ``content_block_delta``) itself.
    """

    provider_name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.anthropic.com",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url)
        self.client = AsyncAnthropic(
            api_key=api_key or "",
            base_url=self.base_url,
            max_retries=0,
            default_headers={"anthropic-version": ANTHROPIC_VERSION},
            http_client=http_client,
        )

    @staticmethod
    def _convert_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        """
        Convert tool definitions to Claude format.

        Claude uses 'input_schema' instead of 'parameters'.
        """
        return [
            {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "input_schema": tool.get("parameters") or {"type": "object", "properties": {}},
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
        Build the Messages API request body.

        System-role messages never reach the wire; the prompt is the
        top-level ``system`` field.
        """
        request_kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "messages": to_anthropic_messages([m for m in messages if m.get("role") != "system"]),
            "stream": True,
        }
        if system_prompt:
            request_kwargs["system"] = system_prompt
        if tools:
            request_kwargs["tools"] = self._convert_tools(tools)
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
        Stream a chat response from Claude.

        Text deltas are yielded as they arrive. ``tool_use`` blocks are
        tracked by block index and their ``partial_json`` fragments are
        concatenated, then parsed once the stream ends (empty object if the
        buffer is not valid JSON).

        Yields:
            Dict[str, Any]: token events, then one done or error event.
        """
        request_kwargs = self.build_request(model, messages, system_prompt, tools)
        if not self.api_key:
            # The SDK refuses to send a request without x-api-key
            yield self.error_event("Anthropic backend has no API key configured")
            return

        full_text = ""
        stop_reason = "end_turn"
        # block index -> {"id", "name", "input_json"}; lives for this call only
        tool_use_map: Dict[int, Dict[str, str]] = {}

        try:
            async with self.client.messages.with_streaming_response.create(**request_kwargs) as response:
                async for data in self.iter_sse_data(response.iter_lines()):
                    frame = self.decode_frame(data)
                    if not frame:
                        continue
                    event_type = frame.get("type")

                    if event_type == "message_delta":
                        reason = (frame.get("delta") or {}).get("stop_reason")
                        if reason:
                            stop_reason = reason

                    elif event_type == "content_block_start":
                        block = frame.get("content_block") or {}
                        if block.get("type") == "tool_use":
                            tool_use_map[frame.get("index", 0)] = {
                                "id": block.get("id", ""),
                                "name": block.get("name", ""),
                                "input_json": "",
                            }

                    elif event_type == "content_block_delta":
                        delta = frame.get("delta") or {}
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            full_text += delta["text"]
                            yield self.token_event(delta["text"])
                        elif delta.get("type") == "input_json_delta":
                            slot = tool_use_map.get(frame.get("index", 0))
                            if slot is not None:
                                slot["input_json"] += delta.get("partial_json") or ""
        except anthropic.APIStatusError as e:
            yield self.error_event(
                f"Anthropic API error {e.status_code}: {e.response.text}", e.status_code
            )
            return
        except (anthropic.APIError, httpx.HTTPError) as e:
            yield self.error_event(f"Anthropic connection error: {e}")
            return

        tool_calls: List[ToolCall] = []
        for _, slot in sorted(tool_use_map.items()):
            if not slot["name"]:
                continue
            try:
                parsed = json.loads(slot["input_json"] or "{}")
            except json.JSONDecodeError:
                parsed = {}
            tool_calls.append({
                "id": slot["id"],
                "name": slot["name"],
                "arguments": json.dumps(parsed),
            })
        yield self.done_event(stop_reason, tool_calls, full_text)
