import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, AsyncIterator, Optional

from ..types import Message, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    A provider turns one normalized request into a stream of three kinds of
    events, whatever the upstream framing looks like:

    - ``{"type": "token", "text": str}``: one per non-empty text fragment,
      in arrival order.
    - ``{"type": "done", "finish_reason": str, "tool_calls": [...], "text": str}``:
      exactly once when the stream ends normally.
    - ``{"type": "error", "error": str, "status_code": int | None}``:
      transport or HTTP failure; nothing follows it.
    """

    provider_name = "base"

    def __init__(self, api_key: Optional[str] = None, base_url: str = ""):
        self.api_key = api_key
        self.base_url = (base_url or "").rstrip("/")
        self.client = None

    @abstractmethod
    async def stream(
        self,
        model: str,
        messages: List[Message],
        *,
        system_prompt: str = "",
        tools: Optional[List[ToolDefinition]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream a chat response from the provider.

        Args:
            model (str): The model identifier.
            messages (List[Message]): Conversation in neutral form.
            system_prompt (str): Project system prompt (may be empty).
            tools (List[ToolDefinition], optional): Tools the model may call.

        Yields:
            Dict[str, Any]: token events, then one done or error event.
        """
        pass

    async def get_models(self) -> List[str]:
        """
        Get the sorted list of model ids the backend serves.

        Raises:
            NotImplementedError: If the protocol has no listing endpoint.
            ProviderError: If the request fails.
        """
        raise NotImplementedError(f"{self.provider_name} backends do not support model listing")

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
        if self.client is not None:
            await self.client.close()

    # ==========================================================================
    # Shared stream helpers
    # ==========================================================================

    @staticmethod
    async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
        """
        Yield the payload of every ``data:`` line of a server-sent event stream.

        ``event:`` lines, comments and blank separators are skipped; event
        names are carried inside the JSON payloads of both supported
        protocols.
        """
        async for line in lines:
            stripped = line.strip()
            if not stripped.startswith("data:"):
                continue
            yield stripped[5:].strip()

    @staticmethod
    def decode_frame(data: str) -> Optional[Dict[str, Any]]:
        """Parse one frame payload; malformed frames are skipped (None)."""
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream frame: %.80s", data)
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def token_event(text: str) -> Dict[str, Any]:
        return {"type": "token", "text": text}

    @staticmethod
    def done_event(finish_reason: str, tool_calls: List[ToolCall], text: str) -> Dict[str, Any]:
        return {"type": "done", "finish_reason": finish_reason, "tool_calls": tool_calls, "text": text}

    def error_event(self, message: str, status_code: Optional[int] = None) -> Dict[str, Any]:
        logger.warning("%s stream failed: %s", self.provider_name, message)
        return {"type": "error", "error": message, "status_code": status_code}
