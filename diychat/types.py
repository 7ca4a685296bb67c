from typing import Literal, List, Dict, Any, Union, TypedDict, Optional

# =============================================================================
# Type Definitions
# =============================================================================

# Supported backend protocols
ProviderType = Literal["openai", "anthropic"]


class TextContent(TypedDict, total=False):
    """
    Text content part for multimodal messages.
    """
    type: Literal["text"]
    text: str


class ImageContent(TypedDict, total=False):
    """
    Image content part in the neutral (stored) form.

    Images are always kept inline as base64 so that a stored conversation can
    be replayed against either provider without refetching anything.
    """
    type: Literal["image"]
    base64: str
    mime_type: str


# Content can be a simple string or a list of content parts (text + images)
ContentPart = Union[TextContent, ImageContent]
MessageContent = Union[str, List[ContentPart]]


class FileArtifact(TypedDict, total=False):
    """
    A file already normalized by the upload collaborator.

    Text files carry ``content``; images carry ``base64`` and ``mimeType``.
    """
    type: Literal["text", "image"]
    content: str
    base64: str
    mimeType: str
    filename: str
    size: int


# =============================================================================
# Tool Calling Type Definitions
# =============================================================================

class FunctionParameters(TypedDict, total=False):
    """
    JSON Schema for function parameters.
    """
    type: Literal["object"]
    properties: Dict[str, Any]
    required: List[str]


class ToolDefinition(TypedDict):
    """
    Provider-neutral tool definition handed to the adapters.
    """
    name: str
    description: str
    parameters: FunctionParameters


class ToolCall(TypedDict):
    """
    Tool call decoded from a model stream.

    ``arguments`` stays a JSON string; it is only parsed right before the
    tool runs.
    """
    id: str
    name: str
    arguments: str


# =============================================================================
# Message Type (depends on ToolCall)
# =============================================================================

class Message(TypedDict, total=False):
    """
    Chat message in the neutral form used for storage and for the working
    list of a turn.

    Roles:
    - "system": System prompt (never stored)
    - "user": User message
    - "assistant": Model response, with ``tool_calls`` for a tool round
    - "tool": Tool execution result
    """
    role: Literal["system", "user", "assistant", "tool"]
    content: MessageContent
    tool_call_id: str  # For tool result messages
    tool_calls: List[ToolCall]  # For assistant messages with tool calls


# =============================================================================
# Stored Records
# =============================================================================

class Backend(TypedDict):
    id: str
    name: str
    provider_type: ProviderType
    base_url: str
    api_key_encrypted: str
    models: List[str]
    is_default: bool
    created_at: str


class Project(TypedDict):
    id: str
    name: str
    system_prompt: str
    default_backend_id: Optional[str]
    default_model: Optional[str]
    enabled_tools: List[str]
    created_at: str


class Conversation(TypedDict):
    id: str
    project_id: Optional[str]
    title: str
    messages: List[Message]
    provider_override: Optional[str]
    model_override: Optional[str]
    created_at: str
    updated_at: str


# =============================================================================
# Chat Request / Events
# =============================================================================

class ChatRequest(TypedDict, total=False):
    """
    Inbound chat turn, as posted by the client.
    """
    conversationId: Optional[str]
    message: str
    projectId: Optional[str]
    backendId: Optional[str]
    model: Optional[str]
    files: List[FileArtifact]


# Events streamed to the client. Every event is a dict with a "type" key:
#   {"type": "chunk", "content": str}
#   {"type": "tool_start", "tool": str, "id": str}
#   {"type": "tool_done", "tool": str, "id": str, "result": str}
#   {"type": "done", "conversationId": str}
#   {"type": "error", "message": str}
ChatEvent = Dict[str, Any]
