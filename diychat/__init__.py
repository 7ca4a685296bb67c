from .config import Settings
from .crypto import KeyCipher
from .errors import (
    DiyChatError, ConfigurationError, CapabilityError, ProviderError,
    NotFoundError, ProtectedResourceError,
)
from .orchestrator import ChatOrchestrator
from .providers import BaseLLMProvider, OpenAIProvider, AnthropicProvider, create_provider
from .store import Store
from .tools import Tool, ToolRegistry, build_registry, BUILTIN_TOOL_NAMES
from .types import Message, ToolCall, ToolDefinition, ContentPart, ImageContent, TextContent, FileArtifact

__all__ = [
    "Settings",
    "KeyCipher",
    "DiyChatError",
    "ConfigurationError",
    "CapabilityError",
    "ProviderError",
    "NotFoundError",
    "ProtectedResourceError",
    "ChatOrchestrator",
    "BaseLLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "create_provider",
    "Store",
    "Tool",
    "ToolRegistry",
    "build_registry",
    "BUILTIN_TOOL_NAMES",
    "Message",
    "ToolCall",
    "ToolDefinition",
    "ContentPart",
    "ImageContent",
    "TextContent",
    "FileArtifact",
]
