import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import CapabilityError
from .types import (
    ContentPart, FileArtifact, ImageContent, Message, ProviderType,
    TextContent, ToolCall,
)

# Substrings (lowercase) of model names known to accept image input
VISION_MODEL_MARKERS = (
    "gpt-4o",
    "gpt-4-turbo",
    "gpt-4-vision",
    "claude-3",
    "claude-opus",
    "claude-sonnet",
    "claude-haiku",
    "vision",
)

# =============================================================================
# Content Helpers
# =============================================================================

def create_text_content(text: str) -> TextContent:
    """
    Create a standardized simple text content part.

    Args:
        text (str): The text message content.

    Returns:
        TextContent: A dictionary {"type": "text", "text": text}.
    """
    return {"type": "text", "text": text}


def create_image_content(b64_data: str, mime_type: str) -> ImageContent:
    """
    Create a neutral image content part from base64 data.

    Args:
        b64_data (str): Base64-encoded image bytes.
        mime_type (str): The MIME type (e.g., 'image/png').

    Returns:
        ImageContent: {"type": "image", "base64": ..., "mime_type": ...}
    """
    return {"type": "image", "base64": b64_data, "mime_type": mime_type}


def model_supports_vision(model: Optional[str]) -> bool:
    """Whether ``model`` is known to accept image input."""
    if not model:
        return False
    name = model.lower()
    return any(marker in name for marker in VISION_MODEL_MARKERS)


def _parse_data_uri(url: str) -> Tuple[str, str]:
    # data:[<mediatype>][;base64],<data>
    header, data = url.split(",", 1)
    mime_type = header.split(":", 1)[1].split(";")[0]
    return data, mime_type


def _text_of(content: Any) -> str:
    """Flatten string or block-list content to its text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "") for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


# =============================================================================
# User Message Construction
# =============================================================================

def build_user_message(
    content: str,
    files: Optional[List[FileArtifact]],
    model: str,
    provider_type: ProviderType,
) -> Message:
    """
    Build the user message for a turn, in the shape ``provider_type`` expects.

    Text files are inlined into the message text as ``[File: name]`` blocks.
    Images turn the content into a list of parts: OpenAI puts the text first
    and one data-URI ``image_url`` part per image; Anthropic puts one base64
    ``image`` part per image first and the text last.

    Args:
        content (str): The user's message text.
        files (List[FileArtifact]): Normalized uploads, in display order.
        model (str): Target model; must be vision-capable if images are attached.
        provider_type (str): "openai" or "anthropic".

    Returns:
        Message: A user message ready for the provider.

    Raises:
        CapabilityError: If images are attached and the model cannot see them.
    """
    if not files:
        return {"role": "user", "content": content}

    text_blocks = []
    images = []
    for f in files:
        if f.get("type") == "text":
            text_blocks.append(f"\n\n[File: {f.get('filename', '')}]\n{f.get('content') or ''}")
        elif f.get("type") == "image":
            images.append(f)

    full_text = content + "".join(text_blocks)

    if not images:
        return {"role": "user", "content": full_text}

    if not model_supports_vision(model):
        raise CapabilityError(
            f"Model {model} does not support image inputs. "
            "Please use a vision-capable model like gpt-4o or claude-3."
        )

    if provider_type == "anthropic":
        parts: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": img.get("mimeType"), "data": img.get("base64")},
            }
            for img in images
        ]
        parts.append({"type": "text", "text": full_text})
        return {"role": "user", "content": parts}

    parts = [{"type": "text", "text": full_text}]
    for img in images:
        parts.append({
            "type": "image_url",
            "image_url": {"url": f"data:{img.get('mimeType')};base64,{img.get('base64')}"},
        })
    return {"role": "user", "content": parts}


# =============================================================================
# Tool Calling Helpers
# =============================================================================

def create_tool_result(tool_call_id: str, content: str) -> Message:
    """
    Create a neutral tool result message.

    Args:
        tool_call_id (str): The ID of the tool call this result corresponds to.
        content (str): The stringified result of the tool execution.

    Returns:
        Message: A message dictionary with role='tool'.
    """
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": content,
    }


def create_assistant_message_with_tool_calls(
    content: str,
    tool_calls: List[ToolCall],
) -> Message:
    """
    Create an assistant message that includes tool calls.

    Args:
        content (str): Text the model produced in the same round (can be empty).
        tool_calls (List[ToolCall]): Tool calls, arguments as JSON strings.
            Arguments are re-serialized with ``json.dumps`` so every provider
            folds them back to the same string; unusable JSON becomes "{}".

    Returns:
        Message: A message dictionary with role='assistant'.
    """
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": [
            {"id": tc["id"], "name": tc["name"], "arguments": json.dumps(parse_tool_arguments(tc.get("arguments")))}
            for tc in tool_calls
        ],
    }


def parse_tool_arguments(arguments: Optional[str]) -> Dict[str, Any]:
    """Parse a tool call's JSON arguments; anything unusable becomes {}."""
    try:
        parsed = json.loads(arguments or "{}")
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


# =============================================================================
# Provider Conversion (neutral -> wire)
# =============================================================================

def to_openai_messages(messages: List[Message], system_prompt: str = "") -> List[Dict[str, Any]]:
    """
    Convert neutral messages to OpenAI chat-completions format.

    Handles:
    - System prompt prepended as an inline system message (unless one exists)
    - Assistant tool rounds (content None when empty, ``tool_calls`` envelope)
    - Tool results as independent role="tool" messages
    - Multimodal user content (text, then data-URI images)
    """
    converted: List[Dict[str, Any]] = []
    if system_prompt and not any(m.get("role") == "system" for m in messages):
        converted.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg.get("role", "user")
        content = msg.get("content", "")

        if role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": msg.get("tool_call_id", ""),
                "content": _text_of(content),
            })
            continue

        if role == "assistant" and msg.get("tool_calls"):
            converted.append({
                "role": "assistant",
                "content": _text_of(content) or None,
                "tool_calls": [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": tc["arguments"]},
                    }
                    for tc in msg["tool_calls"]
                ],
            })
            continue

        if isinstance(content, str):
            converted.append({"role": role, "content": content})
            continue

        openai_content = []
        for part in content:
            if part.get("type") == "text":
                openai_content.append({"type": "text", "text": part.get("text", "")})
            elif part.get("type") == "image":
                openai_content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.get('mime_type')};base64,{part.get('base64')}"},
                })
        converted.append({"role": role, "content": openai_content})

    return converted


def to_anthropic_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """
    Convert neutral messages to Anthropic Messages API format.

    System messages are dropped (the prompt travels in the top-level
    ``system`` field). Each run of consecutive tool results is bundled into
    exactly one user message of ``tool_result`` blocks.
    """
    converted: List[Dict[str, Any]] = []
    pending_results: List[Dict[str, Any]] = []

    def flush_results() -> None:
        if pending_results:
            converted.append({"role": "user", "content": list(pending_results)})
            pending_results.clear()

    for msg in messages:
        role = msg.get("role", "user")
        content = msg.get("content", "")

        if role == "system":
            continue

        if role == "tool":
            pending_results.append({
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id", ""),
                "content": _text_of(content),
            })
            continue

        flush_results()

        if role == "assistant" and msg.get("tool_calls"):
            blocks: List[Dict[str, Any]] = []
            text = _text_of(content)
            if text:
                blocks.append({"type": "text", "text": text})
            for tc in msg["tool_calls"]:
                blocks.append({
                    "type": "tool_use",
                    "id": tc["id"],
                    "name": tc["name"],
                    "input": parse_tool_arguments(tc.get("arguments")),
                })
            converted.append({"role": "assistant", "content": blocks})
            continue

        if isinstance(content, str):
            converted.append({"role": role, "content": content})
            continue

        images = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": p.get("mime_type"), "data": p.get("base64")},
            }
            for p in content if p.get("type") == "image"
        ]
        texts = [
            {"type": "text", "text": p.get("text", "")}
            for p in content if p.get("type") == "text"
        ]
        converted.append({"role": role, "content": images + texts})

    flush_results()
    return converted


# =============================================================================
# Folding (wire -> neutral)
# =============================================================================

def _fold_part(part: Dict[str, Any]) -> Optional[ContentPart]:
    kind = part.get("type")
    if kind == "text":
        return create_text_content(part.get("text", ""))
    if kind == "image" and "source" in part:
        source = part.get("source") or {}
        return create_image_content(source.get("data", ""), source.get("media_type", ""))
    if kind == "image":
        return create_image_content(part.get("base64", ""), part.get("mime_type", ""))
    if kind == "image_url":
        url = (part.get("image_url") or {}).get("url", "")
        if url.startswith("data:"):
            b64_data, mime_type = _parse_data_uri(url)
            return create_image_content(b64_data, mime_type)
    return None


def _fold_tool_call(tc: Dict[str, Any]) -> ToolCall:
    if "function" in tc:
        function = tc.get("function") or {}
        return {"id": tc.get("id", ""), "name": function.get("name", ""), "arguments": function.get("arguments", "")}
    return {"id": tc.get("id", ""), "name": tc.get("name", ""), "arguments": tc.get("arguments", "")}


def fold_message(message: Dict[str, Any]) -> List[Message]:
    """
    Fold one message of any supported shape back to neutral form.

    Returns a list because an Anthropic tool-result bundle expands into one
    neutral tool message per result. System messages fold to nothing.
    Folding a neutral message returns it unchanged.
    """
    role = message.get("role", "user")
    content = message.get("content", "")

    if role == "system":
        return []

    if role == "tool":
        return [create_tool_result(message.get("tool_call_id", ""), _text_of(content))]

    if role == "assistant":
        tool_calls = [_fold_tool_call(tc) for tc in message.get("tool_calls") or []]
        if isinstance(content, list):
            for block in content:
                if block.get("type") == "tool_use":
                    tool_calls.append({
                        "id": block.get("id", ""),
                        "name": block.get("name", ""),
                        "arguments": json.dumps(block.get("input") or {}),
                    })
        folded: Message = {"role": "assistant", "content": _text_of(content)}
        if tool_calls:
            folded["tool_calls"] = tool_calls
        return [folded]

    if isinstance(content, str):
        return [{"role": role, "content": content}]

    results = [
        create_tool_result(block.get("tool_use_id", ""), _text_of(block.get("content")))
        for block in content if block.get("type") == "tool_result"
    ]
    parts = [p for p in (_fold_part(block) for block in content if block.get("type") != "tool_result") if p]
    if parts:
        # Canonical order: text parts first, then images
        parts = [p for p in parts if p["type"] == "text"] + [p for p in parts if p["type"] == "image"]
        results.append({"role": role, "content": parts})
    return results


def fold_turn(
    messages: List[Dict[str, Any]],
    trailing_text: str = "",
    trailing_captured: bool = True,
) -> List[Message]:
    """
    Produce the list to persist at the end of a turn.

    Strips system messages, folds every message to neutral form, and appends
    the final assistant text when the loop has not already captured it.

    Args:
        messages: Working messages of the turn (history, user message, rounds).
        trailing_text: Text of the last provider call.
        trailing_captured: Whether ``trailing_text`` is already part of
            ``messages``.

    Returns:
        List[Message]: Neutral messages, safe to store.
    """
    folded: List[Message] = []
    for msg in messages:
        folded.extend(fold_message(msg))
    if trailing_text and not trailing_captured:
        folded.append({"role": "assistant", "content": trailing_text})
    return folded


# =============================================================================
# File Helpers
# =============================================================================

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def load_file_artifact(path: Union[str, Path]) -> FileArtifact:
    """
    Read a local file into a FileArtifact (images as base64, the rest as text).

    Args:
        path (Union[str, Path]): Path to the file.

    Returns:
        FileArtifact: The normalized file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    data = path.read_bytes()
    mime_type = IMAGE_MIME_TYPES.get(path.suffix.lower())
    if mime_type:
        return {
            "type": "image",
            "base64": base64.b64encode(data).decode("utf-8"),
            "mimeType": mime_type,
            "filename": path.name,
            "size": len(data),
        }
    return {
        "type": "text",
        "content": data.decode("utf-8", errors="replace"),
        "filename": path.name,
        "size": len(data),
    }
