"""
The chat turn loop.

A turn resolves its project, backend and model, builds the user message, then
alternates between streaming a provider response and running the tools the
model asked for, until the model answers without tool calls or the iteration
cap is hit. Everything the caller sees is an event dict yielded from
``ChatOrchestrator.run_turn``; the conversation row is written only when the
turn finishes successfully.
"""

import logging
from typing import AsyncIterator, Callable, List, Optional

from .config import (
    DEFAULT_CONVERSATION_TITLE,
    FALLBACK_MODELS,
    MAX_TOOL_ITERATIONS,
    TITLE_MAX_CHARS,
)
from .crypto import KeyCipher
from .errors import CapabilityError, ConfigurationError
from .providers import BaseLLMProvider, create_provider
from .store import Store
from .tools import ToolRegistry
from .types import Backend, ChatEvent, ChatRequest, Conversation, Message, Project
from .utils import (
    build_user_message,
    create_assistant_message_with_tool_calls,
    create_tool_result,
    fold_message,
    fold_turn,
    parse_tool_arguments,
)

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Backend, KeyCipher], BaseLLMProvider]


def chunk_event(content: str) -> ChatEvent:
    return {"type": "chunk", "content": content}


def error_event(message: str) -> ChatEvent:
    return {"type": "error", "message": message}


class ChatOrchestrator:
    """
    Runs chat turns against the configured backends.

    Args:
        store: Persistence for projects, backends and conversations.
        registry: Tools the model may call.
        cipher: Decrypts backend API keys.
        provider_factory: Builds a provider adapter for a backend. Defaults
            to :func:`diychat.providers.create_provider`.
        max_iterations: Provider calls allowed per turn.
    """

    def __init__(
        self,
        store: Store,
        registry: ToolRegistry,
        cipher: KeyCipher,
        provider_factory: Optional[ProviderFactory] = None,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        self.store = store
        self.registry = registry
        self.cipher = cipher
        self.provider_factory = provider_factory or create_provider
        self.max_iterations = max_iterations

    # ==========================================================================
    # Resolution
    # ==========================================================================

    def resolve_project(self, project_id: Optional[str]) -> Project:
        if project_id:
            project = self.store.get_project(project_id)
        else:
            projects = self.store.list_projects()
            project = projects[0] if projects else None
        if project is None:
            raise ConfigurationError("Project not found")
        return project

    def resolve_backend(
        self,
        backend_id: Optional[str],
        project: Project,
        conversation: Optional[Conversation],
    ) -> Backend:
        """
        Pick the backend for a turn.

        Precedence: the request's backend, the conversation's override, the
        project default, then the global default.
        """
        chosen = (
            backend_id
            or (conversation or {}).get("provider_override")
            or project.get("default_backend_id")
        )
        backend = self.store.get_backend(chosen) if chosen else self.store.get_default_backend()
        if backend is None:
            raise ConfigurationError("No backend configured. Please add an AI backend in Settings.")
        return backend

    @staticmethod
    def resolve_model(
        model: Optional[str],
        project: Project,
        conversation: Optional[Conversation],
        backend: Backend,
    ) -> str:
        return (
            model
            or (conversation or {}).get("model_override")
            or project.get("default_model")
            or FALLBACK_MODELS.get(backend["provider_type"], FALLBACK_MODELS["openai"])
        )

    # ==========================================================================
    # Turn
    # ==========================================================================

    async def run_turn(self, request: ChatRequest) -> AsyncIterator[ChatEvent]:
        """
        Run one user turn.

        Args:
            request (ChatRequest): ``message`` plus optional ``conversationId``,
                ``projectId``, ``backendId``, ``model`` and ``files``.

        Yields:
            ChatEvent: ``chunk`` events live, ``tool_start``/``tool_done``
            around each tool call, then exactly one ``done`` or ``error``.
        """
        provider: Optional[BaseLLMProvider] = None
        try:
            message = request.get("message") or ""
            conversation = None
            if request.get("conversationId"):
                conversation = self.store.get_conversation(request["conversationId"])

            project = self.resolve_project(request.get("projectId"))
            backend = self.resolve_backend(request.get("backendId"), project, conversation)
            model = self.resolve_model(request.get("model"), project, conversation, backend)
            provider_type = backend["provider_type"]

            user_message = build_user_message(message, request.get("files") or [], model, provider_type)

            history: List[Message] = list((conversation or {}).get("messages") or [])
            working: List[Message] = history + fold_message(user_message)
            tool_defs = self.registry.definitions_for(project.get("enabled_tools"))

            logger.info(
                "Turn started: project=%s backend=%s model=%s tools=%d",
                project["id"], backend["id"], model, len(tool_defs),
            )
            provider = self.provider_factory(backend, self.cipher)

            trailing_text = ""
            trailing_captured = True
            for iteration in range(self.max_iterations):
                outcome = None
                stream = provider.stream(
                    model, working, system_prompt=project.get("system_prompt") or "", tools=tool_defs,
                )
                try:
                    async for event in stream:
                        if event["type"] == "token":
                            yield chunk_event(event["text"])
                        else:
                            outcome = event
                finally:
                    # Releases the upstream response when the client goes away mid-stream
                    await stream.aclose()

                if outcome is None or outcome["type"] == "error":
                    reason = (outcome or {}).get("error") or "Provider stream ended unexpectedly"
                    logger.warning("Turn failed on iteration %d: %s", iteration + 1, reason)
                    yield error_event(reason)
                    return

                tool_calls = outcome.get("tool_calls") or []
                if not tool_calls:
                    trailing_text = outcome.get("text") or ""
                    trailing_captured = False
                    break

                working.append(create_assistant_message_with_tool_calls(outcome.get("text") or "", tool_calls))
                for call in tool_calls:
                    yield {"type": "tool_start", "tool": call["name"], "id": call["id"]}
                    result = await self.registry.execute(call["name"], parse_tool_arguments(call["arguments"]))
                    logger.info("Tool %s (%s) finished", call["name"], call["id"])
                    yield {"type": "tool_done", "tool": call["name"], "id": call["id"], "result": result}
                    working.append(create_tool_result(call["id"], result))
            else:
                logger.info("Tool iteration cap (%d) reached", self.max_iterations)

            conversation_id = self._persist(
                conversation, project, message, fold_turn(working, trailing_text, trailing_captured)
            )
            logger.info("Turn finished: conversation=%s", conversation_id)
            yield {"type": "done", "conversationId": conversation_id}

        except (ConfigurationError, CapabilityError) as e:
            logger.warning("Turn rejected: %s", e)
            yield error_event(str(e))
        except Exception as e:
            logger.exception("Unexpected error during chat turn")
            yield error_event(str(e) or e.__class__.__name__)
        finally:
            if provider is not None:
                await provider.aclose()

    def _persist(
        self,
        conversation: Optional[Conversation],
        project: Project,
        message: str,
        messages: List[Message],
    ) -> str:
        if conversation is None:
            conversation = self.store.create_conversation({"project_id": project["id"]})

        title = conversation["title"]
        if title == DEFAULT_CONVERSATION_TITLE and message:
            title = message[:TITLE_MAX_CHARS]

        self.store.save_turn(conversation["id"], messages, title)
        return conversation["id"]
