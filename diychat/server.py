"""
HTTP API for diychat.

``create_app`` wires the store, tool registry and orchestrator into a FastAPI
application. ``POST /api/chat`` streams the turn as server-sent events; the
remaining routes are CRUD over backends, projects and conversations.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import Settings
from .crypto import KeyCipher, mask_key
from .errors import NotFoundError, ProtectedResourceError, ProviderError
from .orchestrator import ChatOrchestrator, ProviderFactory
from .providers import create_provider
from .store import Store
from .tools import BUILTIN_TOOL_NAMES, ToolRegistry, build_registry
from .types import Backend

logger = logging.getLogger(__name__)

# Placeholder the UI sends back when the key field was left untouched
KEY_PLACEHOLDER = "***"

# =============================================================================
# Request Models
# =============================================================================


class FileArtifactModel(BaseModel):
    type: Literal["text", "image"]
    content: Optional[str] = None
    base64: Optional[str] = None
    mimeType: Optional[str] = None
    filename: str = ""
    size: int = 0


class ChatRequestBody(BaseModel):
    message: str = ""
    conversationId: Optional[str] = None
    projectId: Optional[str] = None
    backendId: Optional[str] = None
    model: Optional[str] = None
    files: List[FileArtifactModel] = Field(default_factory=list)


class CreateBackendRequest(BaseModel):
    name: str = Field(..., min_length=1)
    provider_type: Literal["openai", "anthropic"]
    base_url: str = Field(..., min_length=1)
    api_key: Optional[str] = None
    models: List[str] = Field(default_factory=list)
    is_default: bool = False


class UpdateBackendRequest(BaseModel):
    name: Optional[str] = None
    provider_type: Optional[Literal["openai", "anthropic"]] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    models: Optional[List[str]] = None
    is_default: Optional[bool] = None


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    system_prompt: str = ""
    default_backend_id: Optional[str] = None
    default_model: Optional[str] = None
    enabled_tools: List[str] = Field(default_factory=list)


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = None
    system_prompt: Optional[str] = None
    default_backend_id: Optional[str] = None
    default_model: Optional[str] = None
    enabled_tools: Optional[List[str]] = None


class CreateConversationRequest(BaseModel):
    project_id: Optional[str] = None
    title: Optional[str] = None
    provider_override: Optional[str] = None
    model_override: Optional[str] = None


class UpdateConversationRequest(BaseModel):
    title: Optional[str] = None
    provider_override: Optional[str] = None
    model_override: Optional[str] = None


# =============================================================================
# Serializers
# =============================================================================


def serialize_backend(backend: Backend, cipher: KeyCipher) -> Dict[str, Any]:
    """Public view of a backend: the key is masked, never returned."""
    return {
        "id": backend["id"],
        "name": backend["name"],
        "provider_type": backend["provider_type"],
        "base_url": backend["base_url"],
        "api_key_masked": mask_key(cipher.decrypt(backend.get("api_key_encrypted") or "")),
        "models": backend.get("models") or [],
        "is_default": bool(backend.get("is_default")),
        "created_at": backend["created_at"],
    }


def serialize_conversation(conversation: Dict[str, Any], include_messages: bool = False) -> Dict[str, Any]:
    result = {k: v for k, v in conversation.items() if k != "messages"}
    if include_messages:
        result["messages"] = conversation.get("messages") or []
    return result


async def sse_stream(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    async for event in events:
        yield f"data: {json.dumps(event)}\n\n"


# =============================================================================
# App Factory
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    registry: Optional[ToolRegistry] = None,
    provider_factory: Optional[ProviderFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings (Settings, optional): Defaults to ``Settings.from_env()``.
        store (Store, optional): Defaults to a sqlite store at ``settings.db_path``.
        registry (ToolRegistry, optional): Defaults to every built-in tool.
        provider_factory (ProviderFactory, optional): Builds provider adapters;
            tests pass a stub here.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings.from_env()
    if settings.uses_dev_key:
        logger.warning("ENCRYPTION_KEY is not set; API keys are encrypted with the development key")

    store = store or Store(settings.db_path, tool_names=BUILTIN_TOOL_NAMES)
    registry = registry or build_registry(
        store,
        tavily_api_key=settings.tavily_api_key,
        searxng_base_url=settings.searxng_base_url,
    )
    cipher = KeyCipher(settings.encryption_key)
    provider_factory = provider_factory or create_provider
    orchestrator = ChatOrchestrator(store, registry, cipher, provider_factory=provider_factory)

    app = FastAPI(title="diychat")
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.orchestrator = orchestrator

    # ==========================================================================
    # Error handlers
    # ==========================================================================

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(ProtectedResourceError)
    async def protected_handler(request: Request, exc: ProtectedResourceError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": f"Invalid or missing fields: {', '.join(fields)}"},
        )

    def get_backend_or_404(backend_id: str) -> Backend:
        backend = store.get_backend(backend_id)
        if backend is None:
            raise NotFoundError("Backend not found")
        return backend

    # ==========================================================================
    # Chat
    # ==========================================================================

    @app.post("/api/chat")
    async def chat(body: ChatRequestBody) -> StreamingResponse:
        request = body.model_dump(exclude_none=True)
        return StreamingResponse(
            sse_stream(orchestrator.run_turn(request)),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # ==========================================================================
    # Backends
    # ==========================================================================

    @app.get("/api/backends")
    async def list_backends() -> List[Dict[str, Any]]:
        return [serialize_backend(b, cipher) for b in store.list_backends()]

    @app.post("/api/backends", status_code=status.HTTP_201_CREATED)
    async def create_backend(body: CreateBackendRequest) -> Dict[str, Any]:
        data = body.model_dump(exclude={"api_key"})
        data["api_key_encrypted"] = cipher.encrypt(body.api_key or "")
        return serialize_backend(store.create_backend(data), cipher)

    @app.put("/api/backends/{backend_id}")
    async def update_backend(backend_id: str, body: UpdateBackendRequest) -> Dict[str, Any]:
        data = body.model_dump(exclude_unset=True, exclude={"api_key"})
        if body.api_key and body.api_key != KEY_PLACEHOLDER:
            data["api_key_encrypted"] = cipher.encrypt(body.api_key)
        backend = store.update_backend(backend_id, data)
        if backend is None:
            raise NotFoundError("Backend not found")
        return serialize_backend(backend, cipher)

    @app.delete("/api/backends/{backend_id}")
    async def delete_backend(backend_id: str) -> Dict[str, Any]:
        store.delete_backend(backend_id)
        return {"success": True}

    @app.post("/api/backends/{backend_id}/test")
    async def test_backend(backend_id: str) -> Dict[str, Any]:
        backend = get_backend_or_404(backend_id)
        if backend["provider_type"] != "openai":
            return {
                "success": True,
                "message": "Anthropic backend configured (test not available without real request)",
            }
        provider = provider_factory(backend, cipher)
        try:
            return {"success": True, "models": await provider.get_models()}
        except ProviderError as e:
            return {"success": False, "error": str(e)}
        finally:
            await provider.aclose()

    @app.get("/api/backends/{backend_id}/models")
    async def backend_models(backend_id: str):
        backend = get_backend_or_404(backend_id)
        if backend["provider_type"] != "openai":
            return {"models": backend.get("models") or []}
        provider = provider_factory(backend, cipher)
        try:
            models = await provider.get_models()
        except ProviderError as e:
            return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": str(e)})
        finally:
            await provider.aclose()
        store.update_backend(backend_id, {"models": models})
        return {"models": models}

    # ==========================================================================
    # Projects
    # ==========================================================================

    @app.get("/api/projects")
    async def list_projects() -> List[Dict[str, Any]]:
        return store.list_projects()

    @app.post("/api/projects", status_code=status.HTTP_201_CREATED)
    async def create_project(body: CreateProjectRequest) -> Dict[str, Any]:
        return store.create_project(body.model_dump())

    @app.put("/api/projects/{project_id}")
    async def update_project(project_id: str, body: UpdateProjectRequest) -> Dict[str, Any]:
        project = store.update_project(project_id, body.model_dump(exclude_unset=True))
        if project is None:
            raise NotFoundError("Project not found")
        return project

    @app.delete("/api/projects/{project_id}")
    async def delete_project(project_id: str) -> Dict[str, Any]:
        store.delete_project(project_id)
        return {"success": True}

    # ==========================================================================
    # Conversations
    # ==========================================================================

    @app.get("/api/conversations")
    async def list_conversations(projectId: Optional[str] = None) -> List[Dict[str, Any]]:
        return [serialize_conversation(c) for c in store.list_conversations(projectId)]

    @app.post("/api/conversations", status_code=status.HTTP_201_CREATED)
    async def create_conversation(body: CreateConversationRequest) -> Dict[str, Any]:
        return serialize_conversation(store.create_conversation(body.model_dump()), include_messages=True)

    @app.put("/api/conversations/{conversation_id}")
    async def update_conversation(conversation_id: str, body: UpdateConversationRequest) -> Dict[str, Any]:
        conversation = store.update_conversation(conversation_id, body.model_dump(exclude_unset=True))
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return serialize_conversation(conversation)

    @app.delete("/api/conversations/{conversation_id}")
    async def delete_conversation(conversation_id: str) -> Dict[str, Any]:
        store.delete_conversation(conversation_id)
        return {"success": True}

    @app.get("/api/conversations/{conversation_id}/messages")
    async def conversation_messages(conversation_id: str) -> Dict[str, Any]:
        conversation = store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return {"messages": conversation.get("messages") or []}

    # ==========================================================================
    # Tools
    # ==========================================================================

    @app.get("/api/tools")
    async def list_tools() -> List[Dict[str, Any]]:
        return [
            {"name": d["name"], "description": d["description"]}
            for d in registry.definitions_for(registry.names)
        ]

    return app
