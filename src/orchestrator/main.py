"""Orchestrator - FastAPI Application.

Provides:
- Chat API for the frontend
- Conversation inspection, clearing and cooperative stop
- Tool listing
- Model configuration and credential verification
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.config import ConfigStore, ModelConfig, get_config_path, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import ConversationSnapshot
from orchestrator.conversation import ConversationManager, ConversationOrchestrator
from orchestrator.gateway import ModelGateway
from tools import ToolRegistry, load_default_tools

logger = get_logger(__name__)


# Request/Response Models
class ChatRequest(BaseModel):
    """Chat request from frontend."""
    message: str = Field(..., min_length=1, description="User message")
    conversation_id: Optional[str] = Field(default=None, description="Existing conversation ID")


class ChatResponse(BaseModel):
    conversation_id: str
    conversation: ConversationSnapshot


class ModelConfigUpdate(BaseModel):
    """Partial update of a model pointer's configuration."""
    provider: Optional[str] = None
    model_name: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)

    model_config = {"protected_namespaces": ()}


class PointerRequest(BaseModel):
    pointer: str


class VerifyRequest(BaseModel):
    provider: str
    api_key: str
    base_url: str


class HealthResponse(BaseModel):
    status: str
    tool_count: int
    conversation_count: int
    current_model_pointer: str


# Global instances
_config_store: Optional[ConfigStore] = None
_gateway: Optional[ModelGateway] = None
_conversations: Optional[ConversationManager] = None
_cleanup_task: Optional[asyncio.Task] = None


async def cleanup_conversations_task(manager: ConversationManager, interval: int = 300):
    """Background task to clean up expired conversations."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.cleanup_expired()
        except Exception as e:
            logger.error("Conversation cleanup failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global _config_store, _gateway, _conversations, _cleanup_task

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.environment == "production")
    logger.info("Starting Tool Assistant")

    _config_store = ConfigStore(get_config_path(), settings)
    _gateway = ModelGateway(timeout=settings.request_timeout_seconds)

    registry = ToolRegistry()
    load_default_tools(registry, _gateway, settings)

    _conversations = ConversationManager(_gateway, registry, settings)
    _cleanup_task = asyncio.create_task(cleanup_conversations_task(_conversations))

    logger.info("Tool Assistant started", tools=registry.tool_names())

    yield

    logger.info("Shutting down Tool Assistant")

    if _cleanup_task:
        _cleanup_task.cancel()
        try:
            await _cleanup_task
        except asyncio.CancelledError:
            pass

    await registry.close()
    await _gateway.close()


app = FastAPI(
    title="Tool Assistant",
    description="Tool-augmented conversation orchestration",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_conversations() -> ConversationManager:
    if _conversations is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not initialized"
        )
    return _conversations


def _require_config() -> ConfigStore:
    if _config_store is None or _gateway is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not initialized"
        )
    return _config_store


def _get_conversation(conversation_id: str) -> ConversationOrchestrator:
    orchestrator = _require_conversations().get(conversation_id)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return orchestrator


def _public_models(store: ConfigStore) -> dict[str, dict[str, Any]]:
    """Model configs without credentials."""
    return {
        pointer: {
            **config.model_dump(exclude={"api_key"}),
            "has_credential": config.has_credential,
        }
        for pointer, config in store.settings.models.items()
    }


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    conversations = _require_conversations()
    store = _require_config()

    return HealthResponse(
        status="healthy",
        tool_count=len(conversations.registry.tool_names()),
        conversation_count=conversations.get_stats()["total_conversations"],
        current_model_pointer=store.settings.current_model_pointer
    )


@app.post("/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest):
    """
    Process a chat message.

    Model and tool failures are part of the returned conversation, not
    HTTP errors.
    """
    conversations = _require_conversations()
    conversation_id, orchestrator = await conversations.get_or_create(request.conversation_id)

    snapshot = await orchestrator.send_message(request.message)
    return ChatResponse(conversation_id=conversation_id, conversation=snapshot)


@app.get("/conversations", tags=["Conversations"])
async def list_conversations():
    return {"conversations": _require_conversations().list_conversations()}


@app.get("/conversations/{conversation_id}", response_model=ChatResponse, tags=["Conversations"])
async def get_conversation(conversation_id: str):
    orchestrator = _get_conversation(conversation_id)
    return ChatResponse(conversation_id=conversation_id, conversation=orchestrator.snapshot())


@app.delete("/conversations/{conversation_id}", response_model=ChatResponse, tags=["Conversations"])
async def clear_conversation(conversation_id: str):
    """Clear a conversation's timeline."""
    orchestrator = _get_conversation(conversation_id)
    return ChatResponse(conversation_id=conversation_id, conversation=orchestrator.clear())


@app.post("/conversations/{conversation_id}/stop", response_model=ChatResponse, tags=["Conversations"])
async def stop_conversation(conversation_id: str):
    orchestrator = _get_conversation(conversation_id)
    return ChatResponse(conversation_id=conversation_id, conversation=orchestrator.request_stop())


@app.get("/tools", tags=["Tools"])
async def list_tools():
    """List tool definitions as offered to the model."""
    definitions = await _require_conversations().registry.list_definitions()
    return {
        "tools": [d.model_dump() for d in definitions],
        "count": len(definitions)
    }


@app.get("/config/models", tags=["Config"])
async def get_models():
    store = _require_config()
    return {
        "current_model_pointer": store.settings.current_model_pointer,
        "models": _public_models(store)
    }


@app.put("/config/models/{pointer}", tags=["Config"])
async def update_model(pointer: str, update: ModelConfigUpdate):
    store = _require_config()
    config: ModelConfig = store.save_model_config(pointer, **update.model_dump(exclude_none=True))
    return {"pointer": pointer, "model": config.model_dump(exclude={"api_key"})}


@app.put("/config/pointer", tags=["Config"])
async def switch_model(request: PointerRequest):
    store = _require_config()
    try:
        store.switch_model(request.pointer)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"current_model_pointer": request.pointer}


@app.post("/config/verify", tags=["Config"])
async def verify_credential(request: VerifyRequest):
    """Advisory credential check; never fails."""
    _require_config()
    valid = await _gateway.verify_credential(request.provider, request.api_key, request.base_url)
    return {"valid": valid}


def main():
    """Run the Tool Assistant server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
