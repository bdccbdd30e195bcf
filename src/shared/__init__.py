"""Shared models, configuration, errors and logging for the Tool Assistant."""

from shared.models import (
    ConversationSnapshot,
    ConversationState,
    Message,
    ModelResponse,
    Role,
    ToolCall,
    ToolDefinition,
)
from shared.config import GlobalOptions, ModelConfig, Settings, get_settings
from shared.errors import AssistantError, ErrorCode
from shared.logging import get_logger, setup_logging

__all__ = [
    "ConversationSnapshot",
    "ConversationState",
    "Message",
    "ModelResponse",
    "Role",
    "ToolCall",
    "ToolDefinition",
    "GlobalOptions",
    "ModelConfig",
    "Settings",
    "get_settings",
    "AssistantError",
    "ErrorCode",
    "get_logger",
    "setup_logging",
]
