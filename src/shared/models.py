"""Core data models for the Tool Assistant.

This module defines the provider-neutral message, tool-call and tool
definition shapes shared by the gateway, the tool registry and the
conversation orchestrator.
"""

import json
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Role(str, Enum):
    """Author of a timeline message."""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class ConversationState(str, Enum):
    """Orchestrator state for the current user turn."""
    IDLE = "idle"
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    EXECUTING_TOOLS = "executing_tools"


class ToolCall(BaseModel):
    """
    A model-issued request to invoke a tool.

    The id is provider-assigned and only unique within the response it came
    from. Arguments are either a pre-parsed object (Anthropic) or a JSON
    encoded string (OpenAI).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Any = Field(default_factory=dict)

    def parsed_arguments(self) -> tuple[Any, bool]:
        """
        Leniently parse the argument payload.

        Returns:
            Tuple of (arguments, parsed). On a JSON parse failure the raw
            string is returned unchanged with parsed=False.
        """
        if not isinstance(self.arguments, str):
            return self.arguments, True

        if not self.arguments.strip():
            return {}, True

        try:
            return json.loads(self.arguments), True
        except json.JSONDecodeError:
            return self.arguments, False

    def arguments_json(self) -> str:
        """Arguments as a JSON string, for wire formats that require one."""
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments, ensure_ascii=False, default=str)


class Message(BaseModel):
    """
    A single entry of the conversation timeline.

    Messages are immutable once created. Tool-role messages always carry the
    id of the tool call they answer.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = Field(default_factory=time.monotonic_ns)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    is_error: bool = False

    @model_validator(mode="after")
    def _check_tool_reply(self) -> "Message":
        if self.role == Role.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")
        if self.tool_calls and self.role != Role.ASSISTANT:
            raise ValueError("only assistant messages may carry tool calls")
        return self


class ToolDefinition(BaseModel):
    """
    Provider-neutral description of a tool offered to the model.

    The input schema is a JSON Schema object with properties and a list of
    required property names.
    """
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_openai(self) -> dict[str, Any]:
        """Function-calling shape used by OpenAI-style APIs."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            }
        }

    def to_anthropic(self) -> dict[str, Any]:
        """Tool shape used by the Anthropic messages API."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ModelResponse(BaseModel):
    """Normalized provider response: text plus zero or more tool calls."""
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class ToolExecutionStatus(str, Enum):
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ToolExecution(BaseModel):
    """Record of one tool invocation made during a conversation."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool_call_id: str
    tool_name: str
    input: Any = None
    status: ToolExecutionStatus = ToolExecutionStatus.EXECUTING
    started_at: datetime = Field(default_factory=datetime.utcnow)
    error: Optional[str] = None


class ConversationSnapshot(BaseModel):
    """Observable orchestrator state returned after every state change."""
    messages: tuple[Message, ...] = ()
    state: ConversationState = ConversationState.IDLE
    is_loading: bool = False
    current_task: Optional[str] = None
    tool_executions: tuple[ToolExecution, ...] = ()
