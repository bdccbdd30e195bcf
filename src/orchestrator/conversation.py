"""Conversation orchestration.

A ConversationOrchestrator owns one conversation timeline and drives the
tool-calling cycle:
1. Append the user message and query the model with the tool definitions
2. Append the assistant message
3. If the model requested tools, execute each one and append its result
4. Query the model again with the enlarged timeline, until it stops
   requesting tools

The ConversationManager keeps one orchestrator per conversation id for the
HTTP surface.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel

from shared.config import ModelConfig, Settings
from shared.errors import (
    AssistantError,
    InvalidModelOrEndpointError,
    MalformedToolArgumentsError,
    ToolExecutionError,
)
from shared.logging import bind_context, get_logger, unbind_context
from shared.models import (
    ConversationSnapshot,
    ConversationState,
    Message,
    Role,
    ToolCall,
    ToolExecution,
    ToolExecutionStatus,
)
from orchestrator.gateway import ModelGateway
from tools.registry import ToolRegistry

logger = get_logger(__name__)

NO_RESULT = "No result"
STOPPED_MESSAGE = "Stopped by user"


def serialize_result(result: Any) -> str:
    """Render a tool result as message content."""
    if result is None:
        return NO_RESULT
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    if isinstance(result, str):
        return result or NO_RESULT
    return json.dumps(result, ensure_ascii=False, default=str)


class ConversationOrchestrator:
    """
    Drives one conversation.

    State per user turn moves idle -> awaiting_model_response ->
    (executing_tools -> awaiting_model_response)* -> idle. Turns on one
    instance are serialized; separate instances share only the registry.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        settings: Settings,
        model_pointer: Optional[str] = None,
        max_tool_iterations: Optional[int] = None
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            gateway: Model gateway used for every model call
            registry: Tool registry for definitions and execution
            settings: Settings holding model configs and global options
            model_pointer: Model pointer to use; defaults to the settings'
                current pointer, read at the start of every turn
            max_tool_iterations: Maximum model calls per user turn
        """
        self.gateway = gateway
        self.registry = registry
        self.settings = settings
        self.model_pointer = model_pointer
        self.max_tool_iterations = max_tool_iterations or settings.max_tool_iterations

        self.state = ConversationState.IDLE
        self.current_task: Optional[str] = None
        self.updated_at = datetime.utcnow()

        self._messages: list[Message] = []
        self._tool_executions: list[ToolExecution] = []
        self._stop_requested = False
        self._lock = asyncio.Lock()

        # Bumped by clear(); a turn started under an older generation no
        # longer writes to the timeline.
        self._generation = 0
        self._turn_generation: Optional[int] = None

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def is_loading(self) -> bool:
        return self.state != ConversationState.IDLE

    def snapshot(self) -> ConversationSnapshot:
        """Current observable state."""
        return ConversationSnapshot(
            messages=tuple(self._messages),
            state=self.state,
            is_loading=self.is_loading,
            current_task=self.current_task,
            tool_executions=tuple(e.model_copy() for e in self._tool_executions)
        )

    def _is_stale(self) -> bool:
        return self._turn_generation is not None and self._turn_generation != self._generation

    def _append(self, **fields: Any) -> Optional[Message]:
        if self._is_stale():
            return None
        message = Message(**fields)
        self._messages.append(message)
        self.updated_at = datetime.utcnow()
        return message

    def _model_config(self) -> ModelConfig:
        pointer = self.model_pointer or self.settings.current_model_pointer
        try:
            return self.settings.model_for(pointer)
        except ValueError as e:
            raise InvalidModelOrEndpointError(str(e))

    async def send_message(self, content: str) -> ConversationSnapshot:
        """
        Run one user turn to completion.

        Every failure ends up in the timeline: model failures as an
        error-flagged assistant message, tool failures as error-flagged tool
        messages.

        Args:
            content: User input

        Returns:
            Snapshot of the conversation after the turn
        """
        async with self._lock:
            bind_context(turn_id=uuid.uuid4().hex[:8])
            self._stop_requested = False
            self._turn_generation = self._generation
            self.current_task = content
            self._append(role=Role.USER, content=content)

            try:
                await self._run_cycles()
            except AssistantError as e:
                logger.warning("Turn failed", **e.to_dict())
                self._append(
                    role=Role.ASSISTANT,
                    content=f"Error: {e.message}",
                    is_error=True
                )
            finally:
                self.state = ConversationState.IDLE
                self.current_task = None
                self._turn_generation = None
                unbind_context("turn_id")

            return self.snapshot()

    async def _run_cycles(self) -> None:
        """Query the model until it stops requesting tools."""
        model_config = self._model_config()

        for iteration in range(1, self.max_tool_iterations + 1):
            if self._stop_requested:
                logger.info("Turn stopped", iteration=iteration)
                self._append(role=Role.ASSISTANT, content=STOPPED_MESSAGE, is_error=True)
                return

            tools = await self.registry.list_definitions()
            options = self.settings.global_options.with_tools(tools)

            self.state = ConversationState.AWAITING_MODEL_RESPONSE
            response = await self.gateway.query(list(self._messages), model_config, options)
            if self._is_stale():
                logger.info("Conversation cleared during model call, discarding response")
                return

            self._append(
                role=Role.ASSISTANT,
                content=response.content,
                tool_calls=response.tool_calls
            )

            if not response.tool_calls:
                return

            logger.debug(
                "Model requested tool calls",
                count=len(response.tool_calls),
                iteration=iteration
            )
            self.state = ConversationState.EXECUTING_TOOLS
            for tool_call in response.tool_calls:
                if self._is_stale():
                    logger.info("Conversation cleared during tool execution, skipping remaining calls")
                    return
                await self._execute_tool_call(tool_call)

        logger.warning("Max tool iterations reached", iterations=self.max_tool_iterations)
        self._append(
            role=Role.ASSISTANT,
            content=(
                f"Reached the maximum of {self.max_tool_iterations} tool iterations "
                "without a final answer. Please refine the request and try again."
            ),
            is_error=True
        )

    async def _execute_tool_call(self, tool_call: ToolCall) -> None:
        """Execute one tool call and append exactly one tool message for it."""
        arguments, parsed = tool_call.parsed_arguments()
        execution = ToolExecution(
            tool_call_id=tool_call.id,
            tool_name=tool_call.name,
            input=arguments
        )
        self._tool_executions.append(execution)

        try:
            if not parsed:
                if self.settings.strict_tool_arguments:
                    raise MalformedToolArgumentsError(
                        f"Arguments for tool {tool_call.name} are not valid JSON"
                    )
                logger.warning("Tool arguments are not JSON, passing raw string", tool=tool_call.name)

            result = await self.registry.execute(tool_call.name, arguments)
            content = serialize_result(result)
        except AssistantError as e:
            self._fail_tool_call(execution, tool_call, e)
            return
        except Exception as e:
            logger.error(
                "Tool call failed unexpectedly",
                tool=tool_call.name,
                error=str(e),
                exc_info=True
            )
            self._fail_tool_call(execution, tool_call, ToolExecutionError(tool_call.name, e))
            return

        execution.status = ToolExecutionStatus.SUCCEEDED
        self._append(
            role=Role.TOOL,
            content=content,
            tool_call_id=tool_call.id,
            tool_name=tool_call.name
        )

    def _fail_tool_call(
        self,
        execution: ToolExecution,
        tool_call: ToolCall,
        error: AssistantError
    ) -> None:
        execution.status = ToolExecutionStatus.FAILED
        execution.error = error.message
        self._append(
            role=Role.TOOL,
            content=error.message,
            tool_call_id=tool_call.id,
            tool_name=tool_call.name,
            is_error=True
        )

    def request_stop(self) -> ConversationSnapshot:
        """
        Ask an in-flight turn to stop.

        The flag is checked between cycles; a model or tool call already in
        progress runs to completion.
        """
        if self.is_loading:
            self._stop_requested = True
        return self.snapshot()

    def clear(self) -> ConversationSnapshot:
        """
        Reset the timeline, tool executions and in-flight task marker.

        A turn still in flight is stopped at its next check and nothing it
        produces afterwards reaches the new timeline.
        """
        if self.is_loading:
            self._stop_requested = True
        self._generation += 1
        self._messages = []
        self._tool_executions = []
        self.current_task = None
        self.updated_at = datetime.utcnow()
        return self.snapshot()


class ConversationManager:
    """
    Keeps one orchestrator per conversation id.

    Responsibilities:
    - Create and retrieve conversations
    - Expire idle conversations
    - Provide conversation summaries
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        settings: Settings,
        conversation_ttl_minutes: int = 60
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.settings = settings
        self.ttl = timedelta(minutes=conversation_ttl_minutes)

        self._conversations: dict[str, ConversationOrchestrator] = {}
        self._lock = asyncio.Lock()

    async def create(self, conversation_id: Optional[str] = None) -> tuple[str, ConversationOrchestrator]:
        conversation_id = conversation_id or str(uuid.uuid4())
        orchestrator = ConversationOrchestrator(self.gateway, self.registry, self.settings)

        async with self._lock:
            self._conversations[conversation_id] = orchestrator

        logger.info("Conversation created", conversation_id=conversation_id)
        return conversation_id, orchestrator

    def get(self, conversation_id: str) -> Optional[ConversationOrchestrator]:
        """
        Get a conversation by ID.

        Returns:
            Orchestrator if found and not expired, None otherwise
        """
        orchestrator = self._conversations.get(conversation_id)
        if orchestrator is None:
            return None

        if not orchestrator.is_loading and datetime.utcnow() - orchestrator.updated_at > self.ttl:
            self._conversations.pop(conversation_id, None)
            return None

        return orchestrator

    async def get_or_create(
        self,
        conversation_id: Optional[str]
    ) -> tuple[str, ConversationOrchestrator]:
        if conversation_id:
            orchestrator = self.get(conversation_id)
            if orchestrator:
                return conversation_id, orchestrator

        return await self.create(conversation_id)

    async def delete(self, conversation_id: str) -> bool:
        async with self._lock:
            orchestrator = self._conversations.pop(conversation_id, None)
        if orchestrator is None:
            return False
        orchestrator.clear()
        logger.info("Conversation deleted", conversation_id=conversation_id)
        return True

    async def cleanup_expired(self) -> int:
        """
        Remove expired conversations.

        Returns:
            Number of conversations removed
        """
        now = datetime.utcnow()

        async with self._lock:
            expired = [
                conversation_id
                for conversation_id, orchestrator in self._conversations.items()
                if not orchestrator.is_loading and now - orchestrator.updated_at > self.ttl
            ]
            for conversation_id in expired:
                del self._conversations[conversation_id]

        if expired:
            logger.info("Expired conversations cleaned up", count=len(expired))

        return len(expired)

    def list_conversations(self) -> list[dict[str, Any]]:
        return [
            {
                "id": conversation_id,
                "message_count": len(orchestrator.messages),
                "state": orchestrator.state.value,
                "updated_at": orchestrator.updated_at.isoformat()
            }
            for conversation_id, orchestrator in self._conversations.items()
        ]

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_conversations": len(self._conversations),
            "ttl_minutes": self.ttl.total_seconds() / 60
        }
