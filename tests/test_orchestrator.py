"""Tests for orchestrator components."""

import asyncio
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from shared.config import ModelConfig
from shared.errors import RateLimitedError
from shared.models import ConversationState, ModelResponse, Role, ToolCall
from orchestrator.conversation import (
    ConversationManager,
    ConversationOrchestrator,
    serialize_result,
)
from orchestrator.gateway import ModelGateway
from tools.base import BaseTool
from tools.registry import ToolRegistry
from tools.web_search import WebSearchTool

from fakes import (
    EchoTool,
    FailingTool,
    FakeProviderAdapter,
    SilentTool,
    make_settings,
    tool_call_response,
)


def tool_messages(orchestrator: ConversationOrchestrator):
    return [m for m in orchestrator.messages if m.role == Role.TOOL]


class TestConversationOrchestrator:
    """Tests for the tool-calling cycle."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, gateway, adapter, registry, settings):
        """Test a turn where the model answers without tools."""
        adapter.queue(ModelResponse(content="Hello there"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Hi")

        assert [m.role for m in snapshot.messages] == [Role.USER, Role.ASSISTANT]
        assert snapshot.messages[1].content == "Hello there"
        assert snapshot.messages[1].tool_calls == []
        assert snapshot.state == ConversationState.IDLE
        assert snapshot.is_loading is False
        assert snapshot.current_task is None

    @pytest.mark.asyncio
    async def test_query_uses_current_model_and_tool_definitions(
        self, gateway, adapter, registry, settings
    ):
        """Test that the model call carries the pointer's config and the tools."""
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        await orchestrator.send_message("Hi")

        call = adapter.calls[0]
        assert call["model_name"] == "main-model"
        assert call["api_key"] == "sk-main"
        assert call["options"].max_tokens == 4000
        assert [t.name for t in call["options"].tools] == ["Echo"]
        assert [m.role for m in call["messages"]] == [Role.USER]

    @pytest.mark.asyncio
    async def test_model_pointer_override(self, gateway, adapter, registry, settings):
        """Test that an orchestrator can be bound to another model pointer."""
        orchestrator = ConversationOrchestrator(gateway, registry, settings, model_pointer="task")

        await orchestrator.send_message("Hi")

        assert adapter.calls[0]["model_name"] == "task-model"
        assert adapter.calls[0]["options"].max_tokens == 2000

    @pytest.mark.asyncio
    async def test_weather_question_with_web_search(self, gateway, adapter, settings):
        """Test a full search-then-answer turn."""
        search_tool = WebSearchTool(api_key="serper-key")
        search_tool.search = AsyncMock(return_value=[
            {"title": "Paris weather", "snippet": "Sunny, 24C", "source": "serper"}
        ])
        registry = ToolRegistry()
        registry.register(search_tool)

        adapter.queue(
            tool_call_response("WebSearch", '{"query": "Paris weather today"}', call_id="call_w1"),
            ModelResponse(content="It is sunny in Paris today, around 24C.")
        )
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("What's the weather in Paris today?")

        roles = [m.role for m in snapshot.messages]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]

        tool_message = snapshot.messages[2]
        assert tool_message.tool_call_id == "call_w1"
        assert tool_message.tool_name == "WebSearch"
        assert tool_message.is_error is False
        assert "Sunny, 24C" in tool_message.content

        assert snapshot.messages[3].content == "It is sunny in Paris today, around 24C."
        search_tool.search.assert_awaited_once_with("Paris weather today", 5)

        # Second query sees the tool result
        assert len(adapter.calls) == 2
        assert [m.role for m in adapter.calls[1]["messages"]] == roles[:3]

        assert len(snapshot.tool_executions) == 1
        assert snapshot.tool_executions[0].status == "succeeded"
        assert snapshot.tool_executions[0].input == {"query": "Paris weather today"}

    @pytest.mark.asyncio
    async def test_rate_limited_provider_end_to_end(self, registry, settings):
        """Test that an HTTP 429 becomes a single error message."""
        gateway = ModelGateway()
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.openai.com/v1/chat/completions").mock(
                return_value=httpx.Response(429, json={"error": {"message": "Too many requests"}})
            )
            snapshot = await orchestrator.send_message("Hello")

        await gateway.close()

        assert len(snapshot.messages) == 2
        last = snapshot.messages[-1]
        assert last.role == Role.ASSISTANT
        assert last.is_error is True
        assert "rate limit" in last.content.lower()
        assert "retry later" in last.content.lower()
        assert snapshot.is_loading is False

    @pytest.mark.asyncio
    async def test_gateway_failure_message(self, gateway, adapter, registry, settings):
        """Test that the error message keeps the classified reason."""
        adapter.queue(RateLimitedError())
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Hello")

        assert snapshot.messages[-1].content == (
            "Error: Model call failed: API rate limit exceeded, please retry later"
        )

    @pytest.mark.asyncio
    async def test_missing_credential_skips_provider(self, gateway, adapter, registry):
        """Test that no network attempt is made without an API key."""
        settings = make_settings(models={"main": ModelConfig(api_key=None)})
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Hello")

        assert adapter.calls == []
        assert len(snapshot.messages) == 2
        assert snapshot.messages[-1].is_error is True
        assert "API key" in snapshot.messages[-1].content

    @pytest.mark.asyncio
    async def test_unknown_model_pointer(self, gateway, adapter, registry, settings):
        """Test that a dangling model pointer is reported in the timeline."""
        orchestrator = ConversationOrchestrator(gateway, registry, settings, model_pointer="missing")

        snapshot = await orchestrator.send_message("Hello")

        assert adapter.calls == []
        assert snapshot.messages[-1].is_error is True
        assert "Unknown model pointer" in snapshot.messages[-1].content

    @pytest.mark.asyncio
    async def test_every_tool_call_answered(self, gateway, adapter, settings):
        """Test that mixed outcomes each leave exactly one tool message."""
        registry = ToolRegistry()
        registry.register_many([EchoTool(), FailingTool()])

        adapter.queue(
            ModelResponse(tool_calls=[
                ToolCall(id="call_a", name="Echo", arguments='{"text": "hi"}'),
                ToolCall(id="call_b", name="DoesNotExist", arguments="{}"),
                ToolCall(id="call_c", name="Broken", arguments={}),
            ]),
            ModelResponse(content="Done")
        )
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Do three things")

        replies = tool_messages(orchestrator)
        assert [m.tool_call_id for m in replies] == ["call_a", "call_b", "call_c"]
        assert [m.is_error for m in replies] == [False, True, True]
        assert replies[1].content == "Tool not found: DoesNotExist"
        assert replies[2].content == "Tool execution failed: boom"
        assert snapshot.messages[-1].content == "Done"

        statuses = [e.status for e in snapshot.tool_executions]
        assert statuses == ["succeeded", "failed", "failed"]

    @pytest.mark.asyncio
    async def test_unserializable_result_answered(self, gateway, adapter, settings):
        """Test that a result json cannot encode still gets an error reply."""

        class TupleKeyTool(BaseTool):
            name = "TupleKey"

            async def execute(self, input: Any) -> Any:
                return {(1, 2): "tuple key"}

        registry = ToolRegistry()
        registry.register(TupleKeyTool())
        adapter.queue(tool_call_response("TupleKey", {}, call_id="call_t"), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Hi")

        reply = tool_messages(orchestrator)[0]
        assert reply.tool_call_id == "call_t"
        assert reply.is_error is True
        assert reply.content.startswith("Tool execution failed:")
        assert snapshot.messages[-1].content == "ok"
        assert snapshot.tool_executions[0].status == "failed"

    @pytest.mark.asyncio
    async def test_broken_tool_schema_answered(self, gateway, adapter, settings):
        """Test that a tool declaring an unusable schema still gets an error reply."""

        class BadSchemaTool(BaseTool):
            name = "BadSchema"
            input_schema = {
                "type": "object",
                "properties": {"value": {"type": "not-a-type"}},
                "required": []
            }

            async def execute(self, input: Any) -> Any:
                return "unreachable"

        registry = ToolRegistry()
        registry.register(BadSchemaTool())
        adapter.queue(
            tool_call_response("BadSchema", {"value": 1}, call_id="call_s"),
            ModelResponse(content="ok")
        )
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Hi")

        reply = tool_messages(orchestrator)[0]
        assert reply.tool_call_id == "call_s"
        assert reply.is_error is True
        assert snapshot.messages[-1].content == "ok"

    @pytest.mark.asyncio
    async def test_no_tool_calls_never_executes(self, gateway, adapter, settings):
        """Test that an answer without tool calls never reaches the registry."""
        registry = MagicMock(spec=ToolRegistry)
        registry.list_definitions = AsyncMock(return_value=[])
        registry.execute = AsyncMock()

        adapter.queue(ModelResponse(content="Just text", tool_calls=[]))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        await orchestrator.send_message("Hi")

        registry.execute.assert_not_called()
        assert orchestrator.messages[-1].content == "Just text"

    @pytest.mark.asyncio
    async def test_none_result_serialized(self, gateway, adapter, settings):
        """Test that a tool returning nothing yields a placeholder."""
        registry = ToolRegistry()
        registry.register(SilentTool())
        adapter.queue(tool_call_response("Silent", {}), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        await orchestrator.send_message("Hi")

        assert tool_messages(orchestrator)[0].content == "No result"

    @pytest.mark.asyncio
    async def test_max_tool_iterations(self, gateway, adapter, registry, settings):
        """Test that a model that keeps requesting tools is cut off."""
        adapter.default_response = tool_call_response("Echo", {"text": "again"})
        orchestrator = ConversationOrchestrator(gateway, registry, settings, max_tool_iterations=3)

        snapshot = await orchestrator.send_message("Loop forever")

        assert len(adapter.calls) == 3
        assert len(tool_messages(orchestrator)) == 3
        assert snapshot.messages[-1].is_error is True
        assert "maximum of 3 tool iterations" in snapshot.messages[-1].content
        assert snapshot.is_loading is False

    @pytest.mark.asyncio
    async def test_unparseable_arguments_passed_raw(self, gateway, adapter, registry, settings, echo_tool):
        """Test that invalid JSON arguments reach validation as a raw string."""
        adapter.queue(tool_call_response("Echo", "{not json"), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        await orchestrator.send_message("Hi")

        reply = tool_messages(orchestrator)[0]
        assert reply.is_error is True
        assert reply.content == "Missing required parameter: text"
        assert echo_tool.calls == []
        assert orchestrator.snapshot().tool_executions[0].input == "{not json"

    @pytest.mark.asyncio
    async def test_unparseable_arguments_strict(self, gateway, adapter, registry, echo_tool):
        """Test that strict mode rejects invalid JSON arguments."""
        settings = make_settings(strict_tool_arguments=True)
        adapter.queue(tool_call_response("Echo", "{not json"), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        await orchestrator.send_message("Hi")

        reply = tool_messages(orchestrator)[0]
        assert reply.is_error is True
        assert "not valid JSON" in reply.content
        assert echo_tool.calls == []

    @pytest.mark.asyncio
    async def test_state_during_tool_execution(self, gateway, adapter, settings):
        """Test observable state while a tool runs."""
        observed: dict[str, Any] = {}

        class ObserverTool(BaseTool):
            name = "Observe"

            async def execute(self, input: Any) -> Any:
                observed["state"] = orchestrator.state
                observed["is_loading"] = orchestrator.is_loading
                observed["current_task"] = orchestrator.current_task
                return "observed"

        registry = ToolRegistry()
        registry.register(ObserverTool())
        adapter.queue(tool_call_response("Observe", {}), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Watch it")

        assert observed == {
            "state": ConversationState.EXECUTING_TOOLS,
            "is_loading": True,
            "current_task": "Watch it",
        }
        assert snapshot.state == ConversationState.IDLE
        assert snapshot.current_task is None

    @pytest.mark.asyncio
    async def test_request_stop_between_cycles(self, gateway, adapter, settings):
        """Test that a stop request ends the turn before the next model call."""

        class StopTool(BaseTool):
            name = "Stop"

            async def execute(self, input: Any) -> Any:
                orchestrator.request_stop()
                return "stopping"

        registry = ToolRegistry()
        registry.register(StopTool())
        adapter.queue(tool_call_response("Stop", {}), ModelResponse(content="never sent"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        snapshot = await orchestrator.send_message("Start")

        assert len(adapter.calls) == 1
        assert snapshot.messages[-1].content == "Stopped by user"
        assert snapshot.messages[-1].is_error is True

    @pytest.mark.asyncio
    async def test_request_stop_when_idle_is_noop(self, gateway, adapter, registry, settings):
        """Test that stopping an idle conversation does not affect the next turn."""
        orchestrator = ConversationOrchestrator(gateway, registry, settings)
        orchestrator.request_stop()

        snapshot = await orchestrator.send_message("Hi")

        assert snapshot.messages[-1].content == "This is a mock response."

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, gateway, adapter, registry, settings):
        """Test clearing a conversation twice."""
        adapter.queue(tool_call_response("Echo", {"text": "x"}), ModelResponse(content="ok"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)
        await orchestrator.send_message("Hi")

        first = orchestrator.clear()
        second = orchestrator.clear()

        for snapshot in (first, second):
            assert snapshot.messages == ()
            assert snapshot.tool_executions == ()
            assert snapshot.current_task is None
            assert snapshot.is_loading is False

    @pytest.mark.asyncio
    async def test_clear_during_tool_execution(self, gateway, adapter, settings):
        """Test that a turn cleared mid-flight leaves nothing in the new timeline."""
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowTool(BaseTool):
            name = "Slow"

            async def execute(self, input: Any) -> Any:
                started.set()
                await release.wait()
                return "done"

        registry = ToolRegistry()
        registry.register(SlowTool())
        adapter.queue(tool_call_response("Slow", {}, call_id="call_x"))
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        turn = asyncio.create_task(orchestrator.send_message("Start"))
        await started.wait()
        orchestrator.clear()
        release.set()
        await turn

        assert orchestrator.messages == ()
        assert orchestrator.snapshot().tool_executions == ()
        assert len(adapter.calls) == 1

        adapter.queue(ModelResponse(content="fresh start"))
        snapshot = await orchestrator.send_message("Again")

        assert [m.role for m in snapshot.messages] == [Role.USER, Role.ASSISTANT]
        assert snapshot.messages[-1].content == "fresh start"
        assert [m.role for m in adapter.calls[-1]["messages"]] == [Role.USER]

    @pytest.mark.asyncio
    async def test_messages_are_append_only(self, gateway, adapter, registry, settings):
        """Test that later turns extend the earlier timeline."""
        orchestrator = ConversationOrchestrator(gateway, registry, settings)

        first = await orchestrator.send_message("One")
        second = await orchestrator.send_message("Two")

        assert second.messages[:len(first.messages)] == first.messages
        timestamps = [m.timestamp for m in second.messages]
        assert timestamps == sorted(timestamps)


class TestSerializeResult:
    """Tests for tool result rendering."""

    def test_string_passthrough(self):
        assert serialize_result("plain") == "plain"

    def test_none_and_empty(self):
        assert serialize_result(None) == "No result"
        assert serialize_result("") == "No result"

    def test_dict_as_json(self):
        assert serialize_result({"a": 1, "b": [1, 2]}) == '{"a": 1, "b": [1, 2]}'

    def test_model_as_json(self):
        response = ModelResponse(content="x")
        assert serialize_result(response) == '{"content": "x", "tool_calls": []}'


class TestConversationManager:
    """Tests for ConversationManager."""

    @pytest.fixture
    def manager(self, gateway, registry, settings):
        return ConversationManager(gateway, registry, settings, conversation_ttl_minutes=60)

    @pytest.mark.asyncio
    async def test_create_and_get(self, manager):
        """Test creating and retrieving a conversation."""
        conversation_id, orchestrator = await manager.create()

        assert manager.get(conversation_id) is orchestrator
        assert manager.get_stats()["total_conversations"] == 1

    @pytest.mark.asyncio
    async def test_get_or_create_reuses(self, manager):
        """Test that a known id returns the existing conversation."""
        conversation_id, orchestrator = await manager.create()

        same_id, same = await manager.get_or_create(conversation_id)
        new_id, other = await manager.get_or_create(None)

        assert same_id == conversation_id
        assert same is orchestrator
        assert new_id != conversation_id
        assert other is not orchestrator

    @pytest.mark.asyncio
    async def test_expired_conversation(self, manager):
        """Test that idle conversations expire after the TTL."""
        conversation_id, orchestrator = await manager.create()
        orchestrator.updated_at = datetime.utcnow() - timedelta(hours=2)

        assert manager.get(conversation_id) is None

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, manager):
        """Test bulk removal of expired conversations."""
        _, stale = await manager.create()
        fresh_id, _ = await manager.create()
        stale.updated_at = datetime.utcnow() - timedelta(hours=2)

        removed = await manager.cleanup_expired()

        assert removed == 1
        assert [c["id"] for c in manager.list_conversations()] == [fresh_id]

    @pytest.mark.asyncio
    async def test_delete(self, manager):
        """Test deleting a conversation."""
        conversation_id, _ = await manager.create()

        assert await manager.delete(conversation_id) is True
        assert await manager.delete(conversation_id) is False
        assert manager.get(conversation_id) is None
