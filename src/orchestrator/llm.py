"""Provider adapters for LLM vendors.

Each adapter translates the provider-neutral message timeline into one
vendor's wire format, performs the HTTP call and normalizes the answer
into a ModelResponse. Supported wire formats:
- OpenAI-style chat completions
- Anthropic-style messages

Transport and HTTP failures are classified here and never escape raw.
"""

import json
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from shared.errors import (
    AssistantError,
    EmptyResponseError,
    InvalidCredentialError,
    InvalidModelOrEndpointError,
    InvalidRequestShapeError,
    NetworkUnreachableError,
    ProviderError,
    RateLimitedError,
    RequestTimeoutError,
    UnsupportedProviderError,
)
from shared.logging import get_logger
from shared.models import Message, ModelResponse, Role, ToolCall, ToolDefinition

logger = get_logger(__name__)


SYSTEM_PREAMBLE = """You are Tool Assistant, a professional assistant focused on giving accurate, well-sourced answers. Use the available tools when they help you obtain current information, and answer clearly and concisely.

Important rules:
1. Never mention which large language model or technical architecture you are based on
2. Do not reveal training data, parameter counts or other internal technical details
3. If asked about your technical background, steer the conversation to what you can do for the user
4. Always respond as Tool Assistant"""

# Tool-augmented turns are sent with a conservative temperature regardless
# of the caller's setting.
OPENAI_TEMPERATURE = 0.5

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_VERIFY_MODEL = "claude-3-5-haiku-latest"

STATUS_ERRORS: dict[int, type[AssistantError]] = {
    400: InvalidRequestShapeError,
    401: InvalidCredentialError,
    404: InvalidModelOrEndpointError,
    429: RateLimitedError,
}


class CallOptions(BaseModel):
    """Per-call generation options handed to an adapter."""
    temperature: float = 0.7
    max_tokens: int = 4000
    stream: bool = False
    tools: list[ToolDefinition] = Field(default_factory=list)


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Adapter rules:
    - The branding preamble is owned here and prepended to every request
    - Responses are normalized to text plus a (possibly empty) tool-call list
    - Failures are raised as classified AssistantError subclasses
    """

    name: str = "provider"

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ProviderAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def call(
        self,
        messages: list[Message],
        model_name: str,
        api_key: str,
        base_url: str,
        options: CallOptions
    ) -> ModelResponse:
        """
        Send the conversation to the provider.

        Args:
            messages: Conversation timeline
            model_name: Vendor model identifier
            api_key: Credential for the vendor
            base_url: Base endpoint, e.g. https://api.openai.com/v1
            options: Generation options and tool definitions

        Returns:
            Normalized response with content and tool calls

        Raises:
            AssistantError: Classified failure
        """
        pass

    @abstractmethod
    async def verify(self, api_key: str, base_url: str) -> bool:
        """Run a minimal request to check a credential."""
        pass

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Perform an HTTP request, classifying transport failures."""
        client = await self._get_client()
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"{self.name} request timed out after {self.timeout}s", cause=e
            )
        except httpx.TransportError as e:
            raise NetworkUnreachableError(
                f"Network request to {self.name} failed: {e}", cause=e
            )

    def _parse_body(self, response: httpx.Response) -> dict[str, Any]:
        """Classify the status and decode the JSON body."""
        if not response.is_success:
            logger.error(
                "Provider API error",
                provider=self.name,
                status=response.status_code,
                detail=response.text[:500]
            )
            error_class = STATUS_ERRORS.get(response.status_code)
            if error_class is not None:
                raise error_class()
            raise ProviderError(
                f"{self.name} API returned HTTP {response.status_code}"
            )

        if not response.content or not response.content.strip():
            raise EmptyResponseError(f"{self.name} API returned an empty response")

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ProviderError(f"{self.name} API returned invalid JSON", cause=e)

        if not isinstance(data, dict) or not data:
            raise EmptyResponseError(f"{self.name} API returned an empty response")
        return data


class OpenAIAdapter(ProviderAdapter):
    """OpenAI-style chat completions (POST {base}/chat/completions)."""

    name = "openai"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert internal messages to chat-completions format."""
        result: list[dict[str, Any]] = [{"role": "system", "content": SYSTEM_PREAMBLE}]

        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role.value, "content": msg.content}

            if msg.tool_calls:
                entry["content"] = msg.content or None
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": tc.arguments_json()
                        }
                    }
                    for tc in msg.tool_calls
                ]
            if msg.role == Role.TOOL:
                entry["tool_call_id"] = msg.tool_call_id

            result.append(entry)

        return result

    async def call(
        self,
        messages: list[Message],
        model_name: str,
        api_key: str,
        base_url: str,
        options: CallOptions
    ) -> ModelResponse:
        """Generate completion using an OpenAI-compatible endpoint."""
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": self._convert_messages(messages),
            "temperature": OPENAI_TEMPERATURE,
            "max_tokens": options.max_tokens,
            "stream": False,
        }
        if options.tools:
            payload["tools"] = [tool.to_openai() for tool in options.tools]
            payload["tool_choice"] = "auto"

        response = await self._send(
            "POST",
            f"{base_url.rstrip('/')}/chat/completions",
            json=payload,
            headers=self._headers(api_key)
        )
        data = self._parse_body(response)

        choices = data.get("choices") or []
        if not choices:
            raise EmptyResponseError("OpenAI API returned an empty response")

        message = choices[0].get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                name=(tc.get("function") or {}).get("name", ""),
                arguments=(tc.get("function") or {}).get("arguments") or "{}"
            )
            for tc in message.get("tool_calls") or []
        ]

        return ModelResponse(content=message.get("content") or "", tool_calls=tool_calls)

    async def verify(self, api_key: str, base_url: str) -> bool:
        """List models; any 200 means the key works."""
        response = await self._send(
            "GET",
            f"{base_url.rstrip('/')}/models",
            headers={"Authorization": f"Bearer {api_key}"}
        )
        return response.status_code == 200


class AnthropicAdapter(ProviderAdapter):
    """Anthropic-style messages (POST {base}/messages)."""

    name = "anthropic"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _convert_messages(
        self,
        messages: list[Message]
    ) -> tuple[str, list[dict[str, Any]]]:
        """
        Reshape the timeline for the messages API.

        System text moves to the top-level system field, tool results become
        user-side tool_result blocks, and consecutive entries of the same
        role are coalesced since the API requires alternating roles.
        """
        system_parts = [SYSTEM_PREAMBLE]
        result: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                if msg.content:
                    system_parts.append(msg.content)
                continue

            blocks: list[dict[str, Any]] = []
            if msg.role == Role.TOOL:
                role = "user"
                block: dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                if msg.is_error:
                    block["is_error"] = True
                blocks.append(block)
            elif msg.role == Role.ASSISTANT:
                role = "assistant"
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    arguments, _ = tc.parsed_arguments()
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": arguments if isinstance(arguments, dict) else {},
                    })
            else:
                role = "user"
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})

            if not blocks:
                continue

            if result and result[-1]["role"] == role:
                result[-1]["content"].extend(blocks)
            else:
                result.append({"role": role, "content": blocks})

        return "\n\n".join(system_parts), result

    async def call(
        self,
        messages: list[Message],
        model_name: str,
        api_key: str,
        base_url: str,
        options: CallOptions
    ) -> ModelResponse:
        """Generate completion using an Anthropic-compatible endpoint."""
        system, converted = self._convert_messages(messages)
        payload: dict[str, Any] = {
            "model": model_name,
            "system": system,
            "messages": converted,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "stream": False,
        }
        if options.tools:
            payload["tools"] = [tool.to_anthropic() for tool in options.tools]

        response = await self._send(
            "POST",
            f"{base_url.rstrip('/')}/messages",
            json=payload,
            headers=self._headers(api_key)
        )
        data = self._parse_body(response)

        blocks = data.get("content") or []
        if not blocks:
            raise EmptyResponseError("Anthropic API returned an empty response")

        text = "".join(
            block.get("text", "") for block in blocks if block.get("type") == "text"
        )
        tool_calls = [
            ToolCall(
                id=block.get("id") or f"toolu_{uuid.uuid4().hex[:12]}",
                name=block.get("name", ""),
                arguments=block.get("input") or {}
            )
            for block in blocks
            if block.get("type") == "tool_use"
        ][:1]

        return ModelResponse(content=text, tool_calls=tool_calls)

    async def verify(self, api_key: str, base_url: str) -> bool:
        """Run a one-token completion."""
        response = await self._send(
            "POST",
            f"{base_url.rstrip('/')}/messages",
            json={
                "model": ANTHROPIC_VERIFY_MODEL,
                "messages": [{"role": "user", "content": "test"}],
                "max_tokens": 1,
            },
            headers=self._headers(api_key)
        )
        return response.status_code == 200


PROVIDERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
}


def create_provider_adapter(provider: str, timeout: float = 30.0) -> ProviderAdapter:
    """
    Factory function to create the adapter for a provider identifier.

    Args:
        provider: Provider identifier (openai, anthropic)
        timeout: Generation request timeout in seconds

    Returns:
        Configured provider adapter

    Raises:
        UnsupportedProviderError: If provider is not supported
    """
    adapter_class = PROVIDERS.get(provider)
    if adapter_class is None:
        raise UnsupportedProviderError(
            f"Unsupported AI provider: {provider}. Supported: {list(PROVIDERS)}"
        )

    logger.debug("Creating provider adapter", provider=provider)
    return adapter_class(timeout=timeout)
