"""Model Gateway - uniform entry point for model calls.

The gateway:
- Enforces credential presence before any network attempt
- Selects the provider adapter by the configured provider identifier
- Wraps adapter failures in a GatewayCallError envelope
- Offers advisory credential verification that never raises
"""

import time
from typing import Optional

from shared.config import GlobalOptions, ModelConfig
from shared.errors import (
    AssistantError,
    GatewayCallError,
    MissingCredentialError,
    ProviderError,
    UnsupportedProviderError,
)
from shared.logging import get_logger
from shared.models import Message, ModelResponse
from orchestrator.llm import PROVIDERS, CallOptions, ProviderAdapter

logger = get_logger(__name__)


class ModelGateway:
    """
    Provider-neutral model access.

    Every caller (the conversation orchestrator, the task decomposition
    tool) goes through ``query`` and receives either a ModelResponse or a
    classified AssistantError.
    """

    def __init__(
        self,
        adapters: Optional[dict[str, ProviderAdapter]] = None,
        timeout: float = 30.0
    ) -> None:
        """
        Initialize the gateway.

        Args:
            adapters: Adapter per provider identifier; defaults to one
                instance of every supported adapter
            timeout: Generation request timeout for default adapters
        """
        if adapters is None:
            adapters = {name: cls(timeout=timeout) for name, cls in PROVIDERS.items()}
        self._adapters = adapters

    def get_adapter(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnsupportedProviderError(
                f"Unsupported AI provider: {provider}. Supported: {sorted(self._adapters)}"
            )
        return adapter

    async def query(
        self,
        messages: list[Message],
        model_config: ModelConfig,
        options: Optional[GlobalOptions] = None
    ) -> ModelResponse:
        """
        Send a conversation to the configured model.

        Args:
            messages: Conversation timeline
            model_config: Model selected by a pointer
            options: Generation options, including tools to offer

        Returns:
            Normalized response; tool_calls is empty when none were requested

        Raises:
            MissingCredentialError: If no API key is configured
            GatewayCallError: If the provider call fails
        """
        if not model_config.has_credential:
            raise MissingCredentialError(
                f"Please configure the {model_config.provider} API key in settings"
            )

        options = options or GlobalOptions()
        start_time = time.monotonic()

        try:
            adapter = self.get_adapter(model_config.provider)
            response = await adapter.call(
                messages,
                model_config.model_name,
                model_config.api_key,
                model_config.base_url,
                CallOptions(
                    temperature=options.temperature,
                    max_tokens=model_config.max_tokens,
                    stream=options.stream,
                    tools=options.tools,
                )
            )
        except AssistantError as e:
            logger.error(
                "Model call failed",
                provider=model_config.provider,
                model=model_config.model_name,
                code=e.code.value,
                error=e.message
            )
            raise GatewayCallError(e) from e
        except Exception as e:
            logger.error(
                "Model call failed unexpectedly",
                provider=model_config.provider,
                error=str(e),
                exc_info=True
            )
            raise GatewayCallError(ProviderError(str(e), cause=e)) from e

        logger.info(
            "Model call completed",
            provider=model_config.provider,
            model=model_config.model_name,
            tool_calls=len(response.tool_calls),
            duration_ms=round((time.monotonic() - start_time) * 1000, 1)
        )
        return response

    async def verify_credential(
        self,
        provider: str,
        credential: Optional[str],
        endpoint: str
    ) -> bool:
        """
        Check a credential with a low-cost request.

        Verification is advisory: every failure is reported as False.
        """
        if not credential or not credential.strip():
            return False

        try:
            adapter = self.get_adapter(provider)
            return await adapter.verify(credential, endpoint)
        except Exception as e:
            logger.warning("Credential verification failed", provider=provider, error=str(e))
            return False

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
