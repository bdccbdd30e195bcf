"""Base classes for tools.

A tool exposes a name, a description (plain text or a possibly async
lookup), an optional JSON input schema and an async ``execute``. Tools:
- Never talk to the model gateway unless they are orchestration tools
- Raise on failure; the registry classifies and wraps the error
- Hold no per-conversation state
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.errors import NetworkUnreachableError, RequestTimeoutError
from shared.logging import get_logger

logger = get_logger(__name__)

DescriptionSource = Union[str, Callable[[], Union[str, Awaitable[str]]]]


class BaseTool(ABC):
    """Base class for every tool offered to the model."""

    name: str = ""
    description: DescriptionSource = ""
    input_schema: Optional[dict[str, Any]] = None

    async def get_description(self) -> str:
        """Resolve the description, awaiting it when the lookup suspends."""
        description = self.description
        if callable(description):
            description = description()
        if inspect.isawaitable(description):
            description = await description
        return description or "No description"

    @abstractmethod
    async def execute(self, input: Any) -> Any:
        """
        Run the tool.

        Args:
            input: Parsed arguments, or the raw argument string when the
                model sent something that is not valid JSON

        Returns:
            Any JSON-serializable result (or a pydantic model)
        """
        pass

    async def close(self) -> None:
        pass


class RESTTool(BaseTool):
    """
    Base class for tools backed by an HTTP service.

    Provides a lazily created client with the tool timeout and a single
    retry on connection failures.
    """

    def __init__(self, timeout: float = 8.0) -> None:
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True
    )
    async def _attempt(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        return await client.request(method, url, **kwargs)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request, classifying transport failures."""
        try:
            response = await self._attempt(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"{self.name} request timed out after {self.timeout}s", cause=e
            )
        except httpx.TransportError as e:
            raise NetworkUnreachableError(f"{self.name} request failed: {e}", cause=e)

        response.raise_for_status()
        return response

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
