"""Error taxonomy for the Tool Assistant.

Every failure that crosses a component boundary is one of the classes
below. Provider adapters classify transport and HTTP failures at their
boundary, the tool registry classifies lookup/validation/execution
failures, and the orchestrator turns any of them into a timeline message.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Closed set of error classifications."""
    MISSING_CREDENTIAL = "missing-credential"
    UNSUPPORTED_PROVIDER = "unsupported-provider"
    INVALID_CREDENTIAL = "invalid-credential"
    RATE_LIMITED = "rate-limited"
    INVALID_MODEL_OR_ENDPOINT = "invalid-model-or-endpoint"
    INVALID_REQUEST_SHAPE = "invalid-request-shape"
    EMPTY_RESPONSE = "empty-response"
    TOOL_NOT_FOUND = "tool-not-found"
    MISSING_PARAMETER = "missing-parameter"
    INVALID_PARAMETER = "invalid-parameter"
    MALFORMED_TOOL_ARGUMENTS = "malformed-tool-arguments"
    TOOL_EXECUTION_FAILED = "tool-execution-failed"
    TIMEOUT = "timeout"
    NETWORK_UNREACHABLE = "network-unreachable"
    PROVIDER_ERROR = "provider-error"


class AssistantError(Exception):
    """Base exception for all classified failures."""

    code: ErrorCode = ErrorCode.PROVIDER_ERROR
    default_message: str = "Unexpected error"

    def __init__(
        self,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None
    ) -> None:
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class MissingCredentialError(AssistantError):
    """No API key configured for the selected provider."""
    code = ErrorCode.MISSING_CREDENTIAL
    default_message = "API key is not configured, please set a valid API key in settings"


class UnsupportedProviderError(AssistantError):
    code = ErrorCode.UNSUPPORTED_PROVIDER
    default_message = "Unsupported AI provider"


class InvalidCredentialError(AssistantError):
    code = ErrorCode.INVALID_CREDENTIAL
    default_message = "Invalid API key, please check your configuration"


class RateLimitedError(AssistantError):
    code = ErrorCode.RATE_LIMITED
    default_message = "API rate limit exceeded, please retry later"


class InvalidModelOrEndpointError(AssistantError):
    code = ErrorCode.INVALID_MODEL_OR_ENDPOINT
    default_message = "Model does not exist or the API endpoint is wrong"


class InvalidRequestShapeError(AssistantError):
    code = ErrorCode.INVALID_REQUEST_SHAPE
    default_message = "Invalid request parameters, please check your configuration"


class EmptyResponseError(AssistantError):
    code = ErrorCode.EMPTY_RESPONSE
    default_message = "Model API returned an empty response"


class ProviderError(AssistantError):
    """Any other non-success status from a provider."""
    code = ErrorCode.PROVIDER_ERROR
    default_message = "Model API request failed"


class RequestTimeoutError(AssistantError):
    code = ErrorCode.TIMEOUT
    default_message = "Request timed out"


class NetworkUnreachableError(AssistantError):
    code = ErrorCode.NETWORK_UNREACHABLE
    default_message = "Network request failed, please check the API endpoint"


class ToolNotFoundError(AssistantError):
    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}")


class MissingParameterError(AssistantError):
    code = ErrorCode.MISSING_PARAMETER

    def __init__(self, parameter: str) -> None:
        self.parameter = parameter
        super().__init__(f"Missing required parameter: {parameter}")


class InvalidParameterError(AssistantError):
    code = ErrorCode.INVALID_PARAMETER

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Invalid parameters: {'; '.join(errors)}")


class MalformedToolArgumentsError(AssistantError):
    code = ErrorCode.MALFORMED_TOOL_ARGUMENTS
    default_message = "Tool arguments are not valid JSON"


class ToolExecutionError(AssistantError):
    code = ErrorCode.TOOL_EXECUTION_FAILED

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool execution failed: {cause}", cause=cause)


class GatewayCallError(AssistantError):
    """
    Uniform envelope for Model Gateway failures.

    Carries the wrapped error's classification so callers still branch on
    the closed taxonomy, and keeps the original message for diagnostics.
    """

    def __init__(self, cause: AssistantError) -> None:
        self.code = cause.code
        super().__init__(f"Model call failed: {cause.message}", cause=cause)
