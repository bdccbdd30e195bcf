"""Tool Registry.

Maps tool names to tool implementations, validates invocation input,
dispatches execution and projects tools into the definitions offered to
the model. Tools are registered at startup; the mapping stays mutable so
tools can be added or removed later.
"""

import time
from typing import Any, Optional

from shared.errors import (
    InvalidParameterError,
    MissingParameterError,
    ToolExecutionError,
    ToolNotFoundError,
)
from shared.logging import get_logger
from shared.models import ToolDefinition
from shared.schema import first_missing_required, normalize_input_schema, validate_schema
from tools.base import BaseTool

logger = get_logger(__name__)


class ToolRegistry:
    """
    Central registry for all tools.

    Responsibilities:
    - Register and look up tools by name
    - Pre-validate input against the declared schema
    - Execute tools, wrapping failures as ToolExecutionError
    - Build tool definitions for model requests
    """

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """
        Register a tool in the registry.

        Args:
            tool: Tool to register

        Raises:
            ValueError: If tool name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.info("Tool registered", tool=tool.name)

    def register_many(self, tools: list[BaseTool]) -> None:
        """Register multiple tools at once."""
        for tool in tools:
            self.register(tool)

    def unregister(self, tool_name: str) -> bool:
        """
        Unregister a tool from the registry.

        Returns:
            True if tool was removed, False if not found
        """
        if tool_name in self._tools:
            del self._tools[tool_name]
            logger.info("Tool unregistered", tool=tool_name)
            return True
        return False

    def get(self, tool_name: str) -> Optional[BaseTool]:
        return self._tools.get(tool_name)

    def list_tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def validate_input(self, tool: BaseTool, input: Any) -> None:
        """
        Check input against the tool's declared schema.

        Raises:
            MissingParameterError: Naming the first absent required field
            InvalidParameterError: If present fields have the wrong shape
        """
        missing = first_missing_required(input, tool.input_schema)
        if missing is not None:
            raise MissingParameterError(missing)

        if tool.input_schema and isinstance(input, dict):
            is_valid, errors = validate_schema(input, normalize_input_schema(tool.input_schema))
            if not is_valid:
                raise InvalidParameterError(errors)

    async def execute(self, tool_name: str, input: Any) -> Any:
        """
        Execute a tool by name.

        Args:
            tool_name: Registered tool name
            input: Tool arguments

        Returns:
            Whatever the tool returned

        Raises:
            ToolNotFoundError: If the name is not registered
            MissingParameterError: If a required field is absent
            InvalidParameterError: If the input does not match the schema
            ToolExecutionError: If the tool body failed
        """
        tool = self.get(tool_name)
        if tool is None:
            raise ToolNotFoundError(tool_name)

        self.validate_input(tool, input)

        start_time = time.monotonic()
        logger.debug("Executing tool", tool=tool_name)

        try:
            result = await tool.execute(input)
        except Exception as e:
            logger.error("Tool execution failed", tool=tool_name, error=str(e))
            raise ToolExecutionError(tool_name, e) from e

        logger.info(
            "Tool executed",
            tool=tool_name,
            execution_time_ms=round((time.monotonic() - start_time) * 1000, 1)
        )
        return result

    async def list_definitions(self) -> list[ToolDefinition]:
        """
        Get tool definitions for model requests.

        Descriptions are resolved per call since a tool may compute its
        description asynchronously.
        """
        definitions = []
        for name, tool in self._tools.items():
            definitions.append(ToolDefinition(
                name=name,
                description=await tool.get_description(),
                input_schema=normalize_input_schema(tool.input_schema)
            ))
        return definitions

    async def close(self) -> None:
        """Release resources held by registered tools."""
        for tool in self.list_tools():
            await tool.close()

