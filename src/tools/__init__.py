"""Tools offered to the model.

Each tool declares a name, a description, an input schema and an async
execute. ``load_default_tools`` registers the standard set at startup.
"""

from typing import TYPE_CHECKING

from shared.config import Settings
from tools.base import BaseTool, RESTTool
from tools.registry import ToolRegistry

if TYPE_CHECKING:
    from orchestrator.gateway import ModelGateway


def load_default_tools(
    registry: ToolRegistry,
    gateway: "ModelGateway",
    settings: Settings
) -> None:
    """
    Register the standard tools.

    This is called at startup; the TaskTool shares the gateway and settings
    so it follows the configured "task" model pointer.
    """
    from tools.calculator import CalculatorTool
    from tools.task import TaskTool
    from tools.url_fetcher import URLFetcherTool
    from tools.web_search import WebSearchTool

    registry.register_many([
        WebSearchTool(
            api_key=settings.search_api_key,
            endpoint=settings.search_endpoint,
            timeout=settings.tool_timeout_seconds
        ),
        URLFetcherTool(timeout=settings.tool_timeout_seconds),
        TaskTool(gateway, settings),
        CalculatorTool(),
    ])


__all__ = [
    "BaseTool",
    "RESTTool",
    "ToolRegistry",
    "load_default_tools",
]
