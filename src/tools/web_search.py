"""WebSearch tool - internet search through a Serper-compatible API."""

from typing import Any, Optional

from shared.errors import MissingCredentialError
from shared.logging import get_logger
from tools.base import RESTTool

logger = get_logger(__name__)


class WebSearchTool(RESTTool):
    """
    Search the web and return the organic results.

    The backend is a POST to a search API that answers with an ``organic``
    list; each entry is projected to ``{title, snippet, source}``.
    """

    name = "WebSearch"
    description = (
        "Search the internet for information. Provides up-to-date information "
        "on current events and recent data."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search keywords"
            },
            "maxResults": {
                "type": "number",
                "description": "Maximum number of results",
                "minimum": 1,
                "default": 5
            },
            "searchEngine": {
                "type": "string",
                "description": "Search engine type",
                "enum": ["bing", "duckduckgo"],
                "default": "duckduckgo"
            }
        },
        "required": ["query"]
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: str = "https://google.serper.dev/search",
        timeout: float = 8.0
    ) -> None:
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.endpoint = endpoint

    async def execute(self, input: dict[str, Any]) -> dict[str, Any]:
        query = input["query"]
        max_results = max(1, int(input.get("maxResults") or 5))
        search_engine = input.get("searchEngine") or "duckduckgo"

        results = await self.search(query, max_results)

        return {
            "success": True,
            "query": query,
            "searchEngine": search_engine,
            "results": results,
            "summary": f'Searched "{query}" with {search_engine}, found {len(results)} results'
        }

    async def search(self, query: str, max_results: int) -> list[dict[str, Any]]:
        """
        Query the search backend.

        Returns:
            Projected results, or a single placeholder entry when nothing
            was found
        """
        if not self.api_key:
            raise MissingCredentialError("Search API key is not configured")

        response = await self._request(
            "POST",
            self.endpoint,
            json={"q": query, "num": max_results},
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"}
        )
        data = response.json()

        results = [
            {
                "title": item.get("title") or f"Result {index + 1}",
                "snippet": item.get("snippet", ""),
                "source": "serper"
            }
            for index, item in enumerate((data.get("organic") or [])[:max_results])
        ]

        logger.debug("Search completed", query=query, result_count=len(results))

        if not results:
            return [{
                "title": "No results found",
                "snippet": f'No search results found for "{query}"',
                "source": "serper"
            }]
        return results
