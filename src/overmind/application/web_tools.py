"""Web search tool backed by the Tavily search API."""

from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from overmind.application.tool_registry import ToolContext, ToolRegistry
from overmind.infrastructure.exceptions import OvermindError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

WEB_SEARCH = "web_search"

SNIPPET_LENGTH = 500


class SearchError(OvermindError):
    """The search backend request failed."""

    pass


class WebSearchParams(BaseModel):
    """Parameters of ``web_search``."""

    query: str = Field(min_length=1, description="The search query")
    max_results: int = Field(default=5, ge=1, le=20, description="Maximum number of results")
    search_depth: Literal["basic", "advanced"] = Field(
        default="basic", description="basic for quick searches, advanced for comprehensive ones"
    )
    include_answer: bool = Field(default=True, description="Include a generated answer summary")


class TavilySearchBackend:
    """Client for the Tavily search API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.tavily.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize search backend.

        Args:
            api_key: Tavily API key
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Custom HTTP transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def search(
        self,
        query: str,
        max_results: int = 5,
        search_depth: str = "basic",
        include_answer: bool = True,
    ) -> dict[str, Any]:
        """Run a search.

        Returns:
            ``{"answer": str | None, "results": [{title, url, snippet, relevance_score}]}``

        Raises:
            SearchError: If the request fails
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/search",
                    json={
                        "api_key": self.api_key,
                        "query": query,
                        "max_results": max_results,
                        "search_depth": search_depth,
                        "include_answer": include_answer,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.warning("web_search_failed", query=query, error=str(e))
            raise SearchError(f"Search request failed: {e}") from e

        return {
            "answer": data.get("answer"),
            "results": [
                {
                    "title": result.get("title", ""),
                    "url": result.get("url", ""),
                    "snippet": (result.get("content") or "")[:SNIPPET_LENGTH],
                    "relevance_score": result.get("score"),
                }
                for result in data.get("results", [])
            ],
        }


def register_web_tools(registry: ToolRegistry, backend: TavilySearchBackend) -> None:
    """Register ``web_search`` backed by ``backend``."""

    async def web_search(params: WebSearchParams, context: ToolContext) -> dict[str, Any]:
        return await backend.search(
            params.query,
            max_results=params.max_results,
            search_depth=params.search_depth,
            include_answer=params.include_answer,
        )

    registry.register(
        WEB_SEARCH,
        "Search the web. Returns relevant results with URLs to cite and optionally an "
        "answer summary.",
        WebSearchParams,
        web_search,
    )
